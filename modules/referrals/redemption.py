from sqlalchemy import update
from sqlalchemy.orm import Session
from dataclasses import dataclass
from decimal import Decimal
import logging

from modules.orders.models import Order
from modules.referrals.exceptions import NotFoundError
from modules.referrals.models import ReferralProfile, ReferralStatus
from modules.referrals.repository import ReferralProfileStore

logger = logging.getLogger(__name__)

FREE_DELIVERY_SOURCE_REFERRAL = "referral"


@dataclass
class RedemptionResult:
    applied: bool
    order_id: str
    message: str
    free_deliveries_remaining: int = 0
    waived_fee: Decimal = Decimal("0.00")
    already_applied: bool = False


class RedemptionService:
    """Consumes one referral free delivery against an order, at most once per order"""

    def __init__(self, db: Session, store: ReferralProfileStore):
        self.db = db
        self.store = store

    def apply_free_delivery_if_available(self, order_id: str, user_id: str) -> RedemptionResult:
        """
        The order row is locked first and its free_delivery_applied flag checked,
        so a second call for the same order is a no-op. The decrement and the
        flag are written in the same transaction.
        """
        locked_order = (
            self.db.query(Order)
            .filter(Order.id == str(order_id))
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not locked_order or str(locked_order.user_id) != str(user_id):
            raise NotFoundError("Order not found")

        if locked_order.free_delivery_applied:
            profile = self.store.get_profile(user_id)
            return RedemptionResult(
                applied=False,
                already_applied=True,
                order_id=str(locked_order.id),
                message="Free delivery already applied to this order",
                free_deliveries_remaining=profile.free_deliveries_remaining if profile else 0,
            )

        profile = self.store.lock_profile(user_id)
        if (
            not profile
            or profile.referral_status == ReferralStatus.BLOCKED
            or profile.free_deliveries_remaining <= 0
        ):
            return RedemptionResult(
                applied=False,
                order_id=str(locked_order.id),
                message="No free deliveries available",
            )

        decremented = self.db.execute(
            update(ReferralProfile)
            .where(ReferralProfile.id == profile.id, ReferralProfile.free_deliveries_remaining > 0)
            .values(free_deliveries_remaining=ReferralProfile.free_deliveries_remaining - 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if decremented != 1:
            return RedemptionResult(
                applied=False,
                order_id=str(locked_order.id),
                message="No free deliveries available",
            )

        waived_fee = Decimal(locked_order.delivery_fee or 0)
        locked_order.delivery_fee = Decimal("0.00")
        locked_order.total_amount = max(Decimal(locked_order.total_amount or 0) - waived_fee, Decimal("0.00"))
        locked_order.free_delivery_applied = True
        locked_order.free_delivery_source = FREE_DELIVERY_SOURCE_REFERRAL
        self.db.flush()
        self.db.refresh(profile)

        logger.info(
            f"✅ Applied free delivery to order {locked_order.order_number} for user {user_id}, "
            f"{profile.free_deliveries_remaining} remaining"
        )
        return RedemptionResult(
            applied=True,
            order_id=str(locked_order.id),
            message="Free delivery applied successfully",
            free_deliveries_remaining=profile.free_deliveries_remaining,
            waived_fee=waived_fee,
        )
