from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from database.base import get_db
from modules.orders.models import Order
from modules.orders.schemas import FreeDeliveryRedemptionResponse
from modules.referrals.routes import raise_for_result
from modules.referrals.service import ReferralService
from modules.users.models import User, UserRole
from shared.exceptions import NotFoundException, ForbiddenException
from shared.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ Checkout Endpoints ============

@router.post("/{order_id}/free-delivery", response_model=FreeDeliveryRedemptionResponse)
def apply_free_delivery(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Waive the delivery fee using one referral free delivery, if the order owner has any left.

    Calling it again for the same order does not consume another free delivery.
    Requires: Bearer token (order owner or admin)
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundException("Order not found")

    if str(order.user_id) != str(current_user.id) and current_user.role != UserRole.ADMIN:
        raise ForbiddenException("Not authorized to modify this order")

    result = ReferralService(db).apply_free_delivery_if_available(order.id, order.user_id)
    raise_for_result(result)
    return result.data
