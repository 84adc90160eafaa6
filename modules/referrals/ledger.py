from sqlalchemy import update, case, literal, Numeric
from sqlalchemy.orm import Session
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import logging

from config.settings import Settings, settings
from modules.referrals.exceptions import (
    AlreadyCompletedError,
    CapReachedError,
    NotFoundError,
    NotReferredError,
    UnsupportedRoleCombinationError,
)
from modules.referrals.models import (
    ReferralProfile,
    ReferralHistory,
    ReferralHistoryStatus,
    ReferralStatus,
    RewardType,
)
from modules.referrals.repository import ReferralProfileStore
from modules.users.models import UserRole
from modules.users.service import UserDirectory

logger = logging.getLogger(__name__)

QUALIFICATION_SIGNUP = "signup"
QUALIFICATION_FIRST_SALE = "first_sale"

MONEY = Numeric(10, 2)


@dataclass
class FreeDeliveryGrant:
    referred_free_deliveries: int
    referrer_free_deliveries: int


@dataclass
class CashbackGrant:
    cashback_amount: Decimal
    referrer_cashback_amount: Decimal
    referrer_id: str


class RewardLedger:
    """
    Applies capped reward increments to referral profiles and settles history rows.

    Balances are never computed in Python and written back: each grant is one
    UPDATE whose SET clause clamps the increment to the remaining lifetime
    headroom, guarded by WHERE total < cap, on a row already locked by the caller.
    """

    def __init__(self, db: Session, store: ReferralProfileStore, users: UserDirectory = None,
                 config: Settings = settings):
        self.db = db
        self.store = store
        self.users = users or UserDirectory(db)
        self.config = config

    # ============ Clamp increments ============

    def _grant_free_deliveries(self, profile: ReferralProfile) -> int:
        cap = self.config.MAX_LIFETIME_FREE_DELIVERIES
        per_referral = self.config.FREE_DELIVERIES_PER_REFERRAL

        self.db.flush()
        before = profile.total_free_deliveries or 0

        headroom = cap - ReferralProfile.total_free_deliveries
        grant = case((headroom < per_referral, headroom), else_=per_referral)
        self.db.execute(
            update(ReferralProfile)
            .where(ReferralProfile.id == profile.id, ReferralProfile.total_free_deliveries < cap)
            .values(
                free_deliveries_remaining=ReferralProfile.free_deliveries_remaining + grant,
                total_free_deliveries=ReferralProfile.total_free_deliveries + grant,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(profile)
        return profile.total_free_deliveries - before

    def _grant_cashback(self, profile: ReferralProfile) -> Decimal:
        cap = literal(self.config.MAX_LIFETIME_CASHBACK, MONEY)
        per_referral = literal(self.config.CASHBACK_PER_FARMER_REFERRAL, MONEY)

        self.db.flush()
        before = Decimal(profile.total_earned_credit or 0)

        headroom = cap - ReferralProfile.total_earned_credit
        grant = case((headroom < per_referral, headroom), else_=per_referral)
        self.db.execute(
            update(ReferralProfile)
            .where(ReferralProfile.id == profile.id, ReferralProfile.total_earned_credit < cap)
            .values(
                remaining_credit=ReferralProfile.remaining_credit + grant,
                total_earned_credit=ReferralProfile.total_earned_credit + grant,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(profile)
        return (Decimal(profile.total_earned_credit) - before).quantize(Decimal("0.01"))

    # ============ Consumer path ============

    def grant_free_deliveries(self, history: ReferralHistory) -> FreeDeliveryGrant:
        """
        Grant free deliveries to both sides of a consumer referral and settle its history row.
        A side already at the lifetime cap gets 0; that is recorded, not an error.
        """
        profiles = self.store.lock_profiles([history.referred_id, history.referrer_id])
        referred = profiles[str(history.referred_id)]
        referrer = profiles[str(history.referrer_id)]

        referred_grant = self._grant_free_deliveries(referred)
        referrer_grant = self._grant_free_deliveries(referrer)

        referred.referral_status = ReferralStatus.COMPLETED

        history.status = ReferralHistoryStatus.COMPLETED
        history.referred_reward_type = RewardType.FREE_DELIVERIES if referred_grant else RewardType.NONE
        history.referred_free_deliveries = referred_grant
        history.referrer_reward_type = RewardType.FREE_DELIVERIES if referrer_grant else RewardType.NONE
        history.referrer_free_deliveries = referrer_grant
        history.qualification_event = QUALIFICATION_SIGNUP
        history.qualification_date = datetime.now(timezone.utc)
        self.db.flush()

        logger.info(
            f"✅ Free deliveries granted: referred {history.referred_id} +{referred_grant}, "
            f"referrer {history.referrer_id} +{referrer_grant}"
        )
        return FreeDeliveryGrant(
            referred_free_deliveries=referred_grant,
            referrer_free_deliveries=referrer_grant,
        )

    # ============ Farmer path ============

    def apply_farmer_referral_cashback(self, farmer_id: str) -> CashbackGrant:
        """
        Settle a referred farmer's cashback after their first sale.

        Hard failures (nothing is paid): not referred, already completed, cap reached.
        If the referrer is also a farmer they get the same capped grant; their
        profile stays open since one farmer can refer many.
        """
        farmer = self.users.find_user(farmer_id)
        if not farmer:
            raise NotFoundError("Farmer not found")
        if farmer.role != UserRole.FARMER:
            raise UnsupportedRoleCombinationError("User is not a farmer")

        snapshot = self.store.get_profile(farmer_id)
        if not snapshot or not snapshot.referred_by:
            raise NotReferredError()

        referrer_id = str(snapshot.referred_by)
        profiles = self.store.lock_profiles([farmer_id, referrer_id])
        profile = profiles[str(farmer_id)]
        referrer_profile: Optional[ReferralProfile] = profiles.get(referrer_id)

        # re-check on the locked row
        if not profile.referred_by:
            raise NotReferredError()
        if profile.referral_status == ReferralStatus.COMPLETED:
            raise AlreadyCompletedError()
        if profile.referral_status == ReferralStatus.BLOCKED:
            raise AlreadyCompletedError("Referral rewards are blocked for this account")
        if Decimal(profile.total_earned_credit) >= self.config.MAX_LIFETIME_CASHBACK:
            raise CapReachedError("Farmer has reached maximum lifetime cashback")

        cashback = self._grant_cashback(profile)
        if cashback <= 0:
            raise CapReachedError("Farmer has reached maximum lifetime cashback")
        profile.referral_status = ReferralStatus.COMPLETED

        referrer_cashback = Decimal("0.00")
        referrer = self.users.find_user(referrer_id)
        if (
            referrer_profile
            and referrer_profile.referral_status != ReferralStatus.BLOCKED
            and referrer
            and referrer.role == UserRole.FARMER
        ):
            referrer_cashback = self._grant_cashback(referrer_profile)
        elif referrer_profile and referrer_profile.referral_status == ReferralStatus.BLOCKED:
            logger.warning(f"⚠️ Referrer {referrer_id} is blocked, no referrer cashback for farmer {farmer_id}")

        history = self.store.lock_history_for_referred(farmer_id)
        if history and not history.is_settled:
            history.status = ReferralHistoryStatus.COMPLETED
            history.referred_reward_type = RewardType.CASHBACK
            history.referred_reward_amount = cashback
            history.referrer_reward_type = RewardType.CASHBACK if referrer_cashback > 0 else RewardType.NONE
            history.referrer_reward_amount = referrer_cashback
            history.qualification_event = QUALIFICATION_FIRST_SALE
            history.qualification_date = datetime.now(timezone.utc)
        elif history:
            logger.warning(f"⚠️ History row for farmer {farmer_id} already settled as {history.status.value}, left untouched")
        self.db.flush()

        logger.info(
            f"✅ Applied farmer referral cashback ${cashback} to {farmer_id}"
            + (f", ${referrer_cashback} to referrer {referrer_id}" if referrer_cashback > 0 else "")
        )
        return CashbackGrant(
            cashback_amount=cashback,
            referrer_cashback_amount=referrer_cashback,
            referrer_id=referrer_id,
        )
