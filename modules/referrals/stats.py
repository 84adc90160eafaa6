from sqlalchemy.orm import Session, aliased
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from modules.referrals.exceptions import NotFoundError
from modules.referrals.models import ReferralHistory, ReferralHistoryStatus, ReferralProfile, RewardType
from modules.referrals.repository import ReferralProfileStore
from modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class ReferralStatsFacade:
    """Read-only view of a user's referral profile and history"""

    def __init__(self, db: Session, store: ReferralProfileStore):
        self.db = db
        self.store = store

    def get_referral_stats(self, user_id: str) -> Dict[str, Any]:
        profile = self.store.get_profile(user_id)
        if not profile:
            logger.info(f"No referral profile for user {user_id}")
            raise NotFoundError()

        referred_users = self.get_referred_users(user_id)
        farmer_referrals = sum(1 for r in referred_users if r["role"] == UserRole.FARMER.value)
        customer_referrals = sum(1 for r in referred_users if r["role"] == UserRole.CONSUMER.value)
        pending = sum(1 for r in referred_users if r["status"] == ReferralHistoryStatus.PENDING.value)
        completed = sum(1 for r in referred_users if r["status"] == ReferralHistoryStatus.COMPLETED.value)

        return {
            "referral_info": self.profile_summary(profile),
            "stats": {
                "total_referrals": len(referred_users),
                "farmer_referrals": farmer_referrals,
                "customer_referrals": customer_referrals,
                "pending_referrals": pending,
                "completed_referrals": completed,
            },
            "referred_users": referred_users,
            "referred_by": self.get_referrer(user_id),
        }

    @staticmethod
    def profile_summary(profile: ReferralProfile) -> Dict[str, Any]:
        return {
            "farmer_referral_code": profile.farmer_referral_code,
            "customer_referral_code": profile.customer_referral_code,
            "remaining_credit": Decimal(profile.remaining_credit or 0),
            "total_earned_credit": Decimal(profile.total_earned_credit or 0),
            "free_deliveries_remaining": profile.free_deliveries_remaining or 0,
            "total_free_deliveries": profile.total_free_deliveries or 0,
            "referral_status": profile.referral_status.value,
            "referral_type": profile.referral_type.value if profile.referral_type else None,
        }

    def get_referred_users(self, user_id: str) -> List[Dict[str, Any]]:
        referred = aliased(User)
        rows = (
            self.db.query(ReferralHistory, referred)
            .outerjoin(referred, referred.id == ReferralHistory.referred_id)
            .filter(ReferralHistory.referrer_id == str(user_id))
            .order_by(ReferralHistory.created_at.desc())
            .all()
        )

        items = []
        for history, user in rows:
            items.append({
                "id": str(history.referred_id),
                "name": user.display_name if user else "Unknown User",
                "email": user.email if user else None,
                "role": user.role.value if user else None,
                "referral_date": history.created_at,
                "referral_type": history.referral_type.value,
                "status": history.status.value,
                "reward_type": (history.referrer_reward_type or RewardType.NONE).value,
                "reward_amount": Decimal(history.referrer_reward_amount or 0),
                "free_deliveries": history.referrer_free_deliveries or 0,
            })
        return items

    def get_referrer(self, user_id: str) -> Optional[Dict[str, Any]]:
        referrer = aliased(User)
        row = (
            self.db.query(ReferralHistory, referrer)
            .outerjoin(referrer, referrer.id == ReferralHistory.referrer_id)
            .filter(ReferralHistory.referred_id == str(user_id))
            .first()
        )
        if not row:
            return None

        history, user = row
        return {
            "id": str(history.referrer_id),
            "name": user.display_name if user else "Unknown User",
            "email": user.email if user else None,
            "role": user.role.value if user else None,
            "referral_date": history.created_at,
            "referral_type": history.referral_type.value,
        }
