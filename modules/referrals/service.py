from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging

from config.settings import Settings, settings
from database.transactions import run_in_transaction
from modules.referrals.attribution import AttributionEngine, normalize_code, parse_role
from modules.referrals.codes import ReferralCodeGenerator
from modules.referrals.exceptions import (
    ExhaustedRetriesError,
    InvalidCodeError,
    NotFoundError,
    ReferralError,
    ReferralErrorCode,
)
from modules.referrals.ledger import RewardLedger
from modules.referrals.models import ReferralStatus, ReferralCodeType
from modules.referrals.redemption import RedemptionService
from modules.referrals.repository import ReferralProfileStore
from modules.referrals.stats import ReferralStatsFacade
from modules.users.models import UserRole
from modules.users.service import UserDirectory

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Something went wrong, please try again later"


@dataclass
class ReferralResult:
    """Outcome of a ReferralService operation. Business-rule failures carry an error code"""
    success: bool
    data: Any = None
    error: Optional[ReferralErrorCode] = None
    message: str = ""

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "ReferralResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: ReferralErrorCode, message: str) -> "ReferralResult":
        return cls(success=False, error=error, message=message)


class ReferralService:
    """
    Referral program operations exposed to the HTTP layer.

    Each public method is one transaction on the session passed in: it commits
    on success, rolls back on any failure, and retries transient store errors a
    bounded number of times. Business-rule failures come back as failed
    ReferralResult objects.
    """

    def __init__(self, db: Session, config: Settings = settings, users: UserDirectory = None):
        self.db = db
        self.config = config
        self.users = users or UserDirectory(db)
        self.codes = ReferralCodeGenerator(db, config)
        self.store = ReferralProfileStore(db, self.codes, config)
        self.ledger = RewardLedger(db, self.store, self.users, config)
        self.attribution = AttributionEngine(db, self.store, self.ledger, self.users, config)
        self.redemption = RedemptionService(db, self.store)
        self.stats = ReferralStatsFacade(db, self.store)

    def _execute(self, label: str, fn: Callable[[], Any]) -> ReferralResult:
        try:
            return ReferralResult.ok(run_in_transaction(self.db, fn, label=label))
        except ExhaustedRetriesError as e:
            logger.critical(f"🚨 {label}: {e.message}")
            return ReferralResult.fail(e.code, INTERNAL_ERROR_MESSAGE)
        except ReferralError as e:
            logger.warning(f"⚠️ {label} rejected: {e.code.value} - {e.message}")
            return ReferralResult.fail(e.code, e.message)
        except SQLAlchemyError as e:
            logger.error(f"❌ {label} failed: {e.__class__.__name__}: {e}")
            return ReferralResult.fail(ReferralErrorCode.INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)

    def reward_description(self, role: UserRole) -> str:
        if role == UserRole.FARMER:
            return f"${self.config.CASHBACK_PER_FARMER_REFERRAL:.2f} cashback after your first sale"
        return f"{self.config.FREE_DELIVERIES_PER_REFERRAL} free deliveries"

    # ============ Attribution ============

    def apply_referral_code(self, code: str, user_id: str, user_role) -> ReferralResult:
        def work():
            result = self.attribution.apply_referral_code(code, user_id, user_role)
            return {
                "referral_type": result.referral_type.value,
                "reward_description": self.reward_description(parse_role(user_role)),
                "free_deliveries_granted": result.referred_free_deliveries,
            }

        return self._execute("apply_referral_code", work)

    # ============ Codes ============

    def generate_referral_code(self, user_id: str, role=None) -> ReferralResult:
        """Idempotent: existing codes are returned as-is, missing ones generated"""
        def work():
            profile = self.store.get_or_create_locked(user_id)
            self.store.ensure_codes(profile)
            return {
                "farmer_referral_code": profile.farmer_referral_code,
                "customer_referral_code": profile.customer_referral_code,
                "referral_code": self._primary_code(profile, role),
            }

        return self._execute("generate_referral_code", work)

    def get_referral_info(self, user_id: str, role=None) -> ReferralResult:
        def work():
            profile = self.store.get_profile(user_id)
            if not profile or not (profile.farmer_referral_code and profile.customer_referral_code):
                profile = self.store.get_or_create_locked(user_id)
                self.store.ensure_codes(profile)
            return {
                "referral_code": self._primary_code(profile, role),
                "referral_info": self.stats.profile_summary(profile),
                "limits": self.config.referral_limits,
            }

        return self._execute("get_referral_info", work)

    @staticmethod
    def _primary_code(profile, role) -> str:
        if role is not None and parse_role(role) == UserRole.FARMER:
            return profile.farmer_referral_code
        return profile.customer_referral_code

    def validate_referral_code(self, code: str) -> ReferralResult:
        """An unknown or blocked code is a normal answer here: valid=False, not a failure"""
        def work():
            normalized = normalize_code(code)
            if not normalized:
                return {"valid": False, "message": "Referral code is required"}
            profile = self.store.find_by_code(normalized)
            owner = self.users.find_user(profile.user_id) if profile else None
            if not owner or profile.referral_status == ReferralStatus.BLOCKED:
                return {"valid": False, "message": InvalidCodeError.default_message}
            code_type = profile.code_type_of(normalized) or ReferralCodeType.CUSTOMER
            return {
                "valid": True,
                "message": "Referral code is valid",
                "referrer_role": owner.role.value,
                "referrer_id": str(profile.user_id),
                "code_type": code_type.value,
                "rewards": {
                    "free_deliveries_per_referral": self.config.FREE_DELIVERIES_PER_REFERRAL,
                    "cashback_per_referral": self.config.CASHBACK_PER_FARMER_REFERRAL,
                },
            }

        return self._execute("validate_referral_code", work)

    # ============ Rewards ============

    def apply_farmer_referral_cashback(self, farmer_id: str) -> ReferralResult:
        def work():
            grant = self.ledger.apply_farmer_referral_cashback(farmer_id)
            return {
                "cashback_amount": grant.cashback_amount,
                "referrer_cashback_amount": grant.referrer_cashback_amount,
                "max_lifetime_cashback": self.config.MAX_LIFETIME_CASHBACK,
            }

        result = self._execute("apply_farmer_referral_cashback", work)
        if result.success:
            result.message = f"Cashback of ${result.data['cashback_amount']} applied successfully"
        return result

    def check_free_deliveries(self, user_id: str) -> ReferralResult:
        def work():
            profile = self.store.get_profile(user_id)
            remaining = profile.free_deliveries_remaining if profile else 0
            # blocked profiles keep their balance but cannot redeem it
            redeemable = remaining > 0 and profile.referral_status != ReferralStatus.BLOCKED
            return {
                "has_free_deliveries": redeemable,
                "free_deliveries_remaining": remaining,
                "total_free_deliveries": profile.total_free_deliveries if profile else 0,
                "max_lifetime_free_deliveries": self.config.MAX_LIFETIME_FREE_DELIVERIES,
            }

        return self._execute("check_free_deliveries", work)

    def apply_free_delivery_if_available(self, order_id: str, user_id: str) -> ReferralResult:
        def work():
            return self.redemption.apply_free_delivery_if_available(order_id, user_id)

        return self._execute("apply_free_delivery_if_available", work)

    # ============ Queries ============

    def get_referral_stats(self, user_id: str) -> ReferralResult:
        def work():
            stats = self.stats.get_referral_stats(user_id)
            stats["limits"] = self.config.referral_limits
            return stats

        return self._execute("get_referral_stats", work)

    def get_referral_history(self, user_id: str) -> ReferralResult:
        def work():
            if not self.store.get_profile(user_id):
                raise NotFoundError()
            return {"referred_users": self.stats.get_referred_users(user_id)}

        return self._execute("get_referral_history", work)

    # ============ Admin ============

    def block_referral_profile(self, user_id: str) -> ReferralResult:
        def work():
            profile = self.store.lock_profile(user_id)
            if not profile:
                raise NotFoundError()
            profile.referral_status = ReferralStatus.BLOCKED
            self.db.flush()
            logger.info(f"🚫 Referral profile blocked for user {user_id}")
            return self.stats.profile_summary(profile)

        return self._execute("block_referral_profile", work)
