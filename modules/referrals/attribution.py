from sqlalchemy.orm import Session
from dataclasses import dataclass
from typing import Optional, Union
import logging

from config.settings import Settings, settings
from modules.referrals.exceptions import (
    AlreadyReferredError,
    InvalidCodeError,
    NotFoundError,
    SelfReferralError,
    UnsupportedRoleCombinationError,
)
from modules.referrals.ledger import RewardLedger
from modules.referrals.models import ReferralStatus, ReferralType
from modules.referrals.repository import ReferralProfileStore
from modules.users.models import UserRole
from modules.users.service import UserDirectory

logger = logging.getLogger(__name__)


# (referrer role, referred role) -> referral type. Anything missing is unsupported.
REFERRAL_TYPE_BY_ROLES = {
    (UserRole.FARMER, UserRole.FARMER): ReferralType.FARMER_TO_FARMER,
    (UserRole.FARMER, UserRole.CONSUMER): ReferralType.FARMER_TO_CUSTOMER,
    (UserRole.CONSUMER, UserRole.FARMER): ReferralType.CUSTOMER_TO_FARMER,
    (UserRole.CONSUMER, UserRole.CONSUMER): ReferralType.CUSTOMER_TO_CUSTOMER,
}


def classify_referral(referrer_role: UserRole, referred_role: UserRole) -> ReferralType:
    try:
        return REFERRAL_TYPE_BY_ROLES[(referrer_role, referred_role)]
    except KeyError:
        raise UnsupportedRoleCombinationError(
            f"Referrals from {getattr(referrer_role, 'value', referrer_role)} "
            f"to {getattr(referred_role, 'value', referred_role)} are not supported"
        )


def parse_role(role: Union[UserRole, str, None]) -> UserRole:
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(str(role).lower())
    except ValueError:
        raise UnsupportedRoleCombinationError(f"Unknown user role: {role}")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


@dataclass
class AttributionResult:
    referral_type: ReferralType
    referrer_id: str
    referred_id: str
    history_id: str
    referred_free_deliveries: int = 0
    referrer_free_deliveries: int = 0


class AttributionEngine:
    """Links a newly registered user to the owner of the referral code they used"""

    def __init__(self, db: Session, store: ReferralProfileStore, ledger: RewardLedger,
                 users: UserDirectory = None, config: Settings = settings):
        self.db = db
        self.store = store
        self.ledger = ledger
        self.users = users or UserDirectory(db)
        self.config = config

    def apply_referral_code(self, code: str, new_user_id: str, new_user_role) -> AttributionResult:
        """
        Attribute new_user_id to the owner of code.

        Runs inside the caller's transaction: the target profile row is locked
        before referred_by is read, so two concurrent attributions of the same
        user serialize and the second one sees AlreadyReferred.
        Consumers are rewarded immediately; farmers stay pending until their first sale.
        """
        code = normalize_code(code)
        if not code:
            raise InvalidCodeError("Referral code is required")

        new_user_id = str(new_user_id)
        role = parse_role(new_user_role)
        new_user = self.users.find_user(new_user_id)
        if not new_user:
            raise NotFoundError("User not found")
        if new_user.role != role:
            raise UnsupportedRoleCombinationError("User role does not match the account")

        referrer_profile = self.store.find_by_code(code)
        if not referrer_profile or referrer_profile.referral_status == ReferralStatus.BLOCKED:
            raise InvalidCodeError()

        referrer_id = str(referrer_profile.user_id)
        if referrer_id == new_user_id:
            raise SelfReferralError()

        referrer = self.users.find_user(referrer_id)
        if not referrer:
            raise InvalidCodeError()
        referral_type = classify_referral(referrer.role, role)

        target = self.store.get_or_create_locked(new_user_id)
        if target.referred_by:
            raise AlreadyReferredError()
        self.store.ensure_codes(target)

        target.referred_by = referrer_id
        target.referral_type = referral_type
        target.referral_status = ReferralStatus.ACTIVE
        self.db.flush()

        history = self.store.add_history(
            referrer_id=referrer_id,
            referred_id=new_user_id,
            referral_code=code,
            referral_type=referral_type,
        )

        result = AttributionResult(
            referral_type=referral_type,
            referrer_id=referrer_id,
            referred_id=new_user_id,
            history_id=str(history.id),
        )

        if role == UserRole.CONSUMER:
            grant = self.ledger.grant_free_deliveries(history)
            result.referred_free_deliveries = grant.referred_free_deliveries
            result.referrer_free_deliveries = grant.referrer_free_deliveries

        logger.info(f"✅ Processed referral: {referral_type.value} for user {new_user_id} (referrer {referrer_id})")
        return result
