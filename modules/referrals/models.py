from sqlalchemy import (
    Column, String, Integer, Numeric, ForeignKey, DateTime, CheckConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum
from decimal import Decimal

from database.base import Base
from database.mixins import UUIDMixin, TimestampMixin, UUID


class ReferralType(str, enum.Enum):
    FARMER_TO_FARMER = "farmer_to_farmer"
    FARMER_TO_CUSTOMER = "farmer_to_customer"
    CUSTOMER_TO_FARMER = "customer_to_farmer"
    CUSTOMER_TO_CUSTOMER = "customer_to_customer"


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ReferralHistoryStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    DECLINED = "declined"


class RewardType(str, enum.Enum):
    NONE = "none"
    CASHBACK = "cashback"
    FREE_DELIVERIES = "free_deliveries"


class ReferralCodeType(str, enum.Enum):
    FARMER = "farmer"
    CUSTOMER = "customer"


REFERRAL_CODE_PREFIXES = {
    ReferralCodeType.FARMER: "FF",
    ReferralCodeType.CUSTOMER: "FC",
}

TERMINAL_HISTORY_STATUSES = (
    ReferralHistoryStatus.COMPLETED,
    ReferralHistoryStatus.EXPIRED,
    ReferralHistoryStatus.DECLINED,
)


def _enum_values(e):
    return [m.value for m in e]


class ReferralProfile(Base, UUIDMixin, TimestampMixin):
    """Per-user referral state: owned codes, who referred the user, reward balances"""
    __tablename__ = "referral_profiles"
    __table_args__ = (
        CheckConstraint("remaining_credit >= 0", name="ck_referral_profiles_remaining_credit"),
        CheckConstraint("remaining_credit <= total_earned_credit", name="ck_referral_profiles_credit_le_total"),
        CheckConstraint("free_deliveries_remaining >= 0", name="ck_referral_profiles_free_remaining"),
        CheckConstraint("free_deliveries_remaining <= total_free_deliveries", name="ck_referral_profiles_free_le_total"),
        CheckConstraint("referred_by IS NULL OR referred_by <> user_id", name="ck_referral_profiles_no_self_referral"),
    )

    user_id = Column(UUID(), ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False, index=True)
    referred_by = Column(UUID(), ForeignKey('users.id'), nullable=True, index=True)  # write-once
    referral_type = Column(SQLEnum(ReferralType, values_callable=_enum_values, name="referraltype"), nullable=True)

    farmer_referral_code = Column(String(12), unique=True, nullable=True)
    customer_referral_code = Column(String(12), unique=True, nullable=True)

    referral_status = Column(SQLEnum(ReferralStatus, values_callable=_enum_values, name="referralstatus"),
                             default=ReferralStatus.PENDING, nullable=False)

    remaining_credit = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_earned_credit = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)  # lifetime, capped
    free_deliveries_remaining = Column(Integer, default=0, nullable=False)
    total_free_deliveries = Column(Integer, default=0, nullable=False)  # lifetime, capped

    user = relationship("User", foreign_keys=[user_id])
    referrer = relationship("User", foreign_keys=[referred_by])

    def code_type_of(self, code: str):
        if code and code == self.farmer_referral_code:
            return ReferralCodeType.FARMER
        if code and code == self.customer_referral_code:
            return ReferralCodeType.CUSTOMER
        return None

    def __repr__(self):
        return f"<ReferralProfile user={self.user_id} status={self.referral_status}>"


class ReferralHistory(Base, UUIDMixin, TimestampMixin):
    """One row per attribution event. Append-only; settlement fields are written once."""
    __tablename__ = "referral_history"

    referrer_id = Column(UUID(), ForeignKey('users.id'), nullable=False, index=True)
    # A user can be attributed only once
    referred_id = Column(UUID(), ForeignKey('users.id'), unique=True, nullable=False, index=True)
    referral_code = Column(String(12), nullable=False, index=True)
    referral_type = Column(SQLEnum(ReferralType, values_callable=_enum_values, name="referraltype"), nullable=False)
    status = Column(SQLEnum(ReferralHistoryStatus, values_callable=_enum_values, name="referralhistorystatus"),
                    default=ReferralHistoryStatus.PENDING, nullable=False, index=True)

    referrer_reward_type = Column(SQLEnum(RewardType, values_callable=_enum_values, name="rewardtype"),
                                  default=RewardType.NONE, nullable=False)
    referrer_reward_amount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    referrer_free_deliveries = Column(Integer, default=0, nullable=False)

    referred_reward_type = Column(SQLEnum(RewardType, values_callable=_enum_values, name="rewardtype"),
                                  default=RewardType.NONE, nullable=False)
    referred_reward_amount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    referred_free_deliveries = Column(Integer, default=0, nullable=False)

    qualification_event = Column(String(50), nullable=True)  # signup, first_sale
    qualification_date = Column(DateTime(timezone=True), nullable=True)

    referrer = relationship("User", foreign_keys=[referrer_id])
    referred_user = relationship("User", foreign_keys=[referred_id])

    @property
    def is_settled(self) -> bool:
        return self.status in TERMINAL_HISTORY_STATUSES

    def __repr__(self):
        return f"<ReferralHistory {self.referral_type} {self.status}>"
