# Import all models to ensure they're registered with SQLAlchemy
from .users.models import User, UserRole, UserStatus
from .orders.models import Order, OrderStatus, PaymentStatus as OrderPaymentStatus
from .referrals.models import (
    ReferralProfile, ReferralHistory, ReferralType, ReferralStatus,
    ReferralHistoryStatus, RewardType, ReferralCodeType
)
