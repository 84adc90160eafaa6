from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


# ============ Requests ============

class ApplyReferralCodeRequest(BaseModel):
    code: str = Field(..., max_length=32, description="Referral code entered at sign-up")
    user_id: str
    user_role: str


class ValidateReferralCodeRequest(BaseModel):
    code: str = Field(..., max_length=32)


class FarmerCashbackRequest(BaseModel):
    farmer_id: str = Field(..., description="Referred farmer who completed their first sale")


# ============ Shared blocks ============

class ReferralLimits(BaseModel):
    max_lifetime_free_deliveries: int
    max_lifetime_cashback: Decimal
    free_deliveries_per_referral: int
    cashback_per_referral: Decimal


class ReferralRewards(BaseModel):
    free_deliveries_per_referral: int
    cashback_per_referral: Decimal


class ReferralInfo(BaseModel):
    farmer_referral_code: Optional[str] = None
    customer_referral_code: Optional[str] = None
    remaining_credit: Decimal
    total_earned_credit: Decimal
    free_deliveries_remaining: int
    total_free_deliveries: int
    referral_status: str
    referral_type: Optional[str] = None


class ReferredUserItem(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    referral_date: datetime
    referral_type: str
    status: str
    reward_type: str
    reward_amount: Decimal
    free_deliveries: int


class ReferrerInfo(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    referral_date: datetime
    referral_type: str


class ReferralCounts(BaseModel):
    total_referrals: int
    farmer_referrals: int
    customer_referrals: int
    pending_referrals: int
    completed_referrals: int


# ============ Responses ============

class ApplyReferralCodeResponse(BaseModel):
    success: bool = True
    message: str
    referral_type: str
    reward_description: str
    free_deliveries_granted: int = 0


class ValidateReferralCodeResponse(BaseModel):
    valid: bool
    message: Optional[str] = None
    referrer_role: Optional[str] = None
    referrer_id: Optional[str] = None
    code_type: Optional[str] = None
    rewards: Optional[ReferralRewards] = None


class ReferralStatsResponse(BaseModel):
    referral_info: ReferralInfo
    stats: ReferralCounts
    referred_users: List[ReferredUserItem]
    referred_by: Optional[ReferrerInfo] = None
    limits: ReferralLimits


class ReferralHistoryResponse(BaseModel):
    referred_users: List[ReferredUserItem]


class FreeDeliveriesResponse(BaseModel):
    has_free_deliveries: bool
    free_deliveries_remaining: int
    total_free_deliveries: int
    max_lifetime_free_deliveries: int


class GenerateReferralCodeResponse(BaseModel):
    referral_code: str
    farmer_referral_code: str
    customer_referral_code: str


class ReferralInfoResponse(BaseModel):
    referral_code: str
    referral_info: ReferralInfo
    limits: ReferralLimits


class FarmerCashbackResponse(BaseModel):
    success: bool
    message: str
    error_code: Optional[str] = None
    cashback_amount: Decimal = Decimal("0.00")
    referrer_cashback_amount: Decimal = Decimal("0.00")
    max_lifetime_cashback: Optional[Decimal] = None
