from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging

from database.base import get_db
from modules.users.models import User
from modules.referrals.exceptions import ReferralErrorCode
from modules.referrals.service import ReferralResult, ReferralService
from modules.referrals.schemas import (
    ApplyReferralCodeRequest,
    ApplyReferralCodeResponse,
    ValidateReferralCodeRequest,
    ValidateReferralCodeResponse,
    FarmerCashbackRequest,
    FarmerCashbackResponse,
    ReferralStatsResponse,
    ReferralHistoryResponse,
    FreeDeliveriesResponse,
    GenerateReferralCodeResponse,
    ReferralInfoResponse,
    ReferralInfo,
)
from shared.dependencies import get_current_user, get_admin_user
from shared.exceptions import (
    BadRequestException,
    ConflictException,
    InternalServerException,
    NotFoundException,
)

logger = logging.getLogger(__name__)

router = APIRouter()

HTTP_ERRORS = {
    ReferralErrorCode.INVALID_CODE: BadRequestException,
    ReferralErrorCode.SELF_REFERRAL: BadRequestException,
    ReferralErrorCode.UNSUPPORTED_ROLE_COMBINATION: BadRequestException,
    ReferralErrorCode.NOT_REFERRED: BadRequestException,
    ReferralErrorCode.ALREADY_REFERRED: ConflictException,
    ReferralErrorCode.NOT_FOUND: NotFoundException,
}

# Reported as "no further reward", not as failures
NO_REWARD_CODES = {ReferralErrorCode.CAP_REACHED, ReferralErrorCode.ALREADY_COMPLETED}


def raise_for_result(result: ReferralResult) -> None:
    """Map a failed ReferralResult to an HTTP error by its code, never by its message"""
    if result.success:
        return
    exception_class = HTTP_ERRORS.get(result.error, InternalServerException)
    raise exception_class(result.message, error_code=result.error.value if result.error else None)


# ============ Public Endpoints ============

@router.post("/apply", response_model=ApplyReferralCodeResponse)
def apply_referral_code(
    data: ApplyReferralCodeRequest,
    db: Session = Depends(get_db)
):
    """
    Apply a referral code right after registration.

    Consumers receive their free deliveries immediately; farmers get their
    cashback after the first sale.
    """
    result = ReferralService(db).apply_referral_code(data.code, data.user_id, data.user_role)
    raise_for_result(result)
    return {"message": "Referral code applied successfully", **result.data}


@router.post(
    "/validate",
    response_model=ValidateReferralCodeResponse,
    responses={404: {"model": ValidateReferralCodeResponse}},
)
def validate_referral_code(
    data: ValidateReferralCodeRequest,
    db: Session = Depends(get_db)
):
    """Check a code before sign-up. Read-only. Unknown codes answer 404 with valid=false."""
    result = ReferralService(db).validate_referral_code(data.code)
    raise_for_result(result)
    if not result.data["valid"]:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ValidateReferralCodeResponse(**result.data).model_dump(mode="json"),
        )
    return result.data


# ============ User Endpoints ============

@router.get("/my-referrals", response_model=ReferralStatsResponse)
def get_my_referrals(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = ReferralService(db).get_referral_stats(current_user.id)
    raise_for_result(result)
    return result.data


@router.get("/history", response_model=ReferralHistoryResponse)
def get_referral_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = ReferralService(db).get_referral_history(current_user.id)
    raise_for_result(result)
    return result.data


@router.get("/free-deliveries", response_model=FreeDeliveriesResponse)
def check_free_deliveries(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = ReferralService(db).check_free_deliveries(current_user.id)
    raise_for_result(result)
    return result.data


@router.post("/generate-code", response_model=GenerateReferralCodeResponse)
def generate_referral_code(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Idempotent: returns the existing codes when the user already has them"""
    result = ReferralService(db).generate_referral_code(current_user.id, current_user.role)
    raise_for_result(result)
    return result.data


@router.get("/info", response_model=ReferralInfoResponse)
def get_referral_info(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = ReferralService(db).get_referral_info(current_user.id, current_user.role)
    raise_for_result(result)
    return result.data


# ============ Admin Endpoints ============

@router.post("/apply-farmer-cashback", response_model=FarmerCashbackResponse)
def apply_farmer_cashback(
    data: FarmerCashbackRequest,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """
    Pay the referred farmer's cashback once their first sale is recorded.

    Requires: Admin. Cap reached and already completed come back as 200 with success=false.
    """
    result = ReferralService(db).apply_farmer_referral_cashback(data.farmer_id)
    if not result.success and result.error in NO_REWARD_CODES:
        return {"success": False, "message": result.message, "error_code": result.error.value}
    raise_for_result(result)
    return {"success": True, "message": result.message, **result.data}


@router.post("/profiles/{user_id}/block", response_model=ReferralInfo)
def block_referral_profile(
    user_id: str,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Requires: Admin"""
    result = ReferralService(db).block_referral_profile(user_id)
    raise_for_result(result)
    logger.info(f"Referral profile {user_id} blocked by admin {current_user.id}")
    return result.data
