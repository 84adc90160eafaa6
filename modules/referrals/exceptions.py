"""
Business-rule failures of the referral program.

Raised inside the referral components and converted into failed
ReferralResult objects by ReferralService, so they never reach routers
as exceptions. Infrastructure failures (deadlocks, timeouts, lost
connections) are not part of this hierarchy.
"""
import enum


class ReferralErrorCode(str, enum.Enum):
    INVALID_CODE = "INVALID_CODE"
    SELF_REFERRAL = "SELF_REFERRAL"
    ALREADY_REFERRED = "ALREADY_REFERRED"
    UNSUPPORTED_ROLE_COMBINATION = "UNSUPPORTED_ROLE_COMBINATION"
    NOT_REFERRED = "NOT_REFERRED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    CAP_REACHED = "CAP_REACHED"
    EXHAUSTED_RETRIES = "EXHAUSTED_RETRIES"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ReferralError(Exception):
    code = ReferralErrorCode.INTERNAL_ERROR
    default_message = "Referral operation failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCodeError(ReferralError):
    code = ReferralErrorCode.INVALID_CODE
    default_message = "Invalid referral code"


class SelfReferralError(ReferralError):
    code = ReferralErrorCode.SELF_REFERRAL
    default_message = "You cannot use your own referral code"


class AlreadyReferredError(ReferralError):
    code = ReferralErrorCode.ALREADY_REFERRED
    default_message = "User already referred by someone else"


class UnsupportedRoleCombinationError(ReferralError):
    code = ReferralErrorCode.UNSUPPORTED_ROLE_COMBINATION
    default_message = "Invalid user role combination"


class NotReferredError(ReferralError):
    code = ReferralErrorCode.NOT_REFERRED
    default_message = "Farmer was not referred by anyone"


class AlreadyCompletedError(ReferralError):
    code = ReferralErrorCode.ALREADY_COMPLETED
    default_message = "Referral cashback already applied"


class CapReachedError(ReferralError):
    code = ReferralErrorCode.CAP_REACHED
    default_message = "Maximum lifetime cashback reached"


class ExhaustedRetriesError(ReferralError):
    """No free referral code found within the attempt bound: the code space is close to saturated"""
    code = ReferralErrorCode.EXHAUSTED_RETRIES
    default_message = "Could not generate a unique referral code"


class NotFoundError(ReferralError):
    code = ReferralErrorCode.NOT_FOUND
    default_message = "Referral information not found"
