from sqlalchemy import or_
from sqlalchemy.orm import Session
import secrets
import logging

from config.settings import Settings, settings
from modules.referrals.models import ReferralProfile
from modules.referrals.exceptions import ExhaustedRetriesError

logger = logging.getLogger(__name__)


class ReferralCodeGenerator:
    """
    Produces referral codes: prefix ("FF" farmer-facing, "FC" customer-facing)
    followed by random upper-case hex.

    Both code columns share one namespace. The existence lookup here is advisory;
    the unique indexes are the real check, see ReferralProfileStore.
    """

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config

    def candidate(self, prefix: str) -> str:
        return prefix + secrets.token_hex(self.config.REFERRAL_CODE_RANDOM_BYTES).upper()

    def code_exists(self, code: str) -> bool:
        return self.db.query(ReferralProfile.id).filter(
            or_(
                ReferralProfile.farmer_referral_code == code,
                ReferralProfile.customer_referral_code == code,
            )
        ).first() is not None

    def generate_code(self, prefix: str) -> str:
        max_attempts = self.config.REFERRAL_CODE_MAX_ATTEMPTS

        for attempt in range(1, max_attempts + 1):
            code = self.candidate(prefix)
            if not self.code_exists(code):
                return code
            logger.debug(f"Referral code collision on {code} (attempt {attempt}/{max_attempts})")

        logger.critical(f"🚨 No free {prefix} referral code after {max_attempts} attempts, code space nearly saturated")
        raise ExhaustedRetriesError()
