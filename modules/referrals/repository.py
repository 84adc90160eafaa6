from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Dict, Iterable, Optional
import logging

from config.settings import Settings, settings
from modules.referrals.codes import ReferralCodeGenerator
from modules.referrals.exceptions import AlreadyReferredError, ExhaustedRetriesError
from modules.referrals.models import (
    ReferralProfile,
    ReferralHistory,
    ReferralHistoryStatus,
    ReferralStatus,
    ReferralType,
    ReferralCodeType,
    REFERRAL_CODE_PREFIXES,
)

logger = logging.getLogger(__name__)


class ReferralProfileStore:
    """
    Persistence for referral profiles and history rows.

    Every mutating caller works on rows read through the lock_* methods
    (SELECT ... FOR UPDATE), inside the transaction opened by ReferralService.
    """

    def __init__(self, db: Session, code_generator: ReferralCodeGenerator = None, config: Settings = settings):
        self.db = db
        self.config = config
        self.codes = code_generator or ReferralCodeGenerator(db, config)

    # ============ Reads ============

    def get_profile(self, user_id: str) -> Optional[ReferralProfile]:
        return self.db.query(ReferralProfile).filter(ReferralProfile.user_id == str(user_id)).first()

    def lock_profile(self, user_id: str) -> Optional[ReferralProfile]:
        return (
            self.db.query(ReferralProfile)
            .filter(ReferralProfile.user_id == str(user_id))
            .populate_existing()
            .with_for_update()
            .first()
        )

    def lock_profiles(self, user_ids: Iterable[str]) -> Dict[str, ReferralProfile]:
        """Lock several profiles at once, always in primary-key order"""
        ids = sorted({str(uid) for uid in user_ids if uid})
        profiles = (
            self.db.query(ReferralProfile)
            .filter(ReferralProfile.user_id.in_(ids))
            .order_by(ReferralProfile.id)
            .populate_existing()
            .with_for_update()
            .all()
        )
        return {str(p.user_id): p for p in profiles}

    def find_by_code(self, code: str) -> Optional[ReferralProfile]:
        if not code:
            return None
        return self.db.query(ReferralProfile).filter(
            or_(
                ReferralProfile.farmer_referral_code == code,
                ReferralProfile.customer_referral_code == code,
            )
        ).first()

    def lock_history_for_referred(self, referred_id: str) -> Optional[ReferralHistory]:
        return (
            self.db.query(ReferralHistory)
            .filter(ReferralHistory.referred_id == str(referred_id))
            .populate_existing()
            .with_for_update()
            .first()
        )

    # ============ Writes ============

    def get_or_create_locked(self, user_id: str) -> ReferralProfile:
        """
        Return the user's profile locked for update, creating it (with both
        outbound codes) if absent.

        The INSERT runs in a SAVEPOINT. A unique violation means either another
        request created this user's profile first (adopt it) or a code was taken
        between lookup and insert (regenerate). Bounded by REFERRAL_CODE_MAX_ATTEMPTS.
        """
        profile = self.lock_profile(user_id)
        if profile:
            return profile

        max_attempts = self.config.REFERRAL_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            profile = ReferralProfile(
                user_id=str(user_id),
                referral_status=ReferralStatus.PENDING,
                farmer_referral_code=self.codes.generate_code(REFERRAL_CODE_PREFIXES[ReferralCodeType.FARMER]),
                customer_referral_code=self.codes.generate_code(REFERRAL_CODE_PREFIXES[ReferralCodeType.CUSTOMER]),
            )
            try:
                with self.db.begin_nested():
                    self.db.add(profile)
                    self.db.flush()
            except IntegrityError:
                existing = self.lock_profile(user_id)
                if existing:
                    logger.info(f"Referral profile for user {user_id} created concurrently, reusing it")
                    return existing
                logger.warning(f"⚠️ Referral code taken at insert time for user {user_id} (attempt {attempt}/{max_attempts})")
                continue

            logger.info(f"✅ Created referral profile for user {user_id}")
            return profile

        logger.critical(f"🚨 Could not insert referral profile for user {user_id} after {max_attempts} attempts")
        raise ExhaustedRetriesError()

    def ensure_codes(self, profile: ReferralProfile) -> ReferralProfile:
        """Fill in whichever outbound code is missing; existing codes are never replaced"""
        for code_type, column in (
            (ReferralCodeType.FARMER, "farmer_referral_code"),
            (ReferralCodeType.CUSTOMER, "customer_referral_code"),
        ):
            if getattr(profile, column):
                continue
            self._assign_code(profile, column, REFERRAL_CODE_PREFIXES[code_type])
        return profile

    def _assign_code(self, profile: ReferralProfile, column: str, prefix: str) -> None:
        max_attempts = self.config.REFERRAL_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            code = self.codes.generate_code(prefix)
            try:
                with self.db.begin_nested():
                    setattr(profile, column, code)
                    self.db.flush()
                return
            except IntegrityError:
                logger.warning(f"⚠️ Referral code {code} taken at update time (attempt {attempt}/{max_attempts})")

        logger.critical(f"🚨 Could not assign {column} for user {profile.user_id} after {max_attempts} attempts")
        raise ExhaustedRetriesError()

    def add_history(
        self,
        referrer_id: str,
        referred_id: str,
        referral_code: str,
        referral_type: ReferralType,
    ) -> ReferralHistory:
        history = ReferralHistory(
            referrer_id=str(referrer_id),
            referred_id=str(referred_id),
            referral_code=referral_code,
            referral_type=referral_type,
            status=ReferralHistoryStatus.PENDING,
        )
        try:
            with self.db.begin_nested():
                self.db.add(history)
                self.db.flush()
        except IntegrityError:
            # unique referred_id: someone attributed this user in parallel
            raise AlreadyReferredError()
        return history
