"""
Tests for farmer referral cashback.

- Single settlement per referred farmer
- Referrer farmers share the bounded grant, consumer referrers do not
- Hard failure at the lifetime cap, partial grant just below it
"""
from decimal import Decimal

from modules.referrals.exceptions import ReferralErrorCode
from modules.referrals.models import (
    ReferralHistory,
    ReferralHistoryStatus,
    ReferralStatus,
    RewardType,
)
from modules.users.models import UserRole


def refer(service, referrer_codes, referrer, referred):
    code = referrer_codes(referrer)["farmer_referral_code"]
    result = service.apply_referral_code(code, referred.id, referred.role.value)
    assert result.success, result.message
    return code


class TestApplyFarmerReferralCashback:
    """Tests for ReferralService.apply_farmer_referral_cashback"""

    def test_farmer_referred_by_farmer(self, db, service, make_user, referrer_codes):
        """First call pays both farmers, second call reports already completed"""
        referrer = make_user(UserRole.FARMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, referrer, farmer)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is True
        assert result.data["cashback_amount"] == Decimal("30.00")
        assert result.data["referrer_cashback_amount"] == Decimal("30.00")
        assert result.message == "Cashback of $30.00 applied successfully"

        profile = service.store.get_profile(farmer.id)
        assert profile.referral_status == ReferralStatus.COMPLETED
        assert profile.total_earned_credit == Decimal("30.00")
        assert profile.remaining_credit == Decimal("30.00")

        referrer_profile = service.store.get_profile(referrer.id)
        assert referrer_profile.total_earned_credit == Decimal("30.00")
        assert referrer_profile.referral_status != ReferralStatus.COMPLETED

        history = db.query(ReferralHistory).filter(ReferralHistory.referred_id == farmer.id).one()
        assert history.status == ReferralHistoryStatus.COMPLETED
        assert history.referred_reward_type == RewardType.CASHBACK
        assert history.referred_reward_amount == Decimal("30.00")
        assert history.referrer_reward_type == RewardType.CASHBACK
        assert history.qualification_event == "first_sale"
        assert history.qualification_date is not None

        again = service.apply_farmer_referral_cashback(farmer.id)

        assert again.success is False
        assert again.error == ReferralErrorCode.ALREADY_COMPLETED
        assert service.store.get_profile(farmer.id).total_earned_credit == Decimal("30.00")
        assert service.store.get_profile(referrer.id).total_earned_credit == Decimal("30.00")

    def test_consumer_referrer_gets_no_cashback(self, db, service, make_user, referrer_codes):
        consumer = make_user(UserRole.CONSUMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, consumer, farmer)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is True
        assert result.data["referrer_cashback_amount"] == Decimal("0.00")
        assert service.store.get_profile(consumer.id).total_earned_credit == Decimal("0.00")

        history = db.query(ReferralHistory).filter(ReferralHistory.referred_id == farmer.id).one()
        assert history.referrer_reward_type == RewardType.NONE

    def test_blocked_referrer_gets_no_cashback(self, db, service, make_user, referrer_codes):
        """The referred farmer is still paid when their referrer was blocked after attribution"""
        referrer = make_user(UserRole.FARMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, referrer, farmer)
        service.block_referral_profile(referrer.id)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is True
        assert result.data["cashback_amount"] == Decimal("30.00")
        assert result.data["referrer_cashback_amount"] == Decimal("0.00")
        assert service.store.get_profile(referrer.id).total_earned_credit == Decimal("0.00")
        assert service.store.get_profile(farmer.id).total_earned_credit == Decimal("30.00")

        history = db.query(ReferralHistory).filter(ReferralHistory.referred_id == farmer.id).one()
        assert history.referrer_reward_type == RewardType.NONE

    def test_not_referred(self, service, make_user, referrer_codes):
        farmer = make_user(UserRole.FARMER)
        referrer_codes(farmer)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is False
        assert result.error == ReferralErrorCode.NOT_REFERRED

    def test_no_profile(self, service, make_user):
        farmer = make_user(UserRole.FARMER)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.error == ReferralErrorCode.NOT_REFERRED

    def test_not_a_farmer(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        consumer = make_user(UserRole.CONSUMER)
        refer(service, referrer_codes, referrer, consumer)

        result = service.apply_farmer_referral_cashback(consumer.id)

        assert result.error == ReferralErrorCode.UNSUPPORTED_ROLE_COMBINATION

    def test_unknown_farmer(self, service):
        result = service.apply_farmer_referral_cashback("00000000-0000-0000-0000-000000000000")

        assert result.error == ReferralErrorCode.NOT_FOUND

    def test_blocked_profile(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, referrer, farmer)
        service.block_referral_profile(farmer.id)

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.error == ReferralErrorCode.ALREADY_COMPLETED
        assert service.store.get_profile(farmer.id).total_earned_credit == Decimal("0.00")


class TestCashbackCap:
    """Cashback is gated by the lifetime cap"""

    def test_cap_reached(self, db, service, make_user, referrer_codes):
        """No partial payout once the cap is hit"""
        referrer = make_user(UserRole.FARMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, referrer, farmer)
        profile = service.store.get_profile(farmer.id)
        profile.total_earned_credit = Decimal("300.00")
        profile.remaining_credit = Decimal("120.00")
        db.commit()

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is False
        assert result.error == ReferralErrorCode.CAP_REACHED
        profile = service.store.get_profile(farmer.id)
        assert profile.referral_status == ReferralStatus.ACTIVE
        assert profile.remaining_credit == Decimal("120.00")
        assert service.store.get_profile(referrer.id).total_earned_credit == Decimal("0.00")

        history = db.query(ReferralHistory).filter(ReferralHistory.referred_id == farmer.id).one()
        assert history.status == ReferralHistoryStatus.PENDING

    def test_partial_grant_near_cap(self, db, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        farmer = make_user(UserRole.FARMER)
        refer(service, referrer_codes, referrer, farmer)

        profile = service.store.get_profile(farmer.id)
        profile.total_earned_credit = Decimal("285.00")
        profile.remaining_credit = Decimal("0.00")
        referrer_profile = service.store.get_profile(referrer.id)
        referrer_profile.total_earned_credit = Decimal("290.00")
        referrer_profile.remaining_credit = Decimal("5.00")
        db.commit()

        result = service.apply_farmer_referral_cashback(farmer.id)

        assert result.success is True
        assert result.data["cashback_amount"] == Decimal("15.00")
        assert result.data["referrer_cashback_amount"] == Decimal("10.00")

        profile = service.store.get_profile(farmer.id)
        assert profile.total_earned_credit == Decimal("300.00")
        assert profile.remaining_credit == Decimal("15.00")
        referrer_profile = service.store.get_profile(referrer.id)
        assert referrer_profile.total_earned_credit == Decimal("300.00")
        assert referrer_profile.remaining_credit == Decimal("15.00")

    def test_referrer_cap_holds_over_many_referrals(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        cap = service.config.MAX_LIFETIME_CASHBACK

        for _ in range(12):
            farmer = make_user(UserRole.FARMER)
            refer(service, referrer_codes, referrer, farmer)
            assert service.apply_farmer_referral_cashback(farmer.id).success is True
            assert service.store.get_profile(referrer.id).total_earned_credit <= cap

        assert service.store.get_profile(referrer.id).total_earned_credit == cap
