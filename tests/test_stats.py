"""
Tests for the read side: stats, history, info, free delivery balance and code validation.
"""
from decimal import Decimal

from modules.referrals.exceptions import ReferralErrorCode
from modules.referrals.models import ReferralStatus
from modules.users.models import UserRole


class TestGetReferralStats:
    """Tests for ReferralService.get_referral_stats"""

    def test_no_profile(self, service, make_user):
        user = make_user(UserRole.CONSUMER)

        result = service.get_referral_stats(user.id)

        assert result.success is False
        assert result.error == ReferralErrorCode.NOT_FOUND

    def test_counts_and_referred_users(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER, first_name="Rosa")
        code = referrer_codes(referrer)["customer_referral_code"]
        consumer = make_user(UserRole.CONSUMER, first_name="Carl")
        farmer = make_user(UserRole.FARMER, first_name="Fern")
        service.apply_referral_code(code, consumer.id, "consumer")
        service.apply_referral_code(code, farmer.id, "farmer")

        result = service.get_referral_stats(referrer.id)

        assert result.success is True
        stats = result.data["stats"]
        assert stats == {
            "total_referrals": 2,
            "farmer_referrals": 1,
            "customer_referrals": 1,
            "pending_referrals": 1,
            "completed_referrals": 1,
        }

        by_id = {item["id"]: item for item in result.data["referred_users"]}
        assert by_id[consumer.id]["name"] == consumer.display_name
        assert by_id[consumer.id]["status"] == "completed"
        assert by_id[consumer.id]["reward_type"] == "free_deliveries"
        assert by_id[consumer.id]["free_deliveries"] == 3
        assert by_id[farmer.id]["status"] == "pending"
        assert by_id[farmer.id]["role"] == "farmer"

        info = result.data["referral_info"]
        assert info["customer_referral_code"] == code
        assert info["free_deliveries_remaining"] == 3
        assert result.data["referred_by"] is None
        assert result.data["limits"]["max_lifetime_free_deliveries"] == 30
        assert result.data["limits"]["max_lifetime_cashback"] == Decimal("300.00")

    def test_referred_by(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.CONSUMER)
        code = referrer_codes(referrer)["customer_referral_code"]
        consumer = make_user(UserRole.CONSUMER)
        service.apply_referral_code(code, consumer.id, "consumer")

        result = service.get_referral_stats(consumer.id)

        referred_by = result.data["referred_by"]
        assert referred_by["id"] == referrer.id
        assert referred_by["name"] == referrer.display_name
        assert referred_by["referral_type"] == "customer_to_customer"
        assert result.data["referral_info"]["referral_status"] == ReferralStatus.COMPLETED.value


class TestGetReferralHistory:

    def test_no_profile(self, service, make_user):
        user = make_user(UserRole.FARMER)

        assert service.get_referral_history(user.id).error == ReferralErrorCode.NOT_FOUND

    def test_lists_outbound_referrals(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        code = referrer_codes(referrer)["farmer_referral_code"]
        for _ in range(3):
            service.apply_referral_code(code, make_user(UserRole.CONSUMER).id, "consumer")

        result = service.get_referral_history(referrer.id)

        assert result.success is True
        assert len(result.data["referred_users"]) == 3
        assert all(item["referral_type"] == "farmer_to_customer" for item in result.data["referred_users"])


class TestCheckFreeDeliveries:

    def test_no_profile_is_zero(self, service, make_user):
        user = make_user(UserRole.CONSUMER)

        result = service.check_free_deliveries(user.id)

        assert result.success is True
        assert result.data == {
            "has_free_deliveries": False,
            "free_deliveries_remaining": 0,
            "total_free_deliveries": 0,
            "max_lifetime_free_deliveries": 30,
        }

    def test_after_referral(self, service, make_user, referrer_codes):
        referrer = make_user(UserRole.FARMER)
        code = referrer_codes(referrer)["customer_referral_code"]
        consumer = make_user(UserRole.CONSUMER)
        service.apply_referral_code(code, consumer.id, "consumer")

        result = service.check_free_deliveries(consumer.id)

        assert result.data["has_free_deliveries"] is True
        assert result.data["free_deliveries_remaining"] == 3

    def test_blocked_profile_cannot_use_balance(self, service, make_user, referrer_codes):
        """The balance is still reported, but nothing is redeemable"""
        referrer = make_user(UserRole.FARMER)
        code = referrer_codes(referrer)["customer_referral_code"]
        consumer = make_user(UserRole.CONSUMER)
        service.apply_referral_code(code, consumer.id, "consumer")
        service.block_referral_profile(consumer.id)

        result = service.check_free_deliveries(consumer.id)

        assert result.data["has_free_deliveries"] is False
        assert result.data["free_deliveries_remaining"] == 3


class TestGetReferralInfo:

    def test_creates_codes_lazily(self, service, make_user):
        farmer = make_user(UserRole.FARMER)

        result = service.get_referral_info(farmer.id, farmer.role)

        assert result.success is True
        assert result.data["referral_code"].startswith("FF")
        assert result.data["referral_info"]["customer_referral_code"].startswith("FC")
        assert result.data["limits"]["free_deliveries_per_referral"] == 3

        again = service.get_referral_info(farmer.id, farmer.role)
        assert again.data["referral_code"] == result.data["referral_code"]

    def test_consumer_primary_code(self, service, make_user):
        consumer = make_user(UserRole.CONSUMER)

        result = service.get_referral_info(consumer.id, "consumer")

        assert result.data["referral_code"].startswith("FC")


class TestValidateReferralCode:

    def test_valid_farmer_code(self, service, make_user, referrer_codes):
        farmer = make_user(UserRole.FARMER)
        code = referrer_codes(farmer)["farmer_referral_code"]

        result = service.validate_referral_code(code.lower())

        assert result.success is True
        assert result.data["valid"] is True
        assert result.data["referrer_role"] == "farmer"
        assert result.data["referrer_id"] == farmer.id
        assert result.data["code_type"] == "farmer"
        assert result.data["rewards"]["cashback_per_referral"] == Decimal("30.00")

    def test_customer_code_type(self, service, make_user, referrer_codes):
        consumer = make_user(UserRole.CONSUMER)
        code = referrer_codes(consumer)["customer_referral_code"]

        result = service.validate_referral_code(code)

        assert result.data["code_type"] == "customer"
        assert result.data["referrer_role"] == "consumer"

    def test_unknown_code(self, service):
        """An unknown code is an answer, not a failure"""
        result = service.validate_referral_code("FF12345678")

        assert result.success is True
        assert result.data == {"valid": False, "message": "Invalid referral code"}

    def test_empty_code(self, service):
        result = service.validate_referral_code("   ")

        assert result.success is True
        assert result.data["valid"] is False

    def test_blocked_owner(self, service, make_user, referrer_codes):
        farmer = make_user(UserRole.FARMER)
        code = referrer_codes(farmer)["customer_referral_code"]
        service.block_referral_profile(farmer.id)

        result = service.validate_referral_code(code)

        assert result.data["valid"] is False
        assert "referrer_id" not in result.data


class TestBlockReferralProfile:

    def test_block(self, service, make_user, referrer_codes):
        user = make_user(UserRole.CONSUMER)
        referrer_codes(user)

        result = service.block_referral_profile(user.id)

        assert result.success is True
        assert result.data["referral_status"] == "blocked"
        assert service.store.get_profile(user.id).referral_status == ReferralStatus.BLOCKED

    def test_unknown_profile(self, service, make_user):
        user = make_user(UserRole.CONSUMER)

        assert service.block_referral_profile(user.id).error == ReferralErrorCode.NOT_FOUND
