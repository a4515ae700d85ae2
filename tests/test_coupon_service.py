from datetime import datetime, timedelta, timezone

import pytest

from storefront_orders.errors import CouponError, CouponNotFoundError, CouponUsageLimitError
from storefront_orders.models.coupon import Coupon, CouponType, CouponUsage
from storefront_orders.models.order import Order, PaymentStatus
from storefront_orders.models.schemas import CouponCreate, CouponUpdate


def now():
    return datetime.now(timezone.utc)


class TestValidate:

    def test_percentage_discount(self, db, coupons, make_coupon):
        make_coupon(code="SAVE10", value=10)

        result = coupons.validate(db, "save10", 1500.0)

        assert result.valid
        assert result.discount_amount == 150.0
        assert result.coupon.code == "SAVE10"

    def test_percentage_discount_is_capped(self, db, coupons, make_coupon):
        make_coupon(code="BIG50", value=50, maximum_discount_amount=300.0)

        assert coupons.validate(db, "BIG50", 2000.0).discount_amount == 300.0

    def test_fixed_discount_never_exceeds_amount(self, db, coupons, make_coupon):
        make_coupon(code="FLAT500", type=CouponType.FIXED, value=500)

        assert coupons.validate(db, "FLAT500", 320.0).discount_amount == 320.0
        assert coupons.validate(db, "FLAT500", 2000.0).discount_amount == 500.0

    def test_unknown_or_inactive(self, db, coupons, make_coupon):
        make_coupon(code="OLD", is_active=False)

        assert coupons.validate(db, "NOPE", 100.0).error == "Invalid coupon code"
        assert coupons.validate(db, "OLD", 100.0).error == "Invalid coupon code"

    def test_validity_window(self, db, coupons, make_coupon):
        make_coupon(code="SOON", valid_from=now() + timedelta(days=2))
        make_coupon(code="GONE", valid_until=now() - timedelta(days=1))

        assert coupons.validate(db, "SOON", 100.0).error == "Coupon is not yet active"
        assert coupons.validate(db, "GONE", 100.0).error == "Coupon has expired"

    def test_minimum_order_amount(self, db, coupons, make_coupon):
        make_coupon(code="MIN1K", minimum_order_amount=1000.0)

        result = coupons.validate(db, "MIN1K", 999.0)

        assert not result.valid
        assert "1000.00" in result.error
        assert coupons.validate(db, "MIN1K", 1000.0).valid

    def test_usage_limit_reached(self, db, coupons, make_coupon):
        make_coupon(code="ONCE", usage_limit=3, used_count=3)

        assert coupons.validate(db, "ONCE", 100.0).error == "Coupon usage limit has been reached"

    def test_window_checked_before_minimum(self, db, coupons, make_coupon):
        make_coupon(code="BOTH", minimum_order_amount=1000.0, valid_until=now() - timedelta(days=1))

        assert coupons.validate(db, "BOTH", 10.0).error == "Coupon has expired"

    def test_prior_use_by_same_user(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="WELCOME", usage_limit=100)
        order = make_order(user_id=7)
        coupons.apply(db, coupon.id, order.id, 7, 50.0)

        assert coupons.validate(db, "WELCOME", 500.0, user_id=7).error == "You have already used this coupon"
        assert coupons.validate(db, "WELCOME", 500.0, user_id=8).valid
        assert coupons.validate(db, "WELCOME", 500.0).valid


class TestApplyAndReverse:

    def test_apply_is_idempotent_per_order(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10", usage_limit=10)
        order = make_order()

        assert coupons.apply(db, coupon.id, order.id, 7, 100.0) is True
        assert coupons.apply(db, coupon.id, order.id, 7, 100.0) is False

        db.refresh(coupon)
        assert coupon.used_count == 1
        assert db.query(CouponUsage).count() == 1

    def test_apply_past_limit_rolls_back(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="LAST", usage_limit=1)
        first, second = make_order(user_id=7), make_order(user_id=8)
        coupons.apply(db, coupon.id, first.id, 7, 10.0)

        with pytest.raises(CouponUsageLimitError):
            coupons.apply(db, coupon.id, second.id, 8, 10.0)

        db.refresh(coupon)
        assert coupon.used_count == 1
        assert db.query(CouponUsage).filter_by(order_id=second.id).count() == 0

    def test_reverse_round_trip(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10", used_count=4)
        order = make_order()
        coupons.apply(db, coupon.id, order.id, 7, 100.0)

        assert coupons.reverse(db, coupon.id, order.id, 7) is True

        db.refresh(coupon)
        assert coupon.used_count == 4
        assert db.query(CouponUsage).count() == 0

    def test_reverse_without_usage_is_noop(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10", used_count=2)
        order = make_order()

        assert coupons.reverse(db, coupon.id, order.id, 7) is False
        assert coupons.reverse(db, coupon.id, order.id) is False

        db.refresh(coupon)
        assert coupon.used_count == 2

    def test_reverse_twice_decrements_once(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10")
        order = make_order()
        coupons.apply(db, coupon.id, order.id, 7, 100.0)

        coupons.reverse(db, coupon.id, order.id, 7)
        coupons.reverse(db, coupon.id, order.id, 7)

        db.refresh(coupon)
        assert coupon.used_count == 0

    def test_single_use_coupon_second_order_rejected(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="ONEOFF", usage_limit=1)
        first = make_order(user_id=7)

        result = coupons.validate(db, "ONEOFF", 1000.0, user_id=7)
        assert result.valid
        coupons.apply(db, coupon.id, first.id, 7, result.discount_amount)

        second = coupons.validate(db, "ONEOFF", 1000.0, user_id=7)
        assert not second.valid
        assert second.error


class TestCouponAdministration:

    def test_create_uppercases_code(self, db, coupons):
        coupon = coupons.create_coupon(
            db, CouponCreate(code="diwali20", name="Diwali", type=CouponType.PERCENTAGE, value=20)
        )

        assert coupon.code == "DIWALI20"
        assert coupon.used_count == 0

    def test_create_rejects_duplicate_code(self, db, coupons, make_coupon):
        make_coupon(code="DIWALI20")

        with pytest.raises(CouponError):
            coupons.create_coupon(
                db, CouponCreate(code="Diwali20", name="Again", type=CouponType.FIXED, value=100)
            )

    def test_create_schema_rejects_percentage_over_100(self):
        with pytest.raises(ValueError):
            CouponCreate(code="TOOMUCH", name="Nope", type=CouponType.PERCENTAGE, value=120)

    def test_update(self, db, coupons, make_coupon):
        coupon = make_coupon(code="SAVE10", value=10)

        updated = coupons.update_coupon(db, coupon.id, CouponUpdate(value=15, usage_limit=50))

        assert (updated.value, updated.usage_limit) == (15, 50)

    def test_update_rejects_percentage_over_100(self, db, coupons, make_coupon):
        coupon = make_coupon(code="SAVE10", value=10)

        with pytest.raises(CouponError):
            coupons.update_coupon(db, coupon.id, CouponUpdate(value=150))

    def test_soft_delete_deactivates(self, db, coupons, make_coupon):
        coupon = make_coupon(code="SAVE10")

        coupons.delete_coupon(db, coupon.id)

        db.refresh(coupon)
        assert coupon.is_active is False

    def test_hard_delete_detaches_orders(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10")
        order = make_order(coupon_id=coupon.id, coupon_code="SAVE10", discount_amount=100.0)
        coupons.apply(db, coupon.id, order.id, 7, 100.0)

        coupons.delete_coupon(db, coupon.id, hard_delete=True)

        assert db.query(Coupon).count() == 0
        assert db.query(CouponUsage).count() == 0
        stored = db.query(Order).filter_by(id=order.id).one()
        assert stored.coupon_id is None
        assert stored.coupon_code == "SAVE10"

    def test_missing_coupon(self, db, coupons):
        with pytest.raises(CouponNotFoundError):
            coupons.delete_coupon(db, 77)

    def test_best_coupon_for_order(self, db, coupons, make_coupon):
        make_coupon(code="TEN", value=10)
        make_coupon(code="FLAT300", type=CouponType.FIXED, value=300)
        make_coupon(code="HUGE", value=50, minimum_order_amount=10000.0)

        coupon, discount = coupons.get_best_coupon_for_order(db, 2000.0)

        assert coupon.code == "FLAT300"
        assert discount == 300.0

    def test_best_coupon_when_none_apply(self, db, coupons):
        assert coupons.get_best_coupon_for_order(db, 2000.0) == (None, None)

    def test_stats_count_paid_orders_only(self, db, coupons, make_coupon, make_order):
        coupon = make_coupon(code="SAVE10")
        make_order(coupon_id=coupon.id, discount_amount=100.0, payment_status=PaymentStatus.PAID)
        make_order(coupon_id=coupon.id, discount_amount=50.0, payment_status=PaymentStatus.PENDING)

        stats = coupons.get_coupon_stats(db, coupon.id)

        assert stats["total_orders_with_coupon"] == 1
        assert stats["total_discount_given"] == 100.0
        assert stats["total_order_value"] == 1180.0
