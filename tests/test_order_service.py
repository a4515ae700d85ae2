import pytest

from conftest import FakeCarrierClient, order_request
from storefront_orders.errors import (
    CarrierError,
    CouponError,
    EmptyOrderError,
    InsufficientStockError,
    PermissionDeniedError,
    ProductNotFoundError,
    ValidationError,
)
from storefront_orders.identity import Actor
from storefront_orders.models.coupon import CouponUsage
from storefront_orders.models.inventory import StockChangeType, StockLedgerEntry
from storefront_orders.models.order import Order, OrderStatus, PaymentStatus
from storefront_orders.models.schemas import OrderCreate
from storefront_orders.services.order_service import OrderService


class TestCreateOrder:

    def test_prices_and_persists_order(self, db, make_product, place_order):
        product = make_product(stock=10, price=500.0)

        order = place_order([(product.id, 2)])

        assert order.order_number.startswith("ORD")
        assert order.order_number.endswith(f"{order.id:06d}")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert (order.subtotal, order.tax_amount, order.shipping_amount) == (1000.0, 180.0, 0.0)
        assert order.total_amount == 1180.0
        assert order.user_id == 7

    def test_items_carry_frozen_snapshot(self, db, make_product, place_order):
        product = make_product(stock=10, price=250.0)
        order = place_order([(product.id, 3)])

        product.name = "Renamed Lamp"
        product.price = 999.0
        db.commit()
        db.refresh(order)

        item = order.items[0]
        assert item.product_name != "Renamed Lamp"
        assert (item.unit_price, item.total_price) == (250.0, 750.0)
        assert item.product_snapshot["sku"] == product.sku
        assert item.product_snapshot["attributes"] == {"material": "brass", "size": "medium"}

    def test_takes_stock_through_ledger(self, db, make_product, place_order):
        product = make_product(stock=10)

        order = place_order([(product.id, 4)])

        db.refresh(product)
        assert product.stock_quantity == 6
        entry = db.query(StockLedgerEntry).one()
        assert entry.change_type == StockChangeType.SALE
        assert (entry.quantity_change, entry.order_id) == (-4, order.id)

    def test_shipping_fee_below_threshold(self, db, make_product, place_order):
        product = make_product(stock=10, price=100.0)

        order = place_order([(product.id, 2)])

        assert order.shipping_amount == 99.0
        assert order.total_amount == 200.0 + 36.0 + 99.0

    def test_coupon_is_locked_in_and_recorded(self, db, make_product, make_coupon, place_order):
        product = make_product(stock=10, price=1000.0)
        coupon = make_coupon(code="SAVE10", value=10, usage_limit=5)

        order = place_order([(product.id, 2)], coupon_code="save10")

        assert order.coupon_id == coupon.id
        assert order.coupon_code == "SAVE10"
        assert order.discount_amount == 200.0
        assert order.tax_amount == 324.0
        assert order.total_amount == 2000.0 - 200.0 + 324.0
        db.refresh(coupon)
        assert coupon.used_count == 1
        assert db.query(CouponUsage).filter_by(order_id=order.id, user_id=7).count() == 1

    def test_ineligible_coupon_rejects_whole_order(self, db, make_product, make_coupon, place_order):
        product = make_product(stock=10, price=100.0)
        make_coupon(code="MIN1K", minimum_order_amount=1000.0)

        with pytest.raises(CouponError):
            place_order([(product.id, 1)], coupon_code="MIN1K")

        db.refresh(product)
        assert product.stock_quantity == 10
        assert db.query(Order).count() == 0

    def test_insufficient_stock_changes_nothing(self, db, make_product, place_order):
        plenty = make_product(stock=10)
        scarce = make_product(stock=1)

        with pytest.raises(InsufficientStockError):
            place_order([(plenty.id, 2), (scarce.id, 2)])

        db.refresh(plenty)
        assert plenty.stock_quantity == 10
        assert db.query(StockLedgerEntry).count() == 0
        assert db.query(Order).count() == 0

    def test_duplicate_lines_cannot_oversell(self, db, make_product, place_order):
        product = make_product(stock=3)

        with pytest.raises(InsufficientStockError):
            place_order([(product.id, 2), (product.id, 2)])

        db.refresh(product)
        assert product.stock_quantity == 3

    def test_unknown_and_inactive_products(self, db, make_product, place_order):
        hidden = make_product(stock=5, is_active=False)

        with pytest.raises(ProductNotFoundError):
            place_order([(9999, 1)])
        with pytest.raises(ValidationError):
            place_order([(hidden.id, 1)])

    def test_empty_order(self, db, order_service, customer):
        request = OrderCreate.model_construct(**order_request([(1, 1)]).model_dump(exclude={"items"}), items=[])

        with pytest.raises(EmptyOrderError):
            order_service.create_order(db, request, customer)

    def test_schema_requires_items(self):
        with pytest.raises(ValueError):
            order_request([])

    def test_requires_customer_identity(self, db, order_service, make_product):
        product = make_product()

        with pytest.raises(PermissionDeniedError):
            order_service.create_order(db, order_request([(product.id, 1)]), Actor())

    def test_low_stock_alert_after_sale(self, db, make_product, place_order, alerter):
        product = make_product(stock=6)

        place_order([(product.id, 2)])

        assert alerter.alerts == [(product.id, product.sku, 4)]


class TestOrderQueries:

    def test_get_orders_filters_and_paginates(self, db, make_order):
        for _ in range(3):
            make_order(user_id=7)
        make_order(user_id=8, status=OrderStatus.CONFIRMED)

        orders, total = OrderService.get_orders(db, user_id=7, limit=2)
        assert total == 3
        assert len(orders) == 2
        assert orders[0].id > orders[1].id

        confirmed, total = OrderService.get_orders(db, status=OrderStatus.CONFIRMED)
        assert total == 1
        assert confirmed[0].user_id == 8

    def test_get_order_missing(self, db):
        assert OrderService.get_order(db, 1) is None

    @pytest.mark.asyncio
    async def test_tracking_with_awb(self, db, order_service, carrier_client, make_order):
        order = make_order(awb_number="AWB123", courier_name="Delhivery")

        tracking = await order_service.get_tracking(order)

        assert carrier_client.tracked == ["AWB123"]
        assert tracking["tracking_info"]["tracking_data"]["awb"] == "AWB123"
        assert tracking["courier_name"] == "Delhivery"

    @pytest.mark.asyncio
    async def test_tracking_survives_carrier_failure(self, db, inventory, coupons, settings, make_order):
        service = OrderService(
            inventory, coupons, settings,
            carrier_client=FakeCarrierClient(error=CarrierError("carrier down"))
        )
        order = make_order(awb_number="AWB123")

        tracking = await service.get_tracking(order)

        assert tracking["tracking_info"] is None
        assert tracking["awb_number"] == "AWB123"

    @pytest.mark.asyncio
    async def test_tracking_without_awb_skips_carrier(self, db, order_service, carrier_client, make_order):
        tracking = await order_service.get_tracking(make_order())

        assert carrier_client.tracked == []
        assert tracking["tracking_info"] is None
