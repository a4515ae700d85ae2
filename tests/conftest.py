import os

os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import itertools
import pytest
from sqlalchemy.orm import sessionmaker

import storefront_orders.models  # noqa: F401
from storefront_orders.config import Settings
from storefront_orders.db.database import Base, build_engine
from storefront_orders.identity import Actor
from storefront_orders.models.coupon import Coupon, CouponType
from storefront_orders.models.order import Order, OrderStatus, PaymentStatus, ShippingStatus
from storefront_orders.models.product import Product
from storefront_orders.models.schemas import OrderCreate
from storefront_orders.services.cancellation_saga import CancellationSaga
from storefront_orders.services.coupon_service import CouponService
from storefront_orders.services.email_client import EmailResult
from storefront_orders.services.inventory_service import InventoryService
from storefront_orders.services.order_service import OrderService
from storefront_orders.services.order_state_machine import OrderStateMachine
from storefront_orders.services.payment_client import GatewayRefund


class FakePaymentClient:
    """Records refund calls; fails when given an error"""

    def __init__(self, status="processed", error=None):
        self.status = status
        self.error = error
        self.calls = []

    async def refund(self, payment_id, amount, notes=None):
        self.calls.append({"payment_id": payment_id, "amount": amount, "notes": notes})
        if self.error:
            raise self.error
        return GatewayRefund(id="rfnd_test_1", amount=amount, status=self.status)


class FakeCarrierClient:
    def __init__(self, error=None):
        self.error = error
        self.cancelled = []
        self.returns = []
        self.tracked = []

    async def cancel_shipment(self, awbs):
        if self.error:
            raise self.error
        self.cancelled.append(list(awbs))
        return {"status": 200}

    async def create_return(self, request):
        if self.error:
            raise self.error
        self.returns.append(request)
        return "RET-9001"

    async def track_by_awb(self, awb):
        self.tracked.append(awb)
        if self.error:
            raise self.error
        return {"tracking_data": {"shipment_status": "in transit", "awb": awb}}


class FakeEmailClient:
    def __init__(self, success=True):
        self.success = success
        self.sent = []

    async def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})
        if not self.success:
            return EmailResult(success=False, error="mailbox unavailable")
        return EmailResult(success=True, message_id=f"msg-{len(self.sent)}")


class RecordingAlerter:
    def __init__(self):
        self.alerts = []

    def notify(self, product_id, name, sku, quantity):
        self.alerts.append((product_id, sku, quantity))


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        tax_rate=0.18,
        free_shipping_threshold=999.0,
        flat_shipping_fee=99.0,
        low_stock_threshold=5,
        company_name="Storefront",
        warehouse_city="Pune",
        warehouse_pincode="411001",
        email_from="orders@storefront.in"
    )


@pytest.fixture
def customer():
    return Actor(user_id=7)


@pytest.fixture
def admin():
    return Actor(user_id=1, is_admin=True)


@pytest.fixture
def alerter():
    return RecordingAlerter()


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def carrier_client():
    return FakeCarrierClient()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def inventory(alerter):
    return InventoryService(low_stock_threshold=5, alerter=alerter)


@pytest.fixture
def coupons():
    return CouponService()


@pytest.fixture
def order_service(inventory, coupons, settings, carrier_client):
    return OrderService(inventory, coupons, settings, carrier_client=carrier_client)


@pytest.fixture
def saga(inventory, coupons, payment_client, carrier_client, email_client, settings):
    return CancellationSaga(
        inventory=inventory,
        coupons=coupons,
        payment_client=payment_client,
        carrier_client=carrier_client,
        email_client=email_client,
        settings=settings
    )


@pytest.fixture
def state_machine(saga):
    return OrderStateMachine(saga)


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(stock=10, price=500.0, is_active=True, name=None):
        n = next(counter)
        product = Product(
            name=name or f"Brass Lamp {n}",
            sku=f"LAMP-{n:04d}",
            price=price,
            category="decor",
            attributes={"material": "brass", "size": "medium"},
            stock_quantity=stock,
            is_active=is_active
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", type=CouponType.PERCENTAGE, value=10.0, **fields):
        coupon = Coupon(
            code=code,
            name=fields.pop("name", f"{code} offer"),
            type=type,
            value=value,
            used_count=fields.pop("used_count", 0),
            is_active=fields.pop("is_active", True),
            **fields
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make


@pytest.fixture
def make_order(db):
    """Bare order row, for tests that do not care how it was priced"""
    counter = itertools.count(1)

    def _make(user_id=7, status=OrderStatus.PENDING, total_amount=1180.0, **fields):
        n = next(counter)
        order = Order(
            user_id=user_id,
            order_number=f"ORD20240101{n:06d}",
            status=status,
            payment_status=fields.pop("payment_status", PaymentStatus.PENDING),
            shipping_status=fields.pop("shipping_status", ShippingStatus.NOT_SHIPPED),
            subtotal=fields.pop("subtotal", 1000.0),
            tax_amount=fields.pop("tax_amount", 180.0),
            shipping_amount=fields.pop("shipping_amount", 0.0),
            total_amount=total_amount,
            customer_name="Asha Rao",
            customer_email="asha@storefront.in",
            shipping_address=fields.pop("shipping_address", SHIPPING_ADDRESS),
            billing_address=fields.pop("billing_address", SHIPPING_ADDRESS),
            **fields
        )
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


SHIPPING_ADDRESS = {
    "first_name": "Asha",
    "last_name": "Rao",
    "address_line_1": "12 MG Road",
    "address_line_2": None,
    "city": "Bengaluru",
    "state": "Karnataka",
    "country": "India",
    "postal_code": "560001",
    "phone": "9876543210",
}


def order_request(items, coupon_code=None):
    """OrderCreate for (product_id, quantity) pairs"""
    return OrderCreate(
        customer_name="Asha Rao",
        customer_email="asha@storefront.in",
        shipping_address=SHIPPING_ADDRESS,
        payment_method="card",
        coupon_code=coupon_code,
        items=[{"product_id": product_id, "quantity": quantity} for product_id, quantity in items]
    )


@pytest.fixture
def place_order(db, order_service, customer):
    """Create an order through the service, as the checkout would"""
    def _place(items, coupon_code=None, actor=None):
        return order_service.create_order(db, order_request(items, coupon_code), actor or customer)

    return _place
