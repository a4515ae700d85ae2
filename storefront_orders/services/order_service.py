"""
Order creation, pricing and queries
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from storefront_orders.config import Settings
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
from storefront_orders.models.order import Order, OrderItem, OrderStatus, PaymentStatus, ShippingStatus
from storefront_orders.models.product import Product
from storefront_orders.models.schemas import OrderCreate
from storefront_orders.services.coupon_service import CouponService
from storefront_orders.services.inventory_service import InventoryService
from typing import Any, Dict, List, Optional, Tuple
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class OrderTotals:
    subtotal: float
    discount_amount: float
    tax_amount: float
    shipping_amount: float
    total_amount: float


def calculate_totals(subtotal: float, discount_amount: float, settings: Settings) -> OrderTotals:
    """
    Price an order

    Tax applies to the discounted amount. Shipping is free once the
    subtotal exceeds the threshold.
    """
    subtotal = round(subtotal, 2)
    discount_amount = round(min(discount_amount, subtotal), 2)
    tax_amount = round((subtotal - discount_amount) * settings.tax_rate, 2)
    shipping_amount = 0.0 if subtotal > settings.free_shipping_threshold else settings.flat_shipping_fee
    total_amount = round(subtotal - discount_amount + tax_amount + shipping_amount, 2)
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        shipping_amount=shipping_amount,
        total_amount=total_amount
    )


def format_order_number(order_id: int, created: Optional[datetime] = None) -> str:
    created = created or datetime.now(timezone.utc)
    return f"ORD{created:%Y%m%d}{order_id:06d}"


class OrderService:
    """Order service for business logic"""

    def __init__(
        self,
        inventory: InventoryService,
        coupons: CouponService,
        settings: Settings,
        carrier_client=None
    ):
        self.inventory = inventory
        self.coupons = coupons
        self.settings = settings
        self.carrier_client = carrier_client

    def create_order(self, db: Session, order_data: OrderCreate, actor: Actor) -> Order:
        """
        Create new order with stock validation

        Process:
        1. Validate all products exist and are active
        2. Check stock availability and freeze product snapshots
        3. Validate the coupon and price the order
        4. Create order and items
        5. Take stock and record coupon usage

        Everything commits together or not at all.
        """
        with tracer.start_as_current_span("order_service.create_order") as span:
            if actor.user_id is None:
                raise PermissionDeniedError("Placing an order requires a customer")
            if not order_data.items:
                raise EmptyOrderError()

            span.set_attribute("user.id", actor.user_id)
            span.set_attribute("items.count", len(order_data.items))
            logger.info(f"Creating order for user {actor.user_id} with {len(order_data.items)} items")

            try:
                order = self._build_order(db, order_data, actor, span)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            for item in order.items:
                product = db.query(Product).filter(Product.id == item.product_id).first()
                if product:
                    self.inventory.notify_if_low(product, product.stock_quantity)

            span.set_attribute("order.id", order.id)
            logger.info(f"Order {order.order_number} created successfully")
            return order

    def _build_order(self, db: Session, order_data: OrderCreate, actor: Actor, span) -> Order:
        # Steps 1 & 2: validate products and check stock
        lines: List[Dict[str, Any]] = []
        subtotal = 0.0
        for item_data in order_data.items:
            product = db.query(Product).filter(Product.id == item_data.product_id).first()
            if not product:
                raise ProductNotFoundError(item_data.product_id)
            if not product.is_active:
                raise ValidationError(f"Product {product.name} is not available")
            if product.stock_quantity < item_data.quantity:
                raise InsufficientStockError(
                    product.id, item_data.quantity, product.stock_quantity, name=product.name
                )

            line_total = round(product.price * item_data.quantity, 2)
            subtotal += line_total
            lines.append({
                "product_id": product.id,
                "product_name": product.name,
                "product_sku": product.sku,
                "quantity": item_data.quantity,
                "unit_price": product.price,
                "total_price": line_total,
                "product_snapshot": product.snapshot(),
            })

        # Step 3: coupon and totals
        coupon = None
        discount = 0.0
        if order_data.coupon_code:
            result = self.coupons.validate(db, order_data.coupon_code, subtotal, actor.user_id)
            if not result.valid:
                raise CouponError(result.error)
            coupon = result.coupon
            discount = result.discount_amount or 0.0

        totals = calculate_totals(subtotal, discount, self.settings)
        span.set_attribute("order.total_amount", totals.total_amount)

        # Step 4: order and items
        shipping_address = order_data.shipping_address.model_dump()
        billing_address = (order_data.billing_address or order_data.shipping_address).model_dump()
        order = Order(
            user_id=actor.user_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            shipping_status=ShippingStatus.NOT_SHIPPED,
            currency=self.settings.currency,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            shipping_amount=totals.shipping_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            coupon_discount_amount=totals.discount_amount,
            customer_name=order_data.customer_name,
            customer_email=order_data.customer_email,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method=order_data.payment_method,
            notes=order_data.notes
        )
        db.add(order)
        db.flush()  # Get order ID
        order.order_number = format_order_number(order.id)
        db.flush()

        for line in lines:
            db.add(OrderItem(order_id=order.id, **line))

        # Step 5: stock and coupon usage
        for line in lines:
            self.inventory.sell(
                db, line["product_id"], line["quantity"],
                order_id=order.id, user_id=actor.user_id
            )
        if coupon:
            self.coupons.record_usage(db, coupon.id, order.id, actor.user_id, totals.discount_amount)

        return order

    @staticmethod
    def get_order(db: Session, order_id: int) -> Optional[Order]:
        """Get order by ID"""
        with tracer.start_as_current_span("order_service.get_order") as span:
            span.set_attribute("order.id", order_id)
            return db.query(Order).filter(Order.id == order_id).first()

    @staticmethod
    def get_orders(
        db: Session,
        skip: int = 0,
        limit: int = 100,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None
    ) -> Tuple[List[Order], int]:
        """Get list of orders with filters, newest first"""
        with tracer.start_as_current_span("order_service.get_orders") as span:
            query = db.query(Order)

            if user_id:
                query = query.filter(Order.user_id == user_id)
                span.set_attribute("filter.user_id", user_id)

            if status:
                query = query.filter(Order.status == status)
                span.set_attribute("filter.status", status.value)

            total = query.count()
            orders = query.order_by(Order.id.desc()).offset(skip).limit(limit).all()

            span.set_attribute("orders.total", total)
            span.set_attribute("orders.returned", len(orders))

            return orders, total

    async def get_tracking(self, order: Order) -> Dict[str, Any]:
        """Shipment state of an order plus live carrier tracking when available"""
        with tracer.start_as_current_span("order_service.get_tracking") as span:
            span.set_attribute("order.id", order.id)

            tracking_info = None
            if order.awb_number and self.carrier_client:
                try:
                    tracking_info = await self.carrier_client.track_by_awb(order.awb_number)
                except CarrierError as e:
                    logger.warning(f"Tracking lookup failed for order {order.id}: {e}")
                    span.record_exception(e)

            return {
                "order_number": order.order_number,
                "status": order.status,
                "shipping_status": order.shipping_status,
                "tracking_number": order.tracking_number,
                "awb_number": order.awb_number,
                "courier_name": order.courier_name,
                "shipped_at": order.shipped_at,
                "delivered_at": order.delivered_at,
                "tracking_info": tracking_info,
            }
