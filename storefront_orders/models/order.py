"""
Order database models
"""
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime, JSON,
    Enum as SQLEnum, ForeignKey
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from storefront_orders.db.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Order status enum"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status enum"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ShippingStatus(str, enum.Enum):
    """Shipping status enum"""
    NOT_SHIPPED = "not_shipped"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RefundStatus(str, enum.Enum):
    """Refund status enum"""
    NONE = "none"
    PENDING = "pending"
    PARTIAL = "partial"
    PROCESSED = "processed"
    FAILED = "failed"


class ReturnStatus(str, enum.Enum):
    """Return pickup sub-state of a cancelled shipped order"""
    REQUESTED = "requested"
    PICKUP_SCHEDULED = "pickup_scheduled"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Base):
    """Order model"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    order_number = Column(String(32), unique=True, index=True)

    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    shipping_status = Column(SQLEnum(ShippingStatus), default=ShippingStatus.NOT_SHIPPED, nullable=False)
    refund_status = Column(SQLEnum(RefundStatus), default=RefundStatus.NONE, nullable=False)

    # Money (major currency unit)
    currency = Column(String(3), nullable=False, default="INR")
    subtotal = Column(Float, nullable=False)
    tax_amount = Column(Float, nullable=False, default=0.0)
    shipping_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)

    # Coupon locked in at order time
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=True)
    coupon_code = Column(String(64))
    coupon_discount_amount = Column(Float, nullable=False, default=0.0)

    # Customer info and address snapshots
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)

    # Payment
    payment_method = Column(String(50))
    payment_id = Column(String(100))

    # Carrier shipment
    carrier_order_id = Column(String(100))
    carrier_shipment_id = Column(String(100))
    awb_number = Column(String(100))
    tracking_number = Column(String(100))
    courier_name = Column(String(100))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    # Cancellation and refund
    cancellation_reason = Column(Text)
    cancelled_at = Column(DateTime(timezone=True))
    refund_id = Column(String(100))
    refund_amount = Column(Float)
    refunded_at = Column(DateTime(timezone=True))

    # Return pickup (cancellation after dispatch)
    return_requested = Column(Boolean, nullable=False, default=False)
    return_id = Column(String(100))
    return_status = Column(SQLEnum(ReturnStatus))
    return_awb = Column(String(100))
    return_courier = Column(String(100))
    return_requested_at = Column(DateTime(timezone=True))
    return_pickup_scheduled_at = Column(DateTime(timezone=True))
    return_completed_at = Column(DateTime(timezone=True))

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationship
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, total={self.total_amount})>"


class OrderItem(Base):
    """Order item model; product fields are frozen at order time"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    product_snapshot = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationship
    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, qty={self.quantity})>"
