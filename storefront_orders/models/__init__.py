from storefront_orders.models.product import Product
from storefront_orders.models.coupon import Coupon, CouponType, CouponUsage
from storefront_orders.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShippingStatus,
)
from storefront_orders.models.inventory import StockChangeType, StockLedgerEntry

__all__ = [
    "Coupon",
    "CouponType",
    "CouponUsage",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
    "RefundStatus",
    "ReturnStatus",
    "ShippingStatus",
    "StockChangeType",
    "StockLedgerEntry",
]
