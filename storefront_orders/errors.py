"""
Exception taxonomy for the fulfillment core.

Validation errors are expected outcomes (bad transition, no stock, coupon
not usable) and map to 4xx responses. Integration errors come from the
payment gateway, the carrier aggregator or the email sender and are caught
at saga-step boundaries.
"""
from typing import Optional


class OrderServiceError(Exception):
    """Root of all fulfillment errors"""


class ValidationError(OrderServiceError):
    """Request cannot be honoured in the current state"""

    status_code = 400


class OrderNotFoundError(ValidationError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__(f"Order with id {order_id} not found")
        self.order_id = order_id


class ProductNotFoundError(ValidationError):
    status_code = 404

    def __init__(self, product_id: int):
        super().__init__(f"Product with id {product_id} not found")
        self.product_id = product_id


class CouponNotFoundError(ValidationError):
    status_code = 404

    def __init__(self, coupon_id: int):
        super().__init__(f"Coupon with id {coupon_id} not found")
        self.coupon_id = coupon_id


class IllegalTransitionError(ValidationError):
    status_code = 409

    def __init__(self, order_id: int, current: str, requested: str):
        super().__init__(f"Order {order_id} cannot move from {current} to {requested}")
        self.order_id = order_id
        self.current = current
        self.requested = requested


class InsufficientStockError(ValidationError):
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, name: Optional[str] = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label} (requested {requested}, available {available})"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class EmptyOrderError(ValidationError):
    def __init__(self):
        super().__init__("Order must contain at least one item")


class CouponError(ValidationError):
    """Coupon is not usable for this order"""


class CouponUsageLimitError(CouponError):
    status_code = 409

    def __init__(self, coupon_id: int):
        super().__init__(f"Coupon {coupon_id} has reached its usage limit")
        self.coupon_id = coupon_id


class PermissionDeniedError(ValidationError):
    status_code = 403


class RefundError(ValidationError):
    """Order cannot be refunded for the requested amount"""


class IntegrationError(OrderServiceError):
    """An outbound collaborator failed, rejected the call or timed out"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentGatewayError(IntegrationError):
    pass


class CarrierError(IntegrationError):
    pass
