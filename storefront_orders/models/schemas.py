# storefront_orders/models/schemas.py
"""
Pydantic schemas for the order fulfillment service.

Every mutator takes its own named update schema, so the set of columns a
request can touch is fixed by the schema rather than by the request body.
"""
from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from storefront_orders.models.order import (
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShippingStatus,
)
from storefront_orders.models.coupon import CouponType
from storefront_orders.models.inventory import StockChangeType


# Orders

class Address(BaseModel):
    """Postal address, frozen into the order as a snapshot"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    address_line_1: str = Field(..., min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    country: str = Field("India", max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    phone: Optional[str] = Field(None, max_length=20)


class OrderItemCreate(BaseModel):
    """Schema for creating an order item"""
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., gt=0, description="Quantity")


class OrderItemResponse(BaseModel):
    """Schema for order item response"""
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: str
    quantity: int
    unit_price: float
    total_price: float
    product_snapshot: Dict[str, Any]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderCreate(BaseModel):
    """Schema for creating an order from the customer's cart"""
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: EmailStr
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    coupon_code: Optional[str] = Field(None, min_length=1, max_length=64)
    notes: Optional[str] = None
    items: List[OrderItemCreate] = Field(..., min_length=1, description="At least one item required")


class StatusTransitionRequest(BaseModel):
    """Schema for moving an order along its lifecycle"""
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
    """Schema for cancelling an order"""
    cancellation_reason: str = Field(..., min_length=1, max_length=500)


class AdminCancelOrderRequest(CancelOrderRequest):
    """Cancellation with a refund already settled outside the gateway"""
    refund_amount: Optional[float] = Field(None, ge=0)
    refund_status: Optional[RefundStatus] = None


class ManualRefundRequest(BaseModel):
    """Gateway refund issued by an admin; omit amount to refund what is left"""
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_id: Optional[str] = Field(None, max_length=100)


class ShippingStatusUpdate(BaseModel):
    shipping_status: ShippingStatus
    tracking_number: Optional[str] = Field(None, max_length=100)


class ShipmentInfoUpdate(BaseModel):
    carrier_order_id: str = Field(..., min_length=1, max_length=100)
    carrier_shipment_id: Optional[str] = Field(None, max_length=100)
    awb_number: Optional[str] = Field(None, max_length=100)
    courier_name: Optional[str] = Field(None, max_length=100)


class RefundStatusUpdate(BaseModel):
    refund_status: RefundStatus


class ReturnStatusUpdate(BaseModel):
    return_status: ReturnStatus
    return_awb: Optional[str] = Field(None, max_length=100)
    return_courier: Optional[str] = Field(None, max_length=100)


class OrderResponse(BaseModel):
    """Schema for order response"""
    id: int
    user_id: int
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    refund_status: RefundStatus
    currency: str
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    coupon_code: Optional[str] = None
    customer_name: str
    customer_email: str
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    payment_method: Optional[str] = None
    awb_number: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_amount: Optional[float] = None
    return_requested: bool = False
    return_id: Optional[str] = None
    return_status: Optional[ReturnStatus] = None
    items: List[OrderItemResponse]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    """Schema for list of orders"""
    total: int
    orders: List[OrderResponse]
    page: int
    page_size: int


class StepOutcomeResponse(BaseModel):
    name: str
    status: str
    detail: Optional[str] = None


class CancellationResponse(BaseModel):
    """Result of a cancellation; refund and return state are reported as recorded"""
    order_id: int
    status: OrderStatus
    refund_status: RefundStatus
    refund_amount: Optional[float] = None
    is_return: bool
    return_id: Optional[str] = None
    message: str
    steps: List[StepOutcomeResponse]


class TrackingResponse(BaseModel):
    order_number: str
    status: OrderStatus
    shipping_status: ShippingStatus
    tracking_number: Optional[str] = None
    awb_number: Optional[str] = None
    courier_name: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    tracking_info: Optional[Dict[str, Any]] = None


# Inventory

class StockAdjustmentRequest(BaseModel):
    """Schema for an admin stock change"""
    quantity_change: int = Field(..., description="Signed delta applied to stock")
    change_type: StockChangeType = StockChangeType.ADJUSTMENT
    note: Optional[str] = Field(None, max_length=500)

    @field_validator("quantity_change")
    @classmethod
    def non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("quantity_change must not be zero")
        return value


class StockLevelResponse(BaseModel):
    product_id: int
    stock_quantity: int


class StockLedgerEntryResponse(BaseModel):
    id: int
    product_id: int
    change_type: StockChangeType
    quantity_change: int
    previous_quantity: int
    new_quantity: int
    order_id: Optional[int] = None
    user_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LowStockProductResponse(BaseModel):
    id: int
    name: str
    sku: str
    category: Optional[str] = None
    stock_quantity: int

    model_config = ConfigDict(from_attributes=True)


class StockStatisticsResponse(BaseModel):
    total_products: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    total_value: float


class LedgerAuditResponse(BaseModel):
    product_id: int
    consistent: bool
    entry_count: int
    opening_quantity: Optional[int] = None
    net_change: int
    current_stock: int
    problems: List[str]


# Coupons

class CouponBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., ge=0)
    minimum_order_amount: Optional[float] = Field(None, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CouponCreate(CouponBase):
    """Schema for creating a coupon"""
    code: str = Field(..., min_length=1, max_length=64)

    @model_validator(mode="after")
    def percentage_in_range(self):
        if self.type == CouponType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage value must be between 0 and 100")
        return self


class CouponUpdate(BaseModel):
    """Schema for updating a coupon (all fields optional, code and type are fixed)"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    value: Optional[float] = Field(None, ge=0)
    minimum_order_amount: Optional[float] = Field(None, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CouponResponse(CouponBase):
    id: int
    code: str
    used_count: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    order_amount: float = Field(..., ge=0)


class CouponValidationResponse(BaseModel):
    valid: bool
    discount_amount: Optional[float] = None
    error: Optional[str] = None
    coupon: Optional[CouponResponse] = None


class BestCouponResponse(BaseModel):
    coupon: Optional[CouponResponse] = None
    discount_amount: Optional[float] = None


class CouponStatsResponse(BaseModel):
    coupon_id: int
    code: str
    used_count: int
    usage_limit: Optional[int] = None
    total_orders_with_coupon: int
    total_discount_given: float
    total_order_value: float


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    version: str
    timestamp: datetime
