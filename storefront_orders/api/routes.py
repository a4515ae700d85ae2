"""
FastAPI routes for orders
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from storefront_orders.api.dependencies import (
    get_actor,
    get_customer,
    get_order_service,
    get_state_machine,
    require_admin,
    to_http_error,
)
from storefront_orders.db.database import get_db
from storefront_orders.errors import IntegrationError, ValidationError
from storefront_orders.identity import Actor
from storefront_orders.models.order import Order, OrderStatus, RefundStatus
from storefront_orders.models.schemas import (
    AdminCancelOrderRequest,
    CancellationResponse,
    CancelOrderRequest,
    ManualRefundRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    PaymentStatusUpdate,
    RefundStatusUpdate,
    ReturnStatusUpdate,
    ShipmentInfoUpdate,
    ShippingStatusUpdate,
    StatusTransitionRequest,
    StepOutcomeResponse,
    TrackingResponse,
)
from storefront_orders.services.cancellation_saga import RefundOverride
from storefront_orders.services.order_service import OrderService
from storefront_orders.services.order_state_machine import OrderStateMachine, TransitionResult
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["orders"])


def _load_order(db: Session, order_id: int, actor: Actor) -> Order:
    order = OrderService.get_order(db, order_id)
    if not order:
        logger.warning(f"Order {order_id} not found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id {order_id} not found"
        )
    if not actor.can_access(order.user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot access this order"
        )
    return order


def _cancellation_response(result: TransitionResult) -> CancellationResponse:
    saga = result.saga
    message = "Order cancelled successfully"
    if saga.refund_status == RefundStatus.FAILED:
        message += ". Refund could not be processed automatically; our team will follow up"
    elif saga.refund_status in (RefundStatus.PENDING, RefundStatus.PROCESSED):
        message += f". Refund {saga.refund_status.value}"
    if saga.is_return:
        message += ". Return pickup requested"

    return CancellationResponse(
        order_id=saga.order_id,
        status=result.order.status,
        refund_status=saga.refund_status,
        refund_amount=saga.refund_amount,
        is_return=saga.is_return,
        return_id=saga.return_id,
        message=message,
        steps=[
            StepOutcomeResponse(name=step.name, status=step.status.value, detail=step.detail)
            for step in saga.steps
        ]
    )


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max items to return"),
    user_id: Optional[int] = Query(None, description="Filter by user ID"),
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """
    List all orders with pagination and filters (admin)

    - **skip**: Number of orders to skip (for pagination)
    - **limit**: Maximum number of orders to return
    - **user_id**: Filter by user ID (optional)
    - **status**: Filter by order status (optional)
    """
    logger.info(f"Listing orders: skip={skip}, limit={limit}, user_id={user_id}, status={status}")

    orders, total = OrderService.get_orders(
        db=db,
        skip=skip,
        limit=limit,
        user_id=user_id,
        status=status
    )

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
        page=skip // limit + 1,
        page_size=limit
    )


@router.get("/orders/user/{user_id}", response_model=OrderListResponse)
async def get_user_orders(
    user_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_customer)
):
    """Get all orders for a specific user"""
    if not actor.can_access(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot access these orders"
        )

    orders, total = OrderService.get_orders(db=db, skip=skip, limit=limit, user_id=user_id)

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
        page=skip // limit + 1,
        page_size=limit
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor)
):
    """Get a specific order by ID"""
    logger.info(f"Getting order {order_id}")
    return _load_order(db, order_id, actor)


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    order: OrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_customer),
    order_service: OrderService = Depends(get_order_service)
):
    """
    Create a new order for the calling customer

    This endpoint:
    1. Validates products exist and are active
    2. Checks stock availability
    3. Applies the coupon (if any) and prices the order
    4. Creates the order and takes stock
    """
    logger.info(f"Creating order for user {actor.user_id}")

    try:
        new_order = order_service.create_order(db, order, actor)
    except ValidationError as e:
        logger.warning(f"Order rejected: {e}")
        raise to_http_error(e)

    logger.info(f"Order {new_order.id} created successfully")
    return new_order


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    status_update: StatusTransitionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    """
    Move an order along its lifecycle

    pending -> confirmed -> processing -> shipped -> delivered; any state
    before delivered may also move to cancelled.
    """
    logger.info(f"Updating order {order_id} status to {status_update.status}")

    try:
        result = await state_machine.transition_status(
            db, order_id, status_update.status, actor, reason=status_update.reason
        )
    except ValidationError as e:
        raise to_http_error(e)

    return result.order


@router.post("/orders/{order_id}/cancel", response_model=CancellationResponse)
async def cancel_order(
    order_id: int,
    request: CancelOrderRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_customer),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    """
    Cancel an order

    The order is always cancelled once this succeeds; the response reports
    the refund and return state as they were recorded.
    """
    logger.info(f"Cancelling order {order_id}")

    try:
        result = await state_machine.cancel_order(db, order_id, request.cancellation_reason, actor)
    except ValidationError as e:
        raise to_http_error(e)

    return _cancellation_response(result)


@router.post("/orders/{order_id}/admin-cancel", response_model=CancellationResponse)
async def admin_cancel_order(
    order_id: int,
    request: AdminCancelOrderRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    """Cancel an order, optionally recording a refund settled outside the gateway"""
    refund_override = None
    if request.refund_amount is not None or request.refund_status is not None:
        refund_override = RefundOverride(
            amount=request.refund_amount,
            status=request.refund_status or RefundStatus.PENDING
        )

    try:
        result = await state_machine.cancel_order(
            db, order_id, request.cancellation_reason, actor, refund_override=refund_override
        )
    except ValidationError as e:
        raise to_http_error(e)

    return _cancellation_response(result)


@router.post("/orders/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: int,
    request: ManualRefundRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    """Refund a paid order through the gateway, in full or in part (admin)"""
    logger.info(f"Manual refund requested for order {order_id}")

    try:
        return await state_machine.refund_order(
            db, order_id, actor, amount=request.amount, reason=request.reason
        )
    except ValidationError as e:
        logger.warning(f"Refund rejected for order {order_id}: {e}")
        raise to_http_error(e)
    except IntegrationError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Payment gateway refused the refund: {e}"
        )


@router.patch("/orders/{order_id}/payment-status", response_model=OrderResponse)
async def update_payment_status(
    order_id: int,
    update: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.update_payment_status(db, order_id, update)
    except ValidationError as e:
        raise to_http_error(e)


@router.patch("/orders/{order_id}/shipping-status", response_model=OrderResponse)
async def update_shipping_status(
    order_id: int,
    update: ShippingStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.update_shipping_status(db, order_id, update)
    except ValidationError as e:
        raise to_http_error(e)


@router.patch("/orders/{order_id}/shipment", response_model=OrderResponse)
async def update_shipment_info(
    order_id: int,
    update: ShipmentInfoUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.update_shipment_info(db, order_id, update)
    except ValidationError as e:
        raise to_http_error(e)


@router.patch("/orders/{order_id}/refund-status", response_model=OrderResponse)
async def update_refund_status(
    order_id: int,
    update: RefundStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.update_refund_status(db, order_id, update)
    except ValidationError as e:
        raise to_http_error(e)


@router.patch("/orders/{order_id}/return-status", response_model=OrderResponse)
async def update_return_status(
    order_id: int,
    update: ReturnStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    state_machine: OrderStateMachine = Depends(get_state_machine)
):
    try:
        return state_machine.update_return_status(db, order_id, update)
    except ValidationError as e:
        raise to_http_error(e)


@router.get("/orders/{order_id}/tracking", response_model=TrackingResponse)
async def get_order_tracking(
    order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    order_service: OrderService = Depends(get_order_service)
):
    """Shipment progress, with live carrier tracking when an AWB is assigned"""
    order = _load_order(db, order_id, actor)
    return await order_service.get_tracking(order)
