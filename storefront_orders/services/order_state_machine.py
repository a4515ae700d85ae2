"""
Order state machine: the single writer of order status
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from storefront_orders.errors import (
    IllegalTransitionError,
    OrderNotFoundError,
    PermissionDeniedError,
    RefundError,
)
from storefront_orders.identity import Actor
from storefront_orders.models.order import (
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShippingStatus,
)
from storefront_orders.models.schemas import (
    PaymentStatusUpdate,
    RefundStatusUpdate,
    ReturnStatusUpdate,
    ShipmentInfoUpdate,
    ShippingStatusUpdate,
)
from storefront_orders.services.cancellation_saga import CancellationSaga, RefundOverride, SagaResult
from typing import Dict, FrozenSet, Optional
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, new_status: OrderStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())


def refunded_so_far(order: Order) -> float:
    """Amount already returned to the customer; failed refunds count as nothing"""
    if order.refund_status in (RefundStatus.PENDING, RefundStatus.PARTIAL, RefundStatus.PROCESSED):
        return order.refund_amount or 0.0
    return 0.0


@dataclass
class TransitionResult:
    order: Order
    previous_status: OrderStatus
    saga: Optional[SagaResult] = None


class OrderStateMachine:
    """Validates and applies order transitions"""

    def __init__(self, saga: CancellationSaga):
        self.saga = saga

    async def transition_status(
        self,
        db: Session,
        order_id: int,
        new_status: OrderStatus,
        actor: Actor,
        reason: Optional[str] = None,
        refund_override: Optional[RefundOverride] = None
    ) -> TransitionResult:
        """
        Move an order to a new status

        The order row stays locked from the legality check until the new
        status commits, so the cancel edge can be crossed only once.
        Customers may cancel their own orders; every other move is admin only.

        Raises:
            OrderNotFoundError: if the order does not exist
            PermissionDeniedError: if the actor may not make this move
            IllegalTransitionError: if the edge is not in the transition table
        """
        with tracer.start_as_current_span("order_state_machine.transition_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("status.new", new_status.value)

            try:
                order = self._lock_order(db, order_id)
                if not actor.can_access(order.user_id):
                    raise PermissionDeniedError("You cannot modify this order")
                if new_status != OrderStatus.CANCELLED and not actor.is_admin:
                    raise PermissionDeniedError("Only admins can change order status")

                previous_status = order.status
                span.set_attribute("status.old", previous_status.value)
                if not can_transition(previous_status, new_status):
                    raise IllegalTransitionError(order_id, previous_status.value, new_status.value)
            except Exception:
                db.rollback()
                raise

            if new_status == OrderStatus.CANCELLED:
                saga = await self.saga.run(
                    db, order, reason or "Cancelled", actor, refund_override=refund_override
                )
                return TransitionResult(order=order, previous_status=previous_status, saga=saga)

            try:
                order.status = new_status
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            logger.info(f"Order {order_id} status updated: {previous_status.value} -> {new_status.value}")
            return TransitionResult(order=order, previous_status=previous_status)

    async def cancel_order(
        self,
        db: Session,
        order_id: int,
        reason: str,
        actor: Actor,
        refund_override: Optional[RefundOverride] = None
    ) -> TransitionResult:
        return await self.transition_status(
            db, order_id, OrderStatus.CANCELLED, actor,
            reason=reason, refund_override=refund_override
        )

    async def refund_order(
        self,
        db: Session,
        order_id: int,
        actor: Actor,
        amount: Optional[float] = None,
        reason: Optional[str] = None
    ) -> Order:
        """
        Refund a paid order through the gateway (admin)

        Settles refunds the cancellation could not make. Without an amount
        the part of the total not yet refunded is returned. A refund that
        leaves something unrefunded is recorded as partial.

        Raises:
            PermissionDeniedError: if the actor is not an admin
            RefundError: if the order was not paid, is fully refunded, or the
                amount exceeds what is left
            PaymentGatewayError: if the gateway rejects the refund
        """
        with tracer.start_as_current_span("order_state_machine.refund_order") as span:
            span.set_attribute("order.id", order_id)

            try:
                if not actor.is_admin:
                    raise PermissionDeniedError("Only admins can issue refunds")
                order = self._lock_order(db, order_id)
                if not order.payment_id or order.payment_status not in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                    raise RefundError(f"Order {order_id} has no captured payment")

                refunded = refunded_so_far(order)
                remaining = round(order.total_amount - refunded, 2)
                if remaining <= 0:
                    raise RefundError(f"Order {order_id} is already fully refunded")

                amount = remaining if amount is None else round(amount, 2)
                if amount > remaining:
                    raise RefundError(
                        f"Refund of {amount:.2f} exceeds the {remaining:.2f} left to refund on order {order_id}"
                    )
                span.set_attribute("refund.amount", amount)

                refund = await self.saga.payment_client.refund(
                    order.payment_id,
                    int(round(amount * 100)),
                    notes={"order_number": order.order_number, "reason": reason or "Manual refund"}
                )

                order.refund_id = refund.id
                order.refund_amount = round(refunded + refund.amount / 100, 2)
                if order.refund_amount >= order.total_amount:
                    order.refund_status = RefundStatus.PROCESSED
                    order.payment_status = PaymentStatus.REFUNDED
                    order.refunded_at = datetime.now(timezone.utc)
                else:
                    order.refund_status = RefundStatus.PARTIAL
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            logger.info(
                f"Refund {order.refund_id} of {amount:.2f} issued for order {order_id} "
                f"({order.refund_status.value})"
            )
            return order

    def update_payment_status(self, db: Session, order_id: int, update: PaymentStatusUpdate) -> Order:
        with tracer.start_as_current_span("order_state_machine.update_payment_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("payment.status", update.payment_status.value)

            def apply(order: Order):
                order.payment_status = update.payment_status
                if update.payment_id:
                    order.payment_id = update.payment_id

            return self._mutate(db, order_id, apply)

    def update_shipping_status(self, db: Session, order_id: int, update: ShippingStatusUpdate) -> Order:
        """Record carrier progress; stamps shipped_at and delivered_at once"""
        with tracer.start_as_current_span("order_state_machine.update_shipping_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("shipping.status", update.shipping_status.value)

            def apply(order: Order):
                now = datetime.now(timezone.utc)
                order.shipping_status = update.shipping_status
                if update.tracking_number:
                    order.tracking_number = update.tracking_number
                if update.shipping_status == ShippingStatus.SHIPPED and not order.shipped_at:
                    order.shipped_at = now
                if update.shipping_status == ShippingStatus.DELIVERED and not order.delivered_at:
                    order.delivered_at = now

            return self._mutate(db, order_id, apply)

    def update_refund_status(self, db: Session, order_id: int, update: RefundStatusUpdate) -> Order:
        with tracer.start_as_current_span("order_state_machine.update_refund_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("refund.status", update.refund_status.value)

            def apply(order: Order):
                order.refund_status = update.refund_status
                if update.refund_status == RefundStatus.PROCESSED and not order.refunded_at:
                    order.refunded_at = datetime.now(timezone.utc)

            return self._mutate(db, order_id, apply)

    def update_shipment_info(self, db: Session, order_id: int, update: ShipmentInfoUpdate) -> Order:
        """Attach the carrier's identifiers once a shipment is booked"""
        with tracer.start_as_current_span("order_state_machine.update_shipment_info") as span:
            span.set_attribute("order.id", order_id)

            def apply(order: Order):
                order.carrier_order_id = update.carrier_order_id
                for field_name in ("carrier_shipment_id", "awb_number", "courier_name"):
                    value = getattr(update, field_name)
                    if value is not None:
                        setattr(order, field_name, value)

            return self._mutate(db, order_id, apply)

    def update_return_status(self, db: Session, order_id: int, update: ReturnStatusUpdate) -> Order:
        with tracer.start_as_current_span("order_state_machine.update_return_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("return.status", update.return_status.value)

            def apply(order: Order):
                now = datetime.now(timezone.utc)
                order.return_status = update.return_status
                if update.return_awb:
                    order.return_awb = update.return_awb
                if update.return_courier:
                    order.return_courier = update.return_courier
                if update.return_status == ReturnStatus.PICKUP_SCHEDULED and not order.return_pickup_scheduled_at:
                    order.return_pickup_scheduled_at = now
                if update.return_status == ReturnStatus.COMPLETED and not order.return_completed_at:
                    order.return_completed_at = now

            return self._mutate(db, order_id, apply)

    def _mutate(self, db: Session, order_id: int, apply) -> Order:
        try:
            order = self._lock_order(db, order_id)
            apply(order)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        logger.info(f"Order {order_id} updated")
        return order

    @staticmethod
    def _lock_order(db: Session, order_id: int) -> Order:
        order = (
            db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .first()
        )
        if not order:
            raise OrderNotFoundError(order_id)
        return order
