"""
Cancellation saga: marks an order cancelled, then unwinds everything the
order touched (shipment, payment, stock, coupon) and tells the customer.

Only the first step is critical. Every later step runs in its own
transaction and records its outcome, so a carrier or gateway outage leaves
the order cancelled with the failure visible in its status fields.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from storefront_orders.config import Settings
from storefront_orders.identity import Actor
from storefront_orders.models.order import (
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    ShippingStatus,
)
from storefront_orders.services.coupon_service import CouponService
from storefront_orders.services.inventory_service import InventoryService
from storefront_orders.services.notifications import render_cancellation_email
from typing import Any, Awaitable, Callable, Dict, List, Optional
from opentelemetry import trace
import enum
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RETURNABLE_SHIPPING_STATUSES = (ShippingStatus.SHIPPED, ShippingStatus.IN_TRANSIT, ShippingStatus.DELIVERED)


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    detail: Optional[str] = None


@dataclass
class SagaResult:
    """What the cancellation actually achieved"""
    order_id: int
    steps: List[StepOutcome] = field(default_factory=list)
    refund_status: RefundStatus = RefundStatus.NONE
    refund_amount: Optional[float] = None
    refund_id: Optional[str] = None
    is_return: bool = False
    return_id: Optional[str] = None

    def step(self, name: str) -> Optional[StepOutcome]:
        return next((s for s in self.steps if s.name == name), None)


@dataclass(frozen=True)
class RefundOverride:
    """Refund settled by an admin outside the gateway"""
    amount: Optional[float] = None
    status: RefundStatus = RefundStatus.PENDING


@dataclass(frozen=True)
class _OrderFacts:
    """Order state captured before the cancellation mark overwrites it"""
    order_id: int
    order_number: str
    user_id: int
    status: OrderStatus
    shipping_status: ShippingStatus
    payment_status: PaymentStatus
    payment_id: Optional[str]
    awb_number: Optional[str]
    coupon_id: Optional[int]
    total_amount: float

    @classmethod
    def capture(cls, order: Order) -> "_OrderFacts":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status,
            shipping_status=order.shipping_status,
            payment_status=order.payment_status,
            payment_id=order.payment_id,
            awb_number=order.awb_number,
            coupon_id=order.coupon_id,
            total_amount=order.total_amount
        )

    @property
    def dispatched(self) -> bool:
        return self.status == OrderStatus.SHIPPED or self.shipping_status in RETURNABLE_SHIPPING_STATUSES


def build_return_request(order: Order, settings: Settings) -> Dict[str, Any]:
    """Return pickup from the customer's address to the warehouse"""
    address = order.shipping_address or {}
    return {
        "order_id": f"{order.order_number}_RETURN",
        "order_date": datetime.now(timezone.utc).strftime("%Y-%m-%d"),
        "channel_id": settings.carrier_channel_id,
        "pickup_customer_name": address.get("first_name", order.customer_name),
        "pickup_last_name": address.get("last_name", ""),
        "pickup_address": address.get("address_line_1", ""),
        "pickup_address_2": address.get("address_line_2") or "",
        "pickup_city": address.get("city", ""),
        "pickup_state": address.get("state", ""),
        "pickup_country": address.get("country", ""),
        "pickup_pincode": address.get("postal_code", ""),
        "pickup_email": order.customer_email,
        "pickup_phone": address.get("phone") or "0000000000",
        "drop_customer_name": settings.company_name,
        "drop_last_name": "Warehouse",
        "drop_address": settings.warehouse_address,
        "drop_address_2": "",
        "drop_city": settings.warehouse_city,
        "drop_state": settings.warehouse_state,
        "drop_country": settings.warehouse_country,
        "drop_pincode": settings.warehouse_pincode,
        "drop_email": settings.email_from,
        "drop_phone": settings.warehouse_phone,
        "order_items": [
            {
                "name": item.product_name,
                "sku": item.product_sku,
                "units": item.quantity,
                "selling_price": item.unit_price,
                "discount": 0,
                "tax": 0,
                "hsn": 0,
            }
            for item in order.items
        ],
        "payment_method": "Prepaid",
        "sub_total": round(order.total_amount - order.tax_amount - order.shipping_amount, 2),
        "length": settings.return_parcel_length_cm,
        "breadth": settings.return_parcel_breadth_cm,
        "height": settings.return_parcel_height_cm,
        "weight": settings.return_parcel_weight_kg,
    }


class CancellationSaga:
    """Runs the cancellation steps for an order already locked by the caller"""

    def __init__(
        self,
        inventory: InventoryService,
        coupons: CouponService,
        payment_client,
        carrier_client,
        email_client,
        settings: Settings
    ):
        self.inventory = inventory
        self.coupons = coupons
        self.payment_client = payment_client
        self.carrier_client = carrier_client
        self.email_client = email_client
        self.settings = settings

    async def run(
        self,
        db: Session,
        order: Order,
        reason: str,
        actor: Actor,
        refund_override: Optional[RefundOverride] = None
    ) -> SagaResult:
        """
        Cancel an order

        Raises only if the order cannot be marked cancelled; in that case
        nothing was persisted. Later failures are reported in the result.
        """
        with tracer.start_as_current_span("cancellation_saga.run") as span:
            facts = _OrderFacts.capture(order)
            span.set_attribute("order.id", facts.order_id)
            span.set_attribute("order.prior_status", facts.status.value)

            result = SagaResult(order_id=facts.order_id)
            self._mark_cancelled(db, order, reason, refund_override)
            result.steps.append(StepOutcome("mark_cancelled", StepStatus.SUCCEEDED))
            logger.info(f"Order {facts.order_id} marked cancelled (was {facts.status.value})")

            await self._step(db, result, "shipment", lambda: self._dispose_shipment(order, facts, result))
            await self._step(db, result, "refund", lambda: self._refund(order, facts, reason, refund_override))
            await self._step(db, result, "inventory", lambda: self._restore_stock(db, facts, actor))
            await self._step(db, result, "coupon", lambda: self._reverse_coupon(db, facts))
            await self._step(db, result, "notification", lambda: self._notify(db, order))

            db.refresh(order)
            result.refund_status = order.refund_status
            result.refund_amount = order.refund_amount
            result.refund_id = order.refund_id
            result.is_return = bool(order.return_requested)
            result.return_id = order.return_id

            failed = [s.name for s in result.steps if s.status == StepStatus.FAILED]
            span.set_attribute("saga.failed_steps", ",".join(failed))
            if failed:
                logger.warning(f"Order {facts.order_id} cancelled with failed steps: {failed}")
            else:
                logger.info(f"Order {facts.order_id} cancellation completed")
            return result

    @staticmethod
    def _mark_cancelled(
        db: Session,
        order: Order,
        reason: str,
        refund_override: Optional[RefundOverride]
    ) -> None:
        try:
            order.status = OrderStatus.CANCELLED
            order.shipping_status = ShippingStatus.CANCELLED
            order.cancelled_at = datetime.now(timezone.utc)
            order.cancellation_reason = reason
            if refund_override is not None:
                order.refund_amount = refund_override.amount
                order.refund_status = refund_override.status
            db.commit()
        except Exception:
            db.rollback()
            raise

    async def _step(
        self,
        db: Session,
        result: SagaResult,
        name: str,
        action: Callable[[], Awaitable[StepOutcome]]
    ) -> None:
        with tracer.start_as_current_span(f"cancellation_saga.{name}") as span:
            try:
                outcome = await action()
                db.commit()
            except Exception as e:
                db.rollback()
                span.record_exception(e)
                logger.error(f"Cancellation step '{name}' failed for order {result.order_id}: {e}")
                outcome = StepOutcome(name, StepStatus.FAILED, str(e))

            span.set_attribute("step.status", outcome.status.value)
            result.steps.append(outcome)

    async def _dispose_shipment(self, order: Order, facts: _OrderFacts, result: SagaResult) -> StepOutcome:
        if not facts.awb_number:
            return StepOutcome("shipment", StepStatus.SKIPPED, "No shipment assigned")

        if not facts.dispatched:
            await self.carrier_client.cancel_shipment([facts.awb_number])
            logger.info(f"Shipment {facts.awb_number} cancelled for order {facts.order_id}")
            return StepOutcome("shipment", StepStatus.SUCCEEDED, f"Shipment {facts.awb_number} cancelled")

        return_id = await self.carrier_client.create_return(build_return_request(order, self.settings))
        order.return_requested = True
        order.return_id = return_id
        order.return_status = ReturnStatus.REQUESTED
        order.return_requested_at = datetime.now(timezone.utc)
        logger.info(f"Return {return_id} requested for order {facts.order_id}")
        return StepOutcome("shipment", StepStatus.SUCCEEDED, f"Return {return_id} requested")

    async def _refund(
        self,
        order: Order,
        facts: _OrderFacts,
        reason: str,
        refund_override: Optional[RefundOverride]
    ) -> StepOutcome:
        if refund_override is not None:
            return StepOutcome("refund", StepStatus.SKIPPED, "Refund recorded by admin")
        if facts.payment_status != PaymentStatus.PAID or not facts.payment_id:
            return StepOutcome("refund", StepStatus.SKIPPED, "Order was not paid")

        amount = int(round(facts.total_amount * 100))
        try:
            refund = await self.payment_client.refund(
                facts.payment_id,
                amount,
                notes={"order_number": facts.order_number, "reason": reason}
            )
        except Exception as e:
            # Surfaced to the customer; reconciled by hand, never retried
            logger.error(f"Refund failed for order {facts.order_id}: {e}")
            order.refund_status = RefundStatus.FAILED
            return StepOutcome("refund", StepStatus.FAILED, str(e))

        order.refund_id = refund.id
        order.refund_amount = round(refund.amount / 100, 2)
        if refund.status == "processed":
            order.refund_status = RefundStatus.PROCESSED
            order.payment_status = PaymentStatus.REFUNDED
            order.refunded_at = datetime.now(timezone.utc)
        else:
            order.refund_status = RefundStatus.PENDING
        logger.info(f"Refund {refund.id} for order {facts.order_id}: {order.refund_status.value}")
        return StepOutcome("refund", StepStatus.SUCCEEDED, f"Refund {refund.id} {refund.status}")

    async def _restore_stock(self, db: Session, facts: _OrderFacts, actor: Actor) -> StepOutcome:
        restored = self.inventory.restore_for_cancelled_order(db, facts.order_id, user_id=actor.user_id)
        return StepOutcome("inventory", StepStatus.SUCCEEDED, f"{len(restored)} products restocked")

    async def _reverse_coupon(self, db: Session, facts: _OrderFacts) -> StepOutcome:
        if not facts.coupon_id:
            return StepOutcome("coupon", StepStatus.SKIPPED, "No coupon used")
        reversed_usage = self.coupons.reverse(db, facts.coupon_id, facts.order_id, facts.user_id)
        detail = "Coupon usage reversed" if reversed_usage else "No coupon usage recorded"
        return StepOutcome("coupon", StepStatus.SUCCEEDED, detail)

    async def _notify(self, db: Session, order: Order) -> StepOutcome:
        db.refresh(order)
        subject, html = render_cancellation_email(order, self.settings)
        sent = await self.email_client.send(order.customer_email, subject, html)
        if not sent.success:
            return StepOutcome("notification", StepStatus.FAILED, sent.error)
        return StepOutcome("notification", StepStatus.SUCCEEDED, f"Sent to {order.customer_email}")
