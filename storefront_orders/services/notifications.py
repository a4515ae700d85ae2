"""
Customer and admin notifications built on the email client
"""
import asyncio
from html import escape
from typing import Optional, Set, Tuple
from storefront_orders.config import Settings
from storefront_orders.models.order import Order, RefundStatus
import logging

logger = logging.getLogger(__name__)

_REFUND_LINES = {
    RefundStatus.PROCESSED: "Your refund of {amount} has been processed and should reach you in 5-7 business days.",
    RefundStatus.PENDING: "Your refund of {amount} has been initiated.",
    RefundStatus.PARTIAL: "A partial refund of {amount} has been initiated.",
    RefundStatus.FAILED: "We could not process your refund automatically. Our team will contact you shortly.",
}


def render_cancellation_email(order: Order, settings: Settings) -> Tuple[str, str]:
    """Subject and HTML body for an order cancellation"""
    subject = f"Order {order.order_number} cancelled"

    refund_line = ""
    template = _REFUND_LINES.get(order.refund_status)
    if template:
        amount = order.refund_amount if order.refund_amount is not None else order.total_amount
        refund_line = f"<p>{template.format(amount=f'{order.currency} {amount:.2f}')}</p>"

    return_line = ""
    if order.return_requested:
        return_line = "<p>A return pickup has been scheduled from your shipping address.</p>"

    reason = escape(order.cancellation_reason or "")
    html = (
        f"<h2>Your order has been cancelled</h2>"
        f"<p>Hi {escape(order.customer_name)},</p>"
        f"<p>Order <strong>{order.order_number}</strong> was cancelled.</p>"
        f"<p>Reason: {reason}</p>"
        f"{refund_line}"
        f"{return_line}"
        f"<p><a href=\"{settings.client_url}/orders\">View your orders</a></p>"
        f"<p>{escape(settings.company_name)}</p>"
    )
    return subject, html


class LowStockAlerter:
    """Emails the admin when a product runs low, without blocking the caller"""

    def __init__(self, email_client, admin_email: Optional[str]):
        self.email_client = email_client
        self.admin_email = admin_email
        self._pending: Set[asyncio.Task] = set()

    def notify(self, product_id: int, name: str, sku: str, quantity: int) -> None:
        if not self.admin_email or self.email_client is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.info(f"No event loop; low stock alert for product {product_id} only logged")
            return

        subject = f"Low stock: {name} ({sku})"
        html = (
            f"<p>Product <strong>{escape(name)}</strong> (SKU {escape(sku)}) "
            f"has {quantity} units left.</p>"
        )
        task = loop.create_task(self.email_client.send(self.admin_email, subject, html))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(f"Low stock alert failed: {task.exception()}")
        elif not task.result().success:
            logger.error(f"Low stock alert failed: {task.result().error}")
