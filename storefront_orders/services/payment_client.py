"""
HTTP client for the payment gateway (refunds only)
"""
import httpx
from dataclasses import dataclass
from typing import Dict, Optional
from opentelemetry import trace
from storefront_orders.errors import PaymentGatewayError
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class GatewayRefund:
    """Refund as reported by the gateway; amount is in minor currency units"""
    id: str
    amount: int
    status: str


class PaymentGatewayClient:
    """Client for the payment gateway API"""

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport
        )

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[Dict[str, str]] = None
    ) -> GatewayRefund:
        """
        Refund a captured payment

        Args:
            payment_id: Gateway payment id
            amount: Amount in minor currency units (paise)
            notes: Free-form key/values stored with the refund

        Raises:
            PaymentGatewayError: on rejection, transport failure or timeout
        """
        with tracer.start_as_current_span("payment_client.refund") as span:
            span.set_attribute("payment.id", payment_id)
            span.set_attribute("refund.amount", amount)

            url = f"{self.base_url}/payments/{payment_id}/refund"
            logger.info(f"Calling payment gateway: POST {url} amount={amount}")

            try:
                response = await self.client.post(
                    url,
                    json={"amount": amount, "speed": "normal", "notes": notes or {}}
                )
            except httpx.HTTPError as e:
                logger.error(f"Payment gateway request failed: {e}")
                span.record_exception(e)
                raise PaymentGatewayError(f"Refund request failed: {e}") from e

            span.set_attribute("http.status_code", response.status_code)

            if response.status_code != 200:
                logger.error(f"Payment gateway error: {response.status_code} {response.text}")
                raise PaymentGatewayError(
                    f"Refund rejected by gateway ({response.status_code})",
                    status_code=response.status_code
                )

            data = response.json()
            refund = GatewayRefund(
                id=data.get("id"),
                amount=int(data.get("amount", amount)),
                status=data.get("status", "pending")
            )
            logger.info(f"Refund {refund.id} created for payment {payment_id}: {refund.status}")
            return refund

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
