"""
HTTP client for the shipping carrier aggregator
"""
import httpx
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from opentelemetry import trace
from storefront_orders.errors import CarrierError
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CarrierClient:
    """Client for the carrier aggregator API"""

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        token_ttl_days: int = 10,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self.token_ttl = timedelta(days=token_ttl_days)
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    async def login(self) -> str:
        """
        Get a bearer token, reusing the cached one until it expires

        Raises:
            CarrierError: if the carrier rejects the credentials
        """
        now = datetime.now(timezone.utc)
        if self._token and self._token_expires_at and self._token_expires_at > now:
            return self._token

        with tracer.start_as_current_span("carrier_client.login") as span:
            url = f"{self.base_url}/auth/login"
            logger.info("Authenticating with carrier")
            try:
                response = await self.client.post(
                    url, json={"email": self.email, "password": self.password}
                )
            except httpx.HTTPError as e:
                span.record_exception(e)
                raise CarrierError(f"Carrier login failed: {e}") from e

            span.set_attribute("http.status_code", response.status_code)
            token = response.json().get("token") if response.status_code == 200 else None
            if not token:
                logger.error(f"Carrier login rejected: {response.status_code}")
                raise CarrierError("Carrier authentication failed", status_code=response.status_code)

            self._token = token
            self._token_expires_at = now + self.token_ttl
            return token

    async def _request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Dict:
        token = await self.login()
        url = f"{self.base_url}{endpoint}"
        logger.info(f"Calling carrier: {method} {url}")
        try:
            response = await self.client.request(
                method,
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as e:
            logger.error(f"Carrier request failed: {e}")
            raise CarrierError(f"Carrier request to {endpoint} failed: {e}") from e

        if response.status_code >= 400:
            if response.status_code == 401:
                # Token revoked on the carrier side; log in again next time
                self._token = None
            logger.error(f"Carrier error: {response.status_code} {response.text}")
            raise CarrierError(
                f"Carrier returned {response.status_code} for {endpoint}",
                status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise CarrierError(f"Carrier sent an unreadable response for {endpoint}") from e

    async def cancel_shipment(self, awbs: List[str]) -> Dict:
        """Cancel shipments that have not left the warehouse"""
        with tracer.start_as_current_span("carrier_client.cancel_shipment") as span:
            span.set_attribute("shipment.awbs", ",".join(awbs))
            return await self._request("POST", "/orders/cancel/shipment/awbs", {"awbs": awbs})

    async def create_return(self, request: Dict[str, Any]) -> str:
        """
        Create a return pickup for a dispatched order

        Returns:
            Carrier return id
        """
        with tracer.start_as_current_span("carrier_client.create_return") as span:
            span.set_attribute("return.order_id", request.get("order_id", ""))
            data = await self._request("POST", "/orders/return", request)
            return_id = data.get("return_id") or data.get("order_id")
            if not return_id:
                raise CarrierError("Carrier did not return a return id")
            span.set_attribute("return.id", str(return_id))
            return str(return_id)

    async def track_by_awb(self, awb: str) -> Dict:
        with tracer.start_as_current_span("carrier_client.track_by_awb") as span:
            span.set_attribute("shipment.awb", awb)
            return await self._request("GET", f"/courier/track/awb/{awb}")

    async def health_check(self) -> bool:
        """Check that the carrier accepts our credentials"""
        try:
            await self.login()
            return True
        except CarrierError as e:
            logger.error(f"Carrier health check failed: {e}")
            return False

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
