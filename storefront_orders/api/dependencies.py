"""
Shared FastAPI dependencies: acting identity, collaborators and services
"""
from fastapi import Depends, Header, HTTPException, status
from storefront_orders.config import Settings, settings
from storefront_orders.errors import ValidationError
from storefront_orders.identity import Actor
from storefront_orders.services.cancellation_saga import CancellationSaga
from storefront_orders.services.carrier_client import CarrierClient
from storefront_orders.services.coupon_service import CouponService
from storefront_orders.services.email_client import EmailClient
from storefront_orders.services.inventory_service import InventoryService
from storefront_orders.services.notifications import LowStockAlerter
from storefront_orders.services.order_service import OrderService
from storefront_orders.services.order_state_machine import OrderStateMachine
from storefront_orders.services.payment_client import PaymentGatewayClient
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# External clients (initialized in main.py)
payment_client: Optional[PaymentGatewayClient] = None
carrier_client: Optional[CarrierClient] = None
email_client: Optional[EmailClient] = None
low_stock_alerter: Optional[LowStockAlerter] = None


def init_clients(config: Settings) -> None:
    """Create the outbound clients shared by all requests"""
    global payment_client, carrier_client, email_client, low_stock_alerter

    payment_client = PaymentGatewayClient(
        base_url=config.payment_gateway_url,
        key_id=config.payment_key_id,
        key_secret=config.payment_key_secret,
        timeout=config.payment_timeout_seconds
    )
    carrier_client = CarrierClient(
        base_url=config.carrier_base_url,
        email=config.carrier_email,
        password=config.carrier_password,
        token_ttl_days=config.carrier_token_ttl_days,
        timeout=config.carrier_timeout_seconds
    )
    email_client = EmailClient(
        api_url=config.email_api_url,
        api_key=config.email_api_key,
        sender=config.email_from,
        timeout=config.email_timeout_seconds
    )
    low_stock_alerter = LowStockAlerter(email_client, config.admin_alert_email)
    if not config.admin_alert_email:
        logger.warning("ADMIN_ALERT_EMAIL not set; low stock alerts will only be logged")


async def close_clients() -> None:
    global payment_client, carrier_client, email_client, low_stock_alerter

    for client in (payment_client, carrier_client, email_client):
        if client is not None:
            await client.close()
    payment_client = carrier_client = email_client = low_stock_alerter = None


def to_http_error(exc: ValidationError) -> HTTPException:
    """Map a domain validation error onto its HTTP status"""
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def get_actor(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Actor:
    """Identity forwarded by the API gateway"""
    return Actor(user_id=x_user_id, is_admin=(x_user_role or "").lower() == "admin")


def get_customer(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity"
        )
    return actor


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return actor


def get_payment_client() -> Optional[PaymentGatewayClient]:
    return payment_client


def get_carrier_client() -> Optional[CarrierClient]:
    return carrier_client


def get_email_client() -> Optional[EmailClient]:
    return email_client


def get_inventory_service() -> InventoryService:
    return InventoryService(
        low_stock_threshold=settings.low_stock_threshold,
        alerter=low_stock_alerter
    )


def get_coupon_service() -> CouponService:
    return CouponService()


def get_order_service(
    inventory: InventoryService = Depends(get_inventory_service),
    coupons: CouponService = Depends(get_coupon_service),
    carrier=Depends(get_carrier_client)
) -> OrderService:
    return OrderService(inventory, coupons, settings, carrier_client=carrier)


def get_state_machine(
    inventory: InventoryService = Depends(get_inventory_service),
    coupons: CouponService = Depends(get_coupon_service),
    payment=Depends(get_payment_client),
    carrier=Depends(get_carrier_client),
    email=Depends(get_email_client)
) -> OrderStateMachine:
    saga = CancellationSaga(
        inventory=inventory,
        coupons=coupons,
        payment_client=payment,
        carrier_client=carrier,
        email_client=email,
        settings=settings
    )
    return OrderStateMachine(saga)
