"""FastAPI routes for coupons"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from storefront_orders.api.dependencies import get_actor, get_coupon_service, require_admin, to_http_error
from storefront_orders.db.database import get_db
from storefront_orders.errors import ValidationError
from storefront_orders.identity import Actor
from storefront_orders.models.schemas import (
    BestCouponResponse,
    CouponCreate,
    CouponResponse,
    CouponStatsResponse,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidationResponse,
)
from storefront_orders.services.coupon_service import CouponService
from typing import List
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidationResponse)
async def validate_coupon(
    request: CouponValidateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    coupons: CouponService = Depends(get_coupon_service)
):
    """Check a coupon against an order amount; ineligibility is not an error"""
    result = coupons.validate(db, request.code, request.order_amount, actor.user_id)
    return CouponValidationResponse(
        valid=result.valid,
        discount_amount=result.discount_amount,
        error=result.error,
        coupon=CouponResponse.model_validate(result.coupon) if result.coupon else None
    )


@router.get("/active", response_model=List[CouponResponse])
async def list_active_coupons(
    db: Session = Depends(get_db),
    coupons: CouponService = Depends(get_coupon_service)
):
    """Active coupons that have not expired"""
    return coupons.get_active_coupons(db, unexpired_only=True)


@router.get("/best", response_model=BestCouponResponse)
async def best_coupon_for_order(
    order_amount: float = Query(..., ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    coupons: CouponService = Depends(get_coupon_service)
):
    coupon, discount = coupons.get_best_coupon_for_order(db, order_amount, actor.user_id)
    return BestCouponResponse(
        coupon=CouponResponse.model_validate(coupon) if coupon else None,
        discount_amount=discount
    )


@router.post("", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    coupon: CouponCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    coupons: CouponService = Depends(get_coupon_service)
):
    try:
        return coupons.create_coupon(db, coupon)
    except ValidationError as e:
        raise to_http_error(e)


@router.put("/{coupon_id}", response_model=CouponResponse)
async def update_coupon(
    coupon_id: int,
    coupon: CouponUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    coupons: CouponService = Depends(get_coupon_service)
):
    try:
        return coupons.update_coupon(db, coupon_id, coupon)
    except ValidationError as e:
        raise to_http_error(e)


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coupon(
    coupon_id: int,
    hard: bool = Query(False, description="Remove the coupon and its usage history"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    coupons: CouponService = Depends(get_coupon_service)
):
    """Deactivate a coupon, or delete it outright with ?hard=true"""
    try:
        coupons.delete_coupon(db, coupon_id, hard_delete=hard)
    except ValidationError as e:
        raise to_http_error(e)


@router.get("/{coupon_id}/stats", response_model=CouponStatsResponse)
async def get_coupon_stats(
    coupon_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    coupons: CouponService = Depends(get_coupon_service)
):
    try:
        return coupons.get_coupon_stats(db, coupon_id)
    except ValidationError as e:
        raise to_http_error(e)
