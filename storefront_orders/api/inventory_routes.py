"""FastAPI routes for stock levels and the stock ledger"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from storefront_orders.api.dependencies import get_inventory_service, require_admin, to_http_error
from storefront_orders.db.database import get_db
from storefront_orders.errors import ValidationError
from storefront_orders.identity import Actor
from storefront_orders.models.schemas import (
    LedgerAuditResponse,
    LowStockProductResponse,
    StockAdjustmentRequest,
    StockLedgerEntryResponse,
    StockLevelResponse,
    StockStatisticsResponse,
)
from storefront_orders.services.inventory_service import InventoryService
from storefront_orders.services.stock_ledger import StockLedger
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


@router.get("/products/{product_id}/available", response_model=StockLevelResponse)
async def get_available_stock(product_id: int, db: Session = Depends(get_db)):
    """Current stock of an active product"""
    try:
        quantity = InventoryService.get_available_stock(db, product_id)
    except ValidationError as e:
        raise to_http_error(e)
    return StockLevelResponse(product_id=product_id, stock_quantity=quantity)


@router.put("/products/{product_id}/stock", response_model=StockLevelResponse)
async def adjust_stock(
    product_id: int,
    adjustment: StockAdjustmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service)
):
    """Apply a signed stock change (admin); stock never drops below zero"""
    logger.info(f"Adjusting stock for product {product_id} by {adjustment.quantity_change}")
    try:
        quantity = inventory.adjust_stock(
            db,
            product_id,
            adjustment.quantity_change,
            adjustment.change_type,
            note=adjustment.note,
            user_id=actor.user_id
        )
    except ValidationError as e:
        raise to_http_error(e)
    return StockLevelResponse(product_id=product_id, stock_quantity=quantity)


@router.get("/products/{product_id}/history", response_model=List[StockLedgerEntryResponse])
async def get_stock_history(
    product_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Newest-first stock ledger of a product"""
    return StockLedger.history(db, product_id, limit=limit, offset=skip)


@router.get("/products/{product_id}/audit", response_model=LedgerAuditResponse)
async def audit_stock(
    product_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Replay the ledger and compare it with the stored stock"""
    try:
        audit = StockLedger.audit(db, product_id)
    except ValidationError as e:
        raise to_http_error(e)

    return LedgerAuditResponse(
        product_id=audit.product_id,
        consistent=audit.consistent,
        entry_count=audit.entry_count,
        opening_quantity=audit.opening_quantity,
        net_change=audit.net_change,
        current_stock=audit.current_stock,
        problems=audit.problems
    )


@router.get("/low-stock", response_model=List[LowStockProductResponse])
async def get_low_stock_products(
    threshold: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service)
):
    return inventory.get_low_stock_products(db, threshold)


@router.get("/statistics", response_model=StockStatisticsResponse)
async def get_stock_statistics(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory_service)
):
    return inventory.get_stock_statistics(db)
