"""
Inventory adjuster: the only writer of product stock and of the stock ledger
"""
from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session
from storefront_orders.errors import InsufficientStockError, OrderNotFoundError, ProductNotFoundError
from storefront_orders.models.inventory import StockChangeType
from storefront_orders.models.order import Order, OrderItem
from storefront_orders.models.product import Product
from storefront_orders.services.stock_ledger import StockLedger
from typing import Dict, List, Optional, Tuple
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class InventoryService:
    """Stock mutations with ledger entries, under a product row lock"""

    def __init__(self, low_stock_threshold: int = 5, alerter=None):
        self.low_stock_threshold = low_stock_threshold
        self.alerter = alerter

    def adjust_stock(
        self,
        db: Session,
        product_id: int,
        delta: int,
        change_type: StockChangeType,
        note: Optional[str] = None,
        user_id: Optional[int] = None,
        order_id: Optional[int] = None
    ) -> int:
        """
        Apply a signed stock change and record it in the ledger

        Stock is clamped at zero; the ledger records the delta actually
        applied. The product write and the ledger entry commit together.

        Returns:
            The new stock quantity
        """
        with tracer.start_as_current_span("inventory_service.adjust_stock") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity.delta", delta)
            span.set_attribute("change.type", change_type.value)

            try:
                product = self._lock_product(db, product_id)
                new_quantity = self._apply(
                    db, product, delta, change_type,
                    note=note, user_id=user_id, order_id=order_id
                )
                db.commit()
            except Exception:
                db.rollback()
                raise

            span.set_attribute("quantity.new", new_quantity)
            self.notify_if_low(product, new_quantity)
            return new_quantity

    def sell(
        self,
        db: Session,
        product_id: int,
        quantity: int,
        order_id: Optional[int] = None,
        user_id: Optional[int] = None
    ) -> int:
        """
        Take stock for a sale inside the caller's transaction

        The availability check and the decrement happen under the same row
        lock, so two orders racing for the last unit cannot both win.

        Raises:
            InsufficientStockError: if the product has fewer than `quantity` units
        """
        with tracer.start_as_current_span("inventory_service.sell") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity.requested", quantity)

            product = self._lock_product(db, product_id)
            if product.stock_quantity < quantity:
                raise InsufficientStockError(
                    product_id, quantity, product.stock_quantity, name=product.name
                )

            return self._apply(
                db, product, -quantity, StockChangeType.SALE,
                note="Stock reduced for order", user_id=user_id, order_id=order_id
            )

    def restore_for_cancelled_order(
        self,
        db: Session,
        order_id: int,
        user_id: Optional[int] = None
    ) -> Dict[int, int]:
        """
        Put every item of a cancelled order back into stock

        Not idempotent: calling it twice restores twice. Callers guarantee a
        single call per order (the cancel transition is crossed once).

        Returns:
            Mapping of product id to its new stock quantity
        """
        with tracer.start_as_current_span("inventory_service.restore_for_cancelled_order") as span:
            span.set_attribute("order.id", order_id)

            if not db.query(Order.id).filter(Order.id == order_id).first():
                raise OrderNotFoundError(order_id)

            items = (
                db.query(OrderItem)
                .filter(OrderItem.order_id == order_id)
                .order_by(OrderItem.product_id)
                .all()
            )

            restored: List[Tuple[Product, int]] = []
            try:
                for item in items:
                    if item.product_id is None:
                        logger.warning(
                            f"Order {order_id} item {item.id} ({item.product_sku}) has no product; skipping restore"
                        )
                        continue
                    product = self._lock_product(db, item.product_id)
                    new_quantity = self._apply(
                        db, product, item.quantity, StockChangeType.RETURN,
                        note=f"Stock restored from cancelled order {order_id}",
                        user_id=user_id, order_id=order_id
                    )
                    restored.append((product, new_quantity))
                db.commit()
            except Exception:
                db.rollback()
                raise

            span.set_attribute("items.restored", len(restored))
            logger.info(f"Stock restored for cancelled order {order_id} ({len(restored)} items)")

            for product, new_quantity in restored:
                self.notify_if_low(product, new_quantity)

            return {product.id: new_quantity for product, new_quantity in restored}

    @staticmethod
    def get_available_stock(db: Session, product_id: int) -> int:
        """Current stock of an active product"""
        product = (
            db.query(Product)
            .filter(Product.id == product_id, Product.is_active.is_(True))
            .first()
        )
        if not product:
            raise ProductNotFoundError(product_id)
        return product.stock_quantity

    def get_low_stock_products(self, db: Session, threshold: Optional[int] = None) -> List[Product]:
        """Active products that are running out but not yet out of stock"""
        limit = self.low_stock_threshold if threshold is None else threshold
        return (
            db.query(Product)
            .filter(
                Product.is_active.is_(True),
                Product.stock_quantity > 0,
                Product.stock_quantity <= limit
            )
            .order_by(Product.stock_quantity.asc(), Product.name.asc())
            .all()
        )

    def get_stock_statistics(self, db: Session) -> Dict[str, float]:
        """Stock health counters across active products"""
        threshold = self.low_stock_threshold
        total, in_stock, low_stock, out_of_stock, total_value = (
            db.query(
                func.count(Product.id),
                func.sum(case((Product.stock_quantity > threshold, 1), else_=0)),
                func.sum(case(
                    (and_(Product.stock_quantity > 0, Product.stock_quantity <= threshold), 1),
                    else_=0
                )),
                func.sum(case((Product.stock_quantity == 0, 1), else_=0)),
                func.sum(Product.stock_quantity * Product.price),
            )
            .filter(Product.is_active.is_(True))
            .one()
        )
        return {
            "total_products": int(total or 0),
            "in_stock": int(in_stock or 0),
            "low_stock": int(low_stock or 0),
            "out_of_stock": int(out_of_stock or 0),
            "total_value": round(float(total_value or 0), 2),
        }

    def notify_if_low(self, product: Product, new_quantity: int) -> None:
        """Fire a low-stock alert; never raises"""
        if not (0 < new_quantity <= self.low_stock_threshold):
            return

        logger.warning(f"Low stock alert for product {product.id}: {new_quantity} remaining")
        if self.alerter is None:
            return

        try:
            self.alerter.notify(product.id, product.name, product.sku, new_quantity)
        except Exception as e:
            logger.error(f"Failed to send low stock alert for product {product.id}: {e}")

    @staticmethod
    def _lock_product(db: Session, product_id: int) -> Product:
        product = (
            db.query(Product)
            .filter(Product.id == product_id)
            .with_for_update()
            .first()
        )
        if not product:
            raise ProductNotFoundError(product_id)
        return product

    @staticmethod
    def _apply(
        db: Session,
        product: Product,
        delta: int,
        change_type: StockChangeType,
        note: Optional[str] = None,
        user_id: Optional[int] = None,
        order_id: Optional[int] = None
    ) -> int:
        previous_quantity = product.stock_quantity or 0
        new_quantity = max(0, previous_quantity + delta)

        product.stock_quantity = new_quantity
        StockLedger.append(
            db,
            product_id=product.id,
            change_type=change_type,
            quantity_change=new_quantity - previous_quantity,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            note=note,
            user_id=user_id,
            order_id=order_id
        )
        return new_quantity
