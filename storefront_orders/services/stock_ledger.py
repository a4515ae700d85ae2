"""
Stock ledger: the append-only history that explains every stock value.

Entries are written only by the inventory adjuster, inside the same
transaction as the product write they describe.
"""
from dataclasses import dataclass, field
from sqlalchemy.orm import Session
from storefront_orders.errors import ProductNotFoundError
from storefront_orders.models.inventory import StockChangeType, StockLedgerEntry
from storefront_orders.models.product import Product
from typing import List, Optional
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class LedgerAudit:
    """Outcome of replaying a product's ledger"""
    product_id: int
    current_stock: int
    entry_count: int = 0
    opening_quantity: Optional[int] = None
    net_change: int = 0
    problems: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.problems


class StockLedger:
    """Reads and appends stock ledger entries"""

    @staticmethod
    def append(
        db: Session,
        product_id: int,
        change_type: StockChangeType,
        quantity_change: int,
        previous_quantity: int,
        new_quantity: int,
        note: Optional[str] = None,
        user_id: Optional[int] = None,
        order_id: Optional[int] = None
    ) -> StockLedgerEntry:
        """Add an entry to the caller's transaction (no commit)"""
        entry = StockLedgerEntry(
            product_id=product_id,
            change_type=change_type,
            quantity_change=quantity_change,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            note=note,
            user_id=user_id,
            order_id=order_id
        )
        db.add(entry)
        db.flush()
        logger.debug(
            f"Ledger entry: product {product_id} {change_type.value} "
            f"{quantity_change:+d} ({previous_quantity} -> {new_quantity})"
        )
        return entry

    @staticmethod
    def history(
        db: Session,
        product_id: int,
        limit: int = 50,
        offset: int = 0
    ) -> List[StockLedgerEntry]:
        """Newest-first page of a product's ledger"""
        with tracer.start_as_current_span("stock_ledger.history") as span:
            span.set_attribute("product.id", product_id)
            return (
                db.query(StockLedgerEntry)
                .filter(StockLedgerEntry.product_id == product_id)
                .order_by(StockLedgerEntry.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    @staticmethod
    def audit(db: Session, product_id: int) -> LedgerAudit:
        """Replay the ledger and check it against the product's stock"""
        with tracer.start_as_current_span("stock_ledger.audit") as span:
            span.set_attribute("product.id", product_id)

            product = db.query(Product).filter(Product.id == product_id).first()
            if not product:
                raise ProductNotFoundError(product_id)

            entries = (
                db.query(StockLedgerEntry)
                .filter(StockLedgerEntry.product_id == product_id)
                .order_by(StockLedgerEntry.id.asc())
                .all()
            )

            audit = LedgerAudit(product_id=product_id, current_stock=product.stock_quantity)
            audit.entry_count = len(entries)

            expected_previous = None
            for entry in entries:
                if audit.opening_quantity is None:
                    audit.opening_quantity = entry.previous_quantity
                if expected_previous is not None and entry.previous_quantity != expected_previous:
                    audit.problems.append(
                        f"Entry {entry.id} starts at {entry.previous_quantity}, "
                        f"previous entry ended at {expected_previous}"
                    )
                if entry.previous_quantity + entry.quantity_change != entry.new_quantity:
                    audit.problems.append(
                        f"Entry {entry.id} records {entry.previous_quantity} "
                        f"{entry.quantity_change:+d} = {entry.new_quantity}"
                    )
                audit.net_change += entry.quantity_change
                expected_previous = entry.new_quantity

            if expected_previous is not None and expected_previous != product.stock_quantity:
                audit.problems.append(
                    f"Ledger ends at {expected_previous}, product stock is {product.stock_quantity}"
                )

            span.set_attribute("ledger.consistent", audit.consistent)
            if not audit.consistent:
                logger.error(f"Stock ledger mismatch for product {product_id}: {audit.problems}")

            return audit
