"""
Stock ledger model
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Enum as SQLEnum, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from storefront_orders.db.database import Base
import enum


class StockChangeType(str, enum.Enum):
    """Why a product's stock moved"""
    SALE = "sale"
    RETURN = "return"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"


class StockLedgerEntry(Base):
    """Append-only record of one stock change.

    previous_quantity and new_quantity are both stored so the chain of
    entries can be replayed and checked against the product's stock.
    """
    __tablename__ = "stock_ledger"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    change_type = Column(SQLEnum(StockChangeType), nullable=False)
    quantity_change = Column(Integer, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    note = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    product = relationship("Product")

    def __repr__(self):
        return (
            f"<StockLedgerEntry(product_id={self.product_id}, type={self.change_type}, "
            f"{self.previous_quantity}->{self.new_quantity})>"
        )
