"""
Product database model (stock side only; catalog lives elsewhere)
"""
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON, CheckConstraint
from sqlalchemy.sql import func
from storefront_orders.db.database import Base


class Product(Base):
    """Product model"""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), unique=True, nullable=False, index=True)
    price = Column(Float, nullable=False)
    category = Column(String(100))
    attributes = Column(JSON, nullable=False, default=dict)
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def snapshot(self) -> dict:
        """Frozen copy embedded into order items"""
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "price": self.price,
            "category": self.category,
            "attributes": dict(self.attributes or {}),
        }

    def __repr__(self):
        return f"<Product(id={self.id}, sku={self.sku}, stock={self.stock_quantity})>"
