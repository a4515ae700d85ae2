"""
Coupon database models
"""
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime, Enum as SQLEnum,
    ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from storefront_orders.db.database import Base
import enum


class CouponType(str, enum.Enum):
    """Coupon discount type"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    """Coupon model"""
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_coupons_used_count_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(SQLEnum(CouponType), nullable=False)
    value = Column(Float, nullable=False)
    minimum_order_amount = Column(Float)
    maximum_discount_amount = Column(Float)
    usage_limit = Column(Integer)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime(timezone=True))
    valid_until = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    usages = relationship("CouponUsage", back_populates="coupon")

    def __repr__(self):
        return f"<Coupon(code={self.code}, used={self.used_count}/{self.usage_limit})>"


class CouponUsage(Base):
    """A coupon consumed by an order; its presence is what "used" means"""
    __tablename__ = "coupon_usage"
    __table_args__ = (
        UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usage_coupon_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    discount_amount = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coupon = relationship("Coupon", back_populates="usages")
