"""
Coupon validation, usage recording and reversal
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import case, func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from storefront_orders.errors import CouponError, CouponNotFoundError, CouponUsageLimitError
from storefront_orders.models.coupon import Coupon, CouponType, CouponUsage
from storefront_orders.models.order import Order, PaymentStatus
from storefront_orders.models.schemas import CouponCreate, CouponUpdate
from typing import Dict, List, Optional, Tuple
from opentelemetry import trace
import logging

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class CouponValidationResult:
    """Eligibility of a coupon for an order amount"""
    valid: bool
    coupon: Optional[Coupon] = None
    discount_amount: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def reject(cls, error: str) -> "CouponValidationResult":
        return cls(valid=False, error=error)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(coupon: Coupon, order_amount: float) -> float:
    """Discount granted by a coupon, rounded to 2 decimals"""
    if coupon.type == CouponType.PERCENTAGE:
        discount = order_amount * coupon.value / 100
        if coupon.maximum_discount_amount:
            discount = min(discount, coupon.maximum_discount_amount)
    else:
        # A fixed discount never exceeds the order amount
        discount = min(coupon.value, order_amount)
    return round(discount, 2)


class CouponService:
    """Coupon service for business logic"""

    @staticmethod
    def get_coupon_by_code(db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(func.upper(Coupon.code) == code.strip().upper()).first()

    @staticmethod
    def get_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise CouponNotFoundError(coupon_id)
        return coupon

    def validate(
        self,
        db: Session,
        code: str,
        order_amount: float,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CouponValidationResult:
        """
        Check whether a coupon can be used and compute its discount

        Checks run in order: exists and active, validity window, minimum
        order amount, usage limit, prior use by this user. Ineligibility is
        reported in the result, never raised.
        """
        with tracer.start_as_current_span("coupon_service.validate") as span:
            span.set_attribute("coupon.code", code)
            span.set_attribute("order.amount", order_amount)

            coupon = self.get_coupon_by_code(db, code)
            if not coupon or not coupon.is_active:
                return CouponValidationResult.reject("Invalid coupon code")

            now = now or datetime.now(timezone.utc)
            valid_from = _as_utc(coupon.valid_from)
            valid_until = _as_utc(coupon.valid_until)
            if valid_from and valid_from > now:
                return CouponValidationResult.reject("Coupon is not yet active")
            if valid_until and valid_until < now:
                return CouponValidationResult.reject("Coupon has expired")

            if coupon.minimum_order_amount and order_amount < coupon.minimum_order_amount:
                return CouponValidationResult.reject(
                    f"Minimum order amount of {coupon.minimum_order_amount:.2f} required"
                )

            if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
                return CouponValidationResult.reject("Coupon usage limit has been reached")

            if user_id is not None:
                already_used = (
                    db.query(CouponUsage.id)
                    .filter(CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id)
                    .first()
                )
                if already_used:
                    return CouponValidationResult.reject("You have already used this coupon")

            discount = compute_discount(coupon, order_amount)
            span.set_attribute("coupon.discount", discount)
            return CouponValidationResult(valid=True, coupon=coupon, discount_amount=discount)

    def apply(
        self,
        db: Session,
        coupon_id: int,
        order_id: int,
        user_id: int,
        discount_amount: float
    ) -> bool:
        """
        Record that an order consumed a coupon

        Returns:
            True if usage was recorded, False if this order already had it

        Raises:
            CouponUsageLimitError: if the coupon ran out in the meantime
        """
        with tracer.start_as_current_span("coupon_service.apply") as span:
            span.set_attribute("coupon.id", coupon_id)
            span.set_attribute("order.id", order_id)
            try:
                recorded = self.record_usage(db, coupon_id, order_id, user_id, discount_amount)
                db.commit()
            except Exception:
                db.rollback()
                raise
            span.set_attribute("coupon.recorded", recorded)
            return recorded

    @staticmethod
    def record_usage(
        db: Session,
        coupon_id: int,
        order_id: int,
        user_id: int,
        discount_amount: float
    ) -> bool:
        """Insert the usage row and bump used_count in the caller's transaction"""
        insert = postgresql.insert if db.get_bind().dialect.name == "postgresql" else sqlite.insert
        statement = (
            insert(CouponUsage.__table__)
            .values(
                coupon_id=coupon_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=discount_amount
            )
            .on_conflict_do_nothing(index_elements=["coupon_id", "order_id"])
        )
        if db.execute(statement).rowcount == 0:
            logger.info(f"Coupon {coupon_id} already recorded for order {order_id}")
            return False

        incremented = (
            db.query(Coupon)
            .filter(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit)
            )
            .update({Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False)
        )
        if incremented == 0:
            raise CouponUsageLimitError(coupon_id)

        logger.info(f"Coupon {coupon_id} applied to order {order_id} for user {user_id}")
        return True

    def reverse(self, db: Session, coupon_id: int, order_id: int, user_id: Optional[int] = None) -> bool:
        """
        Undo a coupon usage (order cancellation)

        Decrements used_count only when a usage row was actually removed,
        so reversing twice or reversing an unused coupon is a no-op.
        """
        with tracer.start_as_current_span("coupon_service.reverse") as span:
            span.set_attribute("coupon.id", coupon_id)
            span.set_attribute("order.id", order_id)
            try:
                query = db.query(CouponUsage).filter(
                    CouponUsage.coupon_id == coupon_id,
                    CouponUsage.order_id == order_id
                )
                if user_id is not None:
                    query = query.filter(CouponUsage.user_id == user_id)
                removed = query.delete(synchronize_session=False)

                if removed:
                    db.query(Coupon).filter(Coupon.id == coupon_id).update(
                        {Coupon.used_count: case((Coupon.used_count > 0, Coupon.used_count - 1), else_=0)},
                        synchronize_session=False
                    )
                db.commit()
            except Exception:
                db.rollback()
                raise

            span.set_attribute("coupon.reversed", bool(removed))
            if removed:
                logger.info(f"Coupon {coupon_id} usage reversed for order {order_id}")
            return bool(removed)

    # Administration

    def create_coupon(self, db: Session, coupon_data: CouponCreate) -> Coupon:
        """Create a coupon; codes are unique case-insensitively"""
        code = coupon_data.code.strip().upper()
        if self.get_coupon_by_code(db, code):
            raise CouponError(f"Coupon code {code} already exists")

        coupon = Coupon(**coupon_data.model_dump(exclude={"code"}), code=code, used_count=0, is_active=True)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        logger.info(f"Coupon {coupon.code} created")
        return coupon

    def update_coupon(self, db: Session, coupon_id: int, coupon_data: CouponUpdate) -> Coupon:
        coupon = self.get_coupon(db, coupon_id)

        update_data = coupon_data.model_dump(exclude_unset=True)
        if not update_data:
            raise CouponError("No valid fields to update")
        if (
            coupon.type == CouponType.PERCENTAGE
            and update_data.get("value") is not None
            and update_data["value"] > 100
        ):
            raise CouponError("Percentage value must be between 0 and 100")

        for field_name, value in update_data.items():
            setattr(coupon, field_name, value)

        db.commit()
        db.refresh(coupon)
        return coupon

    def delete_coupon(self, db: Session, coupon_id: int, hard_delete: bool = False) -> None:
        """
        Retire a coupon

        Soft delete deactivates it. Hard delete removes the coupon and its
        usage rows and detaches it from orders, which keep their locked-in
        discount and coupon code.
        """
        coupon = self.get_coupon(db, coupon_id)
        try:
            if hard_delete:
                usages = (
                    db.query(CouponUsage)
                    .filter(CouponUsage.coupon_id == coupon_id)
                    .delete(synchronize_session=False)
                )
                orders = (
                    db.query(Order)
                    .filter(Order.coupon_id == coupon_id)
                    .update({Order.coupon_id: None}, synchronize_session=False)
                )
                db.delete(coupon)
                logger.info(f"Coupon {coupon_id} deleted ({usages} usages removed, {orders} orders detached)")
            else:
                coupon.is_active = False
                logger.info(f"Coupon {coupon_id} deactivated")
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def get_active_coupons(db: Session, unexpired_only: bool = False) -> List[Coupon]:
        query = db.query(Coupon).filter(Coupon.is_active.is_(True))
        if unexpired_only:
            query = query.filter(
                or_(Coupon.valid_until.is_(None), Coupon.valid_until > datetime.now(timezone.utc))
            )
        return query.order_by(Coupon.id.desc()).all()

    def get_best_coupon_for_order(
        self,
        db: Session,
        order_amount: float,
        user_id: Optional[int] = None
    ) -> Tuple[Optional[Coupon], Optional[float]]:
        """Pick the usable coupon with the largest discount"""
        best: Optional[Coupon] = None
        best_discount = 0.0
        for coupon in self.get_active_coupons(db, unexpired_only=True):
            result = self.validate(db, coupon.code, order_amount, user_id)
            if result.valid and result.discount_amount and result.discount_amount > best_discount:
                best, best_discount = coupon, result.discount_amount
        return (best, best_discount) if best else (None, None)

    def get_coupon_stats(self, db: Session, coupon_id: int) -> Dict:
        """Paid-order totals for a coupon"""
        coupon = self.get_coupon(db, coupon_id)
        orders, discount, order_value = (
            db.query(
                func.count(Order.id),
                func.sum(Order.discount_amount),
                func.sum(Order.total_amount),
            )
            .filter(Order.coupon_id == coupon_id, Order.payment_status == PaymentStatus.PAID)
            .one()
        )
        return {
            "coupon_id": coupon.id,
            "code": coupon.code,
            "used_count": coupon.used_count,
            "usage_limit": coupon.usage_limit,
            "total_orders_with_coupon": int(orders or 0),
            "total_discount_given": round(float(discount or 0), 2),
            "total_order_value": round(float(order_value or 0), 2),
        }
