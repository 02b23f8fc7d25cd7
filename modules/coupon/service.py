"""
Coupon Module - Service Layer
===============================
Validation chain, discount calculation, usage recording and admin CRUD.

Evaluation order (first failure wins):
  1. Exists and not deleted      -> CouponNotFound
  2. Active                      -> CouponInactive
  3. Not expired                 -> CouponExpired
  4. Usage left (total/per-user) -> CouponUsageExhausted
  5. Subtotal >= minimum         -> BelowMinimumOrder
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from config.settings import COUPON_MAX_DISCOUNT
from common.exceptions import ErrorKind, ValidationError, ConflictError, NotFoundError
from common.helpers import now_utc, as_utc, to_money, percent_of
from modules.coupon.models import Coupon, CouponUsage, CouponStatus

logger = logging.getLogger("rmshop.coupon")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@dataclass
class CouponQuote:
    coupon: Coupon
    discount_amount: Decimal
    capped: bool = False

    @property
    def code(self) -> str:
        return self.coupon.code


class CouponService:

    # ------------------------------------------
    # Evaluate (raises ValidationError / NotFoundError)
    # ------------------------------------------

    def _usage_count(self, db: Session, coupon_id: int, user_id: int) -> int:
        return (
            db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
            .count()
        )

    def _check_usage(self, db: Session, coupon: Coupon, user_id: Optional[int]):
        if coupon.max_total_uses is not None and (coupon.current_uses or 0) >= coupon.max_total_uses:
            raise ValidationError(ErrorKind.COUPON_USAGE_EXHAUSTED, code=coupon.code)
        if user_id and coupon.max_per_user:
            if self._usage_count(db, coupon.id, user_id) >= coupon.max_per_user:
                raise ValidationError(
                    ErrorKind.COUPON_USAGE_EXHAUSTED,
                    "Coupon already used the maximum number of times",
                    code=coupon.code, user_id=user_id,
                )

    def calculate_discount(self, coupon: Coupon, subtotal) -> Tuple[Decimal, bool]:
        """subtotal × percent / 100 (half-up), capped globally and at the subtotal."""
        subtotal = to_money(subtotal)
        discount = percent_of(subtotal, coupon.discount_percent)
        capped = False
        if discount > COUPON_MAX_DISCOUNT:
            discount = to_money(COUPON_MAX_DISCOUNT)
            capped = True
        if discount > subtotal:
            discount = subtotal
        return discount, capped

    def evaluate(
        self,
        db: Session,
        code: str,
        subtotal,
        now: datetime = None,
        user_id: Optional[int] = None,
    ) -> CouponQuote:
        """Full validation chain. Returns the coupon and its discount for `subtotal`."""
        code = normalize_code(code)
        now = as_utc(now) if now else now_utc()

        coupon = db.query(Coupon).filter(Coupon.code == code).first() if code else None
        if not coupon or coupon.is_deleted:
            raise NotFoundError(ErrorKind.COUPON_NOT_FOUND, code=code)

        if not coupon.is_active:
            raise ValidationError(ErrorKind.COUPON_INACTIVE, code=code)

        if coupon.expires_at is not None and as_utc(coupon.expires_at) < now:
            raise ValidationError(ErrorKind.COUPON_EXPIRED, code=code, expires_at=coupon.expires_at)

        self._check_usage(db, coupon, user_id)

        subtotal = to_money(subtotal)
        if subtotal < to_money(coupon.min_order_amount):
            raise ValidationError(
                ErrorKind.BELOW_MINIMUM_ORDER,
                f"Minimum order amount is {to_money(coupon.min_order_amount)}",
                code=code, subtotal=subtotal, minimum=coupon.min_order_amount,
            )

        discount, capped = self.calculate_discount(coupon, subtotal)
        return CouponQuote(coupon=coupon, discount_amount=discount, capped=capped)

    # ------------------------------------------
    # Record usage (called during order placement)
    # ------------------------------------------

    def record_usage(
        self,
        db: Session,
        coupon_code: str,
        user_id: int,
        order_id: int,
        discount_amount,
    ) -> CouponUsage:
        """Lock the coupon row, re-check limits, append a usage and bump the counter."""
        code = normalize_code(coupon_code)
        coupon = (
            db.query(Coupon)
            .filter(Coupon.code == code)
            .with_for_update()
            .first()
        )
        if not coupon or coupon.is_deleted:
            raise NotFoundError(ErrorKind.COUPON_NOT_FOUND, code=code)
        self._check_usage(db, coupon, user_id)

        usage = CouponUsage(
            coupon_id=coupon.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=to_money(discount_amount),
        )
        db.add(usage)
        coupon.current_uses = (coupon.current_uses or 0) + 1
        db.flush()
        logger.info(f"Coupon {code} used by user={user_id} order={order_id} discount={usage.discount_amount}")
        return usage

    def release_usage(self, db: Session, order_id: int) -> int:
        """Give back the usages of an order that was never paid. Returns rows removed."""
        usages = db.query(CouponUsage).filter(CouponUsage.order_id == order_id).all()
        for usage in usages:
            coupon = (
                db.query(Coupon)
                .filter(Coupon.id == usage.coupon_id)
                .with_for_update()
                .first()
            )
            if coupon and (coupon.current_uses or 0) > 0:
                coupon.current_uses -= 1
            db.delete(usage)
        if usages:
            db.flush()
            logger.info(f"Coupon usage released for unpaid order={order_id}")
        return len(usages)

    # ------------------------------------------
    # Admin CRUD
    # ------------------------------------------

    def _parse_percent(self, value) -> Decimal:
        try:
            percent = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(ErrorKind.INVALID_COUPON, "Invalid discount percent", discount_percent=value)
        if percent <= 0 or percent > 100:
            raise ValidationError(
                ErrorKind.INVALID_COUPON, "Discount percent must be in (0, 100]",
                discount_percent=value,
            )
        return percent

    def _parse_amount(self, value, field: str) -> Decimal:
        try:
            amount = to_money(value or 0)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(ErrorKind.INVALID_COUPON, f"Invalid {field}", field=field)
        if amount < 0:
            raise ValidationError(ErrorKind.INVALID_COUPON, f"{field} must not be negative", field=field)
        return amount

    def _parse_limit(self, value, field: str, allow_none: bool = True) -> Optional[int]:
        if value is None and allow_none:
            return None
        try:
            limit = int(value)
        except (ValueError, TypeError):
            raise ValidationError(ErrorKind.INVALID_COUPON, f"Invalid {field}", field=field)
        if limit < 1:
            raise ValidationError(ErrorKind.INVALID_COUPON, f"{field} must be at least 1", field=field)
        return limit

    def _ensure_unique(self, db: Session, code: str, exclude_id: int = None):
        q = db.query(Coupon.id).filter(Coupon.code == code)
        if exclude_id:
            q = q.filter(Coupon.id != exclude_id)
        if q.first():
            raise ConflictError(ErrorKind.DUPLICATE_COUPON_CODE, code=code)

    def get_coupon_by_id(self, db: Session, coupon_id: int) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise NotFoundError(ErrorKind.COUPON_NOT_FOUND, coupon_id=coupon_id)
        return coupon

    def create_coupon(self, db: Session, data: dict) -> Coupon:
        code = normalize_code(data.get("code"))
        if not code:
            raise ValidationError(ErrorKind.INVALID_COUPON, "Coupon code is required")
        self._ensure_unique(db, code)

        coupon = Coupon(
            code=code,
            description=data.get("description") or None,
            discount_percent=self._parse_percent(data.get("discount_percent")),
            min_order_amount=self._parse_amount(data.get("min_order_amount"), "min_order_amount"),
            expires_at=data.get("expires_at") or None,
            max_total_uses=self._parse_limit(data.get("max_total_uses"), "max_total_uses"),
            max_per_user=self._parse_limit(data.get("max_per_user", 1), "max_per_user", allow_none=False),
            is_active=bool(data.get("is_active", True)),
        )
        db.add(coupon)
        db.flush()
        logger.info(f"Coupon {code} created ({coupon.discount_percent}%)")
        return coupon

    def update_coupon(self, db: Session, coupon_id: int, data: dict) -> Coupon:
        """Partial update: only keys present in `data` are touched."""
        coupon = self.get_coupon_by_id(db, coupon_id)
        if coupon.is_deleted:
            raise NotFoundError(ErrorKind.COUPON_NOT_FOUND, coupon_id=coupon_id)

        if data.get("code") is not None:
            code = normalize_code(data["code"])
            if not code:
                raise ValidationError(ErrorKind.INVALID_COUPON, "Coupon code is required")
            self._ensure_unique(db, code, exclude_id=coupon.id)
            coupon.code = code

        if data.get("discount_percent") is not None:
            coupon.discount_percent = self._parse_percent(data["discount_percent"])
        if "min_order_amount" in data:
            coupon.min_order_amount = self._parse_amount(data["min_order_amount"], "min_order_amount")
        if "max_total_uses" in data:
            coupon.max_total_uses = self._parse_limit(data["max_total_uses"], "max_total_uses")
        if data.get("max_per_user") is not None:
            coupon.max_per_user = self._parse_limit(data["max_per_user"], "max_per_user", allow_none=False)
        if "expires_at" in data:
            coupon.expires_at = data["expires_at"] or None
        if "description" in data:
            coupon.description = data["description"] or None
        if data.get("is_active") is not None:
            coupon.is_active = bool(data["is_active"])

        db.flush()
        return coupon

    def delete_coupon(self, db: Session, coupon_id: int) -> str:
        """
        Soft delete (deactivate + flag) if the coupon was ever used,
        hard delete otherwise. Returns "soft" or "hard".
        """
        coupon = self.get_coupon_by_id(db, coupon_id)
        used = (coupon.current_uses or 0) > 0 or (
            db.query(CouponUsage.id).filter(CouponUsage.coupon_id == coupon.id).first() is not None
        )
        if used:
            coupon.is_active = False
            coupon.is_deleted = True
            coupon.deleted_at = now_utc()
            db.flush()
            logger.info(f"Coupon {coupon.code} soft-deleted (has usage)")
            return "soft"

        db.delete(coupon)
        db.flush()
        logger.info(f"Coupon {coupon.code} deleted")
        return "hard"

    def list_coupons(
        self, db: Session,
        status: str = "all",
        search: str = None,
    ) -> List[Coupon]:
        q = db.query(Coupon).filter(Coupon.is_deleted == False)
        now = now_utc()
        not_expired = or_(Coupon.expires_at.is_(None), Coupon.expires_at >= now)

        if status == CouponStatus.ACTIVE.value:
            q = q.filter(Coupon.is_active == True, not_expired)
        elif status == CouponStatus.INACTIVE.value:
            q = q.filter(Coupon.is_active == False)
        elif status == CouponStatus.EXPIRED.value:
            q = q.filter(Coupon.expires_at.isnot(None), Coupon.expires_at < now)
        elif status == CouponStatus.DELETED.value:
            q = db.query(Coupon).filter(Coupon.is_deleted == True)

        if search:
            q = q.filter(Coupon.code.ilike(f"%{search.strip()}%"))
        return q.order_by(desc(Coupon.id)).all()

    def get_stats(self, db: Session) -> Dict[str, Any]:
        coupons = db.query(Coupon).all()
        stats = {s.value: 0 for s in CouponStatus}
        for c in coupons:
            stats[c.status] += 1
        stats["total_uses"] = sum(c.current_uses or 0 for c in coupons)
        return stats


coupon_service = CouponService()
