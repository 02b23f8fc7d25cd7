"""
Coupon Module - Models
========================
Percentage discount coupons applied to a checkout session.

Features:
  - Case-normalised unique code
  - Percentage discount with minimum order amount
  - Expiry timestamp
  - Usage limits (total + per-user)
  - Soft delete once used (history keeps pointing at the row)
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Numeric,
    DateTime, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base

from common.helpers import now_utc, as_utc


# ==========================================
# Enums
# ==========================================

class CouponStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    DELETED = "deleted"


# ==========================================
# Coupon
# ==========================================

class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(String, nullable=True)

    discount_percent = Column(Numeric(5, 2), nullable=False)
    min_order_amount = Column(Numeric(12, 2), default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Usage limits
    max_total_uses = Column(Integer, nullable=True)
    max_per_user = Column(Integer, default=1, nullable=False)
    current_uses = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, server_default="false", nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    usages = relationship("CouponUsage", back_populates="coupon")

    __table_args__ = (
        CheckConstraint("discount_percent > 0 AND discount_percent <= 100", name="ck_coupon_percent_range"),
        CheckConstraint("min_order_amount >= 0", name="ck_coupon_min_order_nonneg"),
        CheckConstraint("current_uses >= 0", name="ck_coupon_uses_nonneg"),
        Index("ix_coupon_code_active", "code", "is_active"),
    )

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) < now_utc()

    @property
    def status(self) -> str:
        if self.is_deleted:
            return CouponStatus.DELETED.value
        if self.is_expired:
            return CouponStatus.EXPIRED.value
        if not self.is_active:
            return CouponStatus.INACTIVE.value
        return CouponStatus.ACTIVE.value

    @property
    def remaining_uses(self):
        if self.max_total_uses is None:
            return None
        return max(0, self.max_total_uses - (self.current_uses or 0))


# ==========================================
# CouponUsage (one row per placed order)
# ==========================================

class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coupon = relationship("Coupon", back_populates="usages")

    __table_args__ = (
        Index("ix_coupon_usage_coupon_user", "coupon_id", "user_id"),
    )
