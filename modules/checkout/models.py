"""
Checkout Module - Models
=========================
CheckoutSession: priced snapshot of the cart + shipping address + optional coupon.
CheckoutItem: line items copied from the cart at session creation.

A session is valid only while `cart_fingerprint` matches the live cart.
Only the newest non-superseded session of a user is ever acted upon.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


# ==========================================
# Checkout Status
# ==========================================

class CheckoutStatus(str, enum.Enum):
    CREATED = "Created"
    ADDRESS_SET = "AddressSet"
    COUPON_APPLIED = "CouponApplied"
    COMPLETED = "Completed"


# ==========================================
# CheckoutSession
# ==========================================

class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Amounts
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    coupon_code = Column(String(50), nullable=True)

    shipping_address_id = Column(Integer, ForeignKey("user_addresses.id", ondelete="SET NULL"), nullable=True)
    cart_fingerprint = Column(String(64), nullable=False)
    item_count = Column(Integer, default=0, nullable=False)

    status = Column(String, default=CheckoutStatus.CREATED, nullable=False)
    is_superseded = Column(Boolean, default=False, server_default="false", nullable=False)

    # Placement claim: set once an order has been created from this session
    order_id = Column(Integer, nullable=True)

    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "CheckoutItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CheckoutItem.id",
    )
    shipping_address = relationship("UserAddress", foreign_keys=[shipping_address_id])

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="ck_checkout_discount_nonneg"),
        CheckConstraint("final_amount >= 0", name="ck_checkout_final_nonneg"),
        CheckConstraint("final_amount <= subtotal", name="ck_checkout_final_le_subtotal"),
        Index("ix_checkout_user_created", "user_id", "created_at"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == CheckoutStatus.COMPLETED

    @property
    def is_claimed(self) -> bool:
        return self.order_id is not None


# ==========================================
# CheckoutItem
# ==========================================

class CheckoutItem(Base):
    __tablename__ = "checkout_items"

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("checkout_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    product_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    session = relationship("CheckoutSession", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_checkout_item_qty"),
    )
