"""
Order Module - Models
======================
Order with immutable item snapshot, status audit trail and cancellation requests.
Orders are never deleted: cancellation and return are status transitions.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text,
    ForeignKey, DateTime, CheckConstraint, Index, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    GATEWAY = "Gateway"


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"                  # COD, settles on delivery
    AWAITING_PAYMENT = "AwaitingPayment"  # gateway intent created, stock reserved
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"
    CANCELLED = "Cancelled"


class DeliveryStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    RETURNED_TO_SENDER = "ReturnedToSender"
    CANCELLED = "Cancelled"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    PENDING_CANCELLATION = "PendingCancellation"
    CANCELLED = "Cancelled"
    RETURN_REQUESTED = "ReturnRequested"
    RETURNED = "Returned"


class RefundStatus(str, enum.Enum):
    NOT_APPLICABLE = "NotApplicable"
    INITIATED = "Initiated"
    COMPLETED = "Completed"


class CancellationStatus(str, enum.Enum):
    PENDING_REVIEW = "PendingReview"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    checkout_session_id = Column(
        Integer, ForeignKey("checkout_sessions.id", ondelete="RESTRICT"),
        unique=True, nullable=False,
    )
    shipping_address_id = Column(Integer, ForeignKey("user_addresses.id", ondelete="SET NULL"), nullable=True)

    # Amounts (copied from the checkout session)
    total_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    coupon_code = Column(String(50), nullable=True)

    # Statuses
    payment_method = Column(String, nullable=False)
    payment_status = Column(String, default=PaymentStatus.PENDING, nullable=False)
    delivery_status = Column(String, default=DeliveryStatus.PENDING, nullable=False)
    order_status = Column(String, default=OrderStatus.PENDING, nullable=False)
    refund_status = Column(String, default=RefundStatus.NOT_APPLICABLE, nullable=False)

    # Flags
    has_return_request = Column(Boolean, server_default=text("false"), default=False, nullable=False)
    is_stock_reserved = Column(Boolean, server_default=text("false"), default=False, nullable=False)
    is_stock_restored = Column(Boolean, server_default=text("false"), default=False, nullable=False)

    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)

    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    status_logs = relationship("OrderStatusLog", back_populates="order", order_by="OrderStatusLog.id")
    shipping_address = relationship("UserAddress", foreign_keys=[shipping_address_id])

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="ck_order_discount_nonneg"),
        CheckConstraint("final_amount >= 0", name="ck_order_final_nonneg"),
        CheckConstraint("final_amount <= total_amount", name="ck_order_final_le_total"),
        Index("ix_order_user_created", "user_id", "created_at"),
    )

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD

    @property
    def is_gateway(self) -> bool:
        return self.payment_method == PaymentMethod.GATEWAY

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_stock_sold(self) -> bool:
        """Stock was decremented for this order (COD at placement, gateway on payment)."""
        if self.is_cod:
            return True
        return self.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    product_name = Column(String, nullable=True)

    # Price snapshot at time of purchase
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


# ==========================================
# Status audit trail
# ==========================================

class OrderStatusLog(Base):
    __tablename__ = "order_status_logs"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    field = Column(String, nullable=False)          # order_status / payment_status / delivery_status / refund_status
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=False)
    changed_by = Column(String, nullable=True)      # user:<id> / admin:<id> / gateway / system
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_logs")


# ==========================================
# Cancellation requests (admin review queue)
# ==========================================

class CancellationRequest(Base):
    __tablename__ = "cancellation_requests"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(String, nullable=False)
    status = Column(String, default=CancellationStatus.PENDING_REVIEW, nullable=False)
    is_stock_updated = Column(Boolean, server_default=text("false"), default=False, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", foreign_keys=[order_id])
