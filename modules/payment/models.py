"""
Payment Module - Models
========================
Payment: one row per gateway intent, mapping order <-> gateway_order_id.
A retried payment gets a new row; the latest row is the live one.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class PaymentRecordStatus(str, enum.Enum):
    CREATED = "Created"
    PAID = "Paid"
    FAILED = "Failed"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    method = Column(String, nullable=False)          # gateway name (razorpay / sandbox)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, default=PaymentRecordStatus.CREATED, nullable=False)

    gateway_order_id = Column(String, unique=True, nullable=False, index=True)
    gateway_payment_id = Column(String, nullable=True)
    signature = Column(String, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", foreign_keys=[order_id])

    __table_args__ = (
        Index("ix_payment_order", "order_id"),
    )
