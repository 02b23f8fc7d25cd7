"""
Returns Module - Models
========================
ReturnRequest: one per order. Decision, refund and physical return are
three independent steps, each with its own flag so each can be retried alone.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text, DateTime, ForeignKey, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class ReturnStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ReturnRefundStatus(str, enum.Enum):
    NONE = "None"
    INITIATED = "Initiated"
    COMPLETED = "Completed"


class ReturnRequest(Base):
    __tablename__ = "return_requests"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(String, default=ReturnStatus.PENDING, nullable=False)

    # Money flow
    refund_status = Column(String, default=ReturnRefundStatus.NONE, nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=True)

    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    # Goods flow
    is_order_reached_seller = Column(Boolean, server_default=text("false"), default=False, nullable=False)
    returned_to_seller_at = Column(DateTime(timezone=True), nullable=True)
    is_stock_updated = Column(Boolean, server_default=text("false"), default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", foreign_keys=[order_id])

    @property
    def is_decided(self) -> bool:
        return self.status != ReturnStatus.PENDING
