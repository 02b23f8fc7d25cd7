"""
Inventory Module - Models
==========================
StockMovement: append-only audit trail of every stock counter change.

Counters themselves live on Product (stock_quantity / reserved_quantity) and
are only mutated through InventoryService, which writes one movement per call.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


# ==========================================
# Movement Type
# ==========================================

class MovementType(str, enum.Enum):
    RESERVE = "Reserve"        # hold for a pending gateway payment
    RELEASE = "Release"        # drop a hold
    DECREMENT = "Decrement"    # confirmed sale
    INCREMENT = "Increment"    # cancellation restock / return to seller


# ==========================================
# StockMovement
# ==========================================

class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    movement_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)
    reserved_after = Column(Integer, nullable=False)
    reference_type = Column(String, nullable=True)   # order / return / cancellation
    reference_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", foreign_keys=[product_id])

    __table_args__ = (
        Index("ix_stock_movement_product_created", "product_id", "created_at"),
    )

    @property
    def stock_delta(self) -> int:
        """Signed change applied to stock_quantity by this movement."""
        if self.movement_type == MovementType.DECREMENT:
            return -self.quantity
        if self.movement_type == MovementType.INCREMENT:
            return self.quantity
        return 0
