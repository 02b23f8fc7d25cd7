"""
Catalog Module - Models
========================
Product with price and inventory counters.

Catalog CRUD (categories, images) is handled elsewhere; the order core reads
price and mutates `stock_quantity` / `reserved_quantity` only through the
inventory ledger (modules.inventory.service).
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, CheckConstraint,
)
from sqlalchemy.sql import func
from config.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    reserved_quantity = Column(Integer, default=0, server_default="0", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, server_default="false", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_product_reserved_nonneg"),
        CheckConstraint("price >= 0", name="ck_product_price_nonneg"),
    )

    @property
    def available_quantity(self) -> int:
        """Stock not held by pending gateway reservations."""
        return max(0, (self.stock_quantity or 0) - (self.reserved_quantity or 0))

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_active) and not self.is_deleted

    def __repr__(self):
        return f"<Product {self.id} {self.name}>"
