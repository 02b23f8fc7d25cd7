"""
Wallet Module - Models
========================
Append-only store-credit ledger used as the refund sink.

Models:
  - Wallet: One anchor row per user, locked to serialise writes
  - WalletTransaction: Immutable signed entries; balance = SUM(amount)

Enums:
  - TransactionKind: Credit / Debit
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


# ==========================================
# Enums
# ==========================================

class TransactionKind(str, enum.Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"


# ==========================================
# Wallet (anchor row, no mutable balance)
# ==========================================

class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        order_by="WalletTransaction.id.desc()",
    )


# ==========================================
# WalletTransaction (immutable audit trail)
# ==========================================

class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)            # signed: + credit / - debit
    kind = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)             # cancellation / return / manual
    reference_id = Column(String, nullable=True)
    related_order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    idempotency_key = Column(String, nullable=False, unique=True)
    balance_after = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_wallet_txn_amount_nonzero"),
        CheckConstraint("balance_after >= 0", name="ck_wallet_txn_balance_nonneg"),
        Index("ix_wallet_txn_user_created", "user_id", "created_at"),
    )

    @property
    def is_credit(self) -> bool:
        return self.kind == TransactionKind.CREDIT
