"""
Wallet Service - Append-only Ledger
=====================================
Idempotent credit/debit on the per-user store-credit wallet.
Balance is always derived as SUM(amount); there is no mutable balance column.

Usage:
    wallet_service.credit(db, user_id=1, amount=Decimal("180.00"), reason="Refund",
                          idempotency_key="refund:return:3")
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional, List

from sqlalchemy.orm import Session
from sqlalchemy import func as sa_func

from common.exceptions import ErrorKind, ValidationError, ResourceError
from common.helpers import to_money
from modules.wallet.models import Wallet, WalletTransaction, TransactionKind

logger = logging.getLogger("rmshop.wallet")


class WalletService:
    """Stateless service - call methods with db session."""

    # ------------------------------------------
    # Wallet helpers
    # ------------------------------------------

    def get_or_create_wallet(self, db: Session, user_id: int) -> Wallet:
        """Get the user's anchor row FOR UPDATE, creating it on first use."""
        wallet = (
            db.query(Wallet)
            .filter(Wallet.user_id == user_id)
            .with_for_update()
            .first()
        )
        if not wallet:
            wallet = Wallet(user_id=user_id)
            db.add(wallet)
            db.flush()
        return wallet

    def get_balance(self, db: Session, user_id: int) -> Decimal:
        """Running sum of all signed entries."""
        total = (
            db.query(sa_func.coalesce(sa_func.sum(WalletTransaction.amount), 0))
            .filter(WalletTransaction.user_id == user_id)
            .scalar()
        )
        return to_money(total)

    # ------------------------------------------
    # Core ledger writer
    # ------------------------------------------

    def _write_entry(
        self,
        db: Session,
        user_id: int,
        kind: TransactionKind,
        amount: Decimal,
        idempotency_key: str,
        reason: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id=None,
        related_order_id: Optional[int] = None,
    ) -> WalletTransaction:
        """Append one immutable entry under the wallet row lock."""
        # Idempotency check
        existing = (
            db.query(WalletTransaction)
            .filter(WalletTransaction.idempotency_key == idempotency_key)
            .first()
        )
        if existing:
            logger.info(f"Wallet entry {idempotency_key} already recorded (txn #{existing.id})")
            return existing

        wallet = self.get_or_create_wallet(db, user_id)
        balance = self.get_balance(db, user_id)
        signed = amount if kind == TransactionKind.CREDIT else -amount

        if balance + signed < 0:
            raise ResourceError(
                ErrorKind.INSUFFICIENT_BALANCE,
                f"Wallet balance {balance} is less than {amount}",
                user_id=user_id,
                balance=balance,
                requested=amount,
            )

        txn = WalletTransaction(
            wallet_id=wallet.id,
            user_id=user_id,
            amount=signed,
            kind=kind.value,
            reason=reason,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            related_order_id=related_order_id,
            idempotency_key=idempotency_key,
            balance_after=balance + signed,
        )
        db.add(txn)
        db.flush()
        logger.info(
            f"Wallet {kind.value} user={user_id} amount={amount} "
            f"balance_after={txn.balance_after} key={idempotency_key}"
        )
        return txn

    def _gen_key(self, prefix: str, ref_type: str = "", ref_id="") -> str:
        """One-off key; callers that need deduplication pass their own."""
        suffix = uuid.uuid4().hex[:12]
        if ref_type and ref_id:
            return f"{prefix}:{ref_type}:{ref_id}:{suffix}"
        return f"{prefix}:{suffix}"

    def _check_amount(self, amount) -> Decimal:
        try:
            value = to_money(amount)
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError(ErrorKind.INVALID_AMOUNT, amount=amount)
        if value <= 0:
            raise ValidationError(ErrorKind.INVALID_AMOUNT, "Amount must be positive", amount=amount)
        return value

    # ------------------------------------------
    # Public operations
    # ------------------------------------------

    def credit(
        self,
        db: Session,
        user_id: int,
        amount,
        reason: str = "Credit",
        reference_type: str = "manual",
        reference_id="",
        related_order_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> WalletTransaction:
        """Add store credit. A repeated idempotency key returns the original entry."""
        value = self._check_amount(amount)
        key = idempotency_key or self._gen_key("credit", reference_type, reference_id)
        return self._write_entry(
            db, user_id, TransactionKind.CREDIT, value, key,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            related_order_id=related_order_id,
        )

    def debit(
        self,
        db: Session,
        user_id: int,
        amount,
        reason: str = "Debit",
        reference_type: str = "manual",
        reference_id="",
        related_order_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> WalletTransaction:
        """Spend store credit. Fails with InsufficientBalance, never goes negative."""
        value = self._check_amount(amount)
        key = idempotency_key or self._gen_key("debit", reference_type, reference_id)
        return self._write_entry(
            db, user_id, TransactionKind.DEBIT, value, key,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            related_order_id=related_order_id,
        )

    # ------------------------------------------
    # Query
    # ------------------------------------------

    def list_transactions(
        self, db: Session, user_id: int,
        kind: str = None,
        limit: int = 100,
    ) -> List[WalletTransaction]:
        q = db.query(WalletTransaction).filter(WalletTransaction.user_id == user_id)
        if kind:
            q = q.filter(WalletTransaction.kind == kind)
        return q.order_by(WalletTransaction.id.desc()).limit(limit).all()


wallet_service = WalletService()
