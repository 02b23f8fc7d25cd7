"""
Wallet Routes - Customer Facing
=================================
Balance and transaction history. Credits only arrive through refunds.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.wallet.service import wallet_service

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


# ==========================================
# 💰 Balance
# ==========================================

@router.get("")
async def wallet_balance(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    return {"success": True, "user_id": me.user_id, "balance": wallet_service.get_balance(db, me.user_id)}


# ==========================================
# 📜 Transactions
# ==========================================

@router.get("/transactions")
async def wallet_transactions(
    kind: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    txns = wallet_service.list_transactions(db, me.user_id, kind=kind, limit=limit)
    return {
        "success": True,
        "transactions": [
            {
                "id": t.id,
                "amount": t.amount,
                "kind": t.kind,
                "reason": t.reason,
                "reference_type": t.reference_type,
                "reference_id": t.reference_id,
                "related_order_id": t.related_order_id,
                "balance_after": t.balance_after,
                "created_at": t.created_at,
            }
            for t in txns
        ],
    }
