"""
Payment Routes
================
Gateway callback verification and payment history of an order.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import SignatureError
from modules.auth.deps import require_login, Identity
from modules.order.service import order_service
from modules.payment.service import payment_service

router = APIRouter(prefix="/api/payments", tags=["payment"])


class VerifyRequest(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


# ==========================================
# 🔐 Gateway callback
# ==========================================

@router.post("/verify")
async def verify(
    body: VerifyRequest,
    db: Session = Depends(get_db),
):
    """
    Called with the gateway's checkout result. A bad signature still commits:
    the reservation release and the Failed status must persist.
    """
    try:
        order = payment_service.verify_payment(
            db, body.gateway_order_id, body.gateway_payment_id, body.signature,
        )
    except SignatureError:
        db.commit()
        raise
    db.commit()
    return {
        "success": True,
        "order_id": order.id,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
    }


# ==========================================
# 📋 History
# ==========================================

@router.get("/order/{order_id}")
async def order_payments(
    order_id: int,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    order_service.get_order(db, me.user_id, order_id)
    payments = payment_service.get_payments(db, order_id)
    return {
        "success": True,
        "payments": [
            {
                "id": p.id,
                "method": p.method,
                "amount": p.amount,
                "currency": p.currency,
                "status": p.status,
                "gateway_order_id": p.gateway_order_id,
                "gateway_payment_id": p.gateway_payment_id,
                "attempts": p.attempts,
                "verified_at": p.verified_at,
                "created_at": p.created_at,
            }
            for p in payments
        ],
    }
