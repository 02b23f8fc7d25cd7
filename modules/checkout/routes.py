"""
Checkout Routes
=================
JSON API over the caller's active checkout session.

Endpoints:
  POST   /api/checkout          - Create session from cart
  GET    /api/checkout          - Summary (fails if cart changed)
  PUT    /api/checkout/address  - Set shipping address
  POST   /api/checkout/coupon   - Apply coupon
  DELETE /api/checkout/coupon   - Remove coupon
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.checkout.models import CheckoutSession
from modules.checkout.service import checkout_service

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


# ==========================================
# Schemas
# ==========================================

class AddressRequest(BaseModel):
    address_id: int = Field(..., gt=0)


class CouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


def _session_json(session: CheckoutSession) -> dict:
    return {
        "checkout_id": session.id,
        "status": session.status,
        "subtotal": session.subtotal,
        "discount_amount": session.discount_amount,
        "final_amount": session.final_amount,
        "coupon_code": session.coupon_code,
        "shipping_address_id": session.shipping_address_id,
        "item_count": session.item_count,
    }


# ==========================================
# 🧾 Session
# ==========================================

@router.post("")
async def create_checkout(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    session = checkout_service.create_checkout(db, me.user_id)
    db.commit()
    return {"success": True, **_session_json(session)}


@router.get("")
async def checkout_summary(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    summary = checkout_service.get_summary(db, me.user_id)
    address = summary["address"]
    return {
        "success": True,
        **_session_json(summary["session"]),
        "items": [
            {
                "product_id": it.product_id,
                "name": it.product_name,
                "quantity": it.quantity,
                "unit_price": it.unit_price,
                "line_total": it.line_total,
            }
            for it in summary["items"]
        ],
        "address": address.one_line if address else None,
    }


@router.put("/address")
async def set_address(
    body: AddressRequest,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    session = checkout_service.set_address(db, me.user_id, body.address_id)
    db.commit()
    return {"success": True, **_session_json(session)}


# ==========================================
# 🏷️ Coupon
# ==========================================

@router.post("/coupon")
async def apply_coupon(
    body: CouponRequest,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    session = checkout_service.apply_coupon(db, me.user_id, body.code)
    db.commit()
    return {"success": True, **_session_json(session)}


@router.delete("/coupon")
async def remove_coupon(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    session = checkout_service.remove_coupon(db, me.user_id)
    db.commit()
    return {"success": True, **_session_json(session)}
