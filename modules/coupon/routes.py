"""
Coupon Routes - Customer Facing
==================================
Preview a coupon against the current cart before applying it at checkout.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.coupon.service import coupon_service
from modules.cart.service import cart_service

router = APIRouter(prefix="/api/coupon", tags=["coupon"])


@router.get("/check")
async def check_coupon(
    code: str = Query(""),
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    """Raises the coupon's validation error, or returns the discount it would give."""
    subtotal = cart_service.get_cart(db, me.user_id)["total"]
    quote = coupon_service.evaluate(db, code, subtotal, user_id=me.user_id)
    return {
        "success": True,
        "code": quote.code,
        "subtotal": subtotal,
        "discount_amount": quote.discount_amount,
        "final_amount": subtotal - quote.discount_amount,
        "capped": quote.capped,
    }
