"""
Coupon Admin Routes
=====================
CRUD for coupons plus usage stats.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_admin, Identity
from modules.coupon.models import Coupon
from modules.coupon.service import coupon_service

router = APIRouter(prefix="/admin/coupons", tags=["admin-coupon"])


class CouponCreate(BaseModel):
    code: str
    discount_percent: Decimal
    description: Optional[str] = None
    min_order_amount: Decimal = Decimal("0")
    expires_at: Optional[datetime] = None
    max_total_uses: Optional[int] = None
    max_per_user: int = 1
    is_active: bool = True


class CouponUpdate(BaseModel):
    code: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    description: Optional[str] = None
    min_order_amount: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    max_total_uses: Optional[int] = None
    max_per_user: Optional[int] = None
    is_active: Optional[bool] = None


def coupon_json(c: Coupon) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "description": c.description,
        "discount_percent": c.discount_percent,
        "min_order_amount": c.min_order_amount,
        "expires_at": c.expires_at,
        "max_total_uses": c.max_total_uses,
        "max_per_user": c.max_per_user,
        "current_uses": c.current_uses,
        "remaining_uses": c.remaining_uses,
        "is_active": c.is_active,
        "status": c.status,
        "created_at": c.created_at,
    }


# ==========================================
# 📋 Coupon List
# ==========================================

@router.get("")
async def coupon_list(
    status: str = Query("all"),
    search: Optional[str] = Query(None),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupons = coupon_service.list_coupons(db, status=status, search=search)
    return {
        "success": True,
        "coupons": [coupon_json(c) for c in coupons],
        "stats": coupon_service.get_stats(db),
    }


@router.get("/{coupon_id}")
async def coupon_detail(
    coupon_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = coupon_service.get_coupon_by_id(db, coupon_id)
    return {"success": True, **coupon_json(coupon)}


# ==========================================
# ✏️ Create / Update / Delete
# ==========================================

@router.post("")
async def coupon_create(
    body: CouponCreate,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = coupon_service.create_coupon(db, body.model_dump())
    db.commit()
    return {"success": True, **coupon_json(coupon)}


@router.patch("/{coupon_id}")
async def coupon_update(
    coupon_id: int,
    body: CouponUpdate,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = coupon_service.update_coupon(db, coupon_id, body.model_dump(exclude_unset=True))
    db.commit()
    return {"success": True, **coupon_json(coupon)}


@router.delete("/{coupon_id}")
async def coupon_delete(
    coupon_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    mode = coupon_service.delete_coupon(db, coupon_id)
    db.commit()
    return {"success": True, "coupon_id": coupon_id, "deleted": mode}
