"""
Order Module - Admin Routes
==============================
Order management for admin: list, fulfilment status, cancellation review.

Endpoints:
  GET   /admin/orders                                  - All orders (status filter)
  PATCH /admin/orders/{id}/status                      - Confirm / ship / deliver
  POST  /admin/orders/{id}/cancel                      - Override cancel
  GET   /admin/orders/cancellations                    - Cancellation requests
  POST  /admin/orders/{id}/cancellation/approve        - Approve queued request
  POST  /admin/orders/{id}/cancellation/reject         - Reject queued request
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_admin, Identity
from modules.order.service import order_service
from modules.order.cancellation_service import cancellation_service
from modules.order.routes import order_json

router = APIRouter(prefix="/admin/orders", tags=["order-admin"])


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


class AdminCancel(BaseModel):
    reason: Optional[str] = Field("", max_length=500)


# ==========================================
# 📋 Orders
# ==========================================

@router.get("")
async def admin_orders(
    status: Optional[str] = Query(None),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    orders = order_service.list_orders(db, status=status)
    return {"success": True, "orders": [order_json(o) for o in orders]}


@router.get("/cancellations")
async def cancellation_requests(
    status: Optional[str] = Query(None),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    requests = cancellation_service.list_cancellation_requests(db, status=status)
    return {
        "success": True,
        "requests": [
            {
                "id": r.id,
                "order_id": r.order_id,
                "user_id": r.user_id,
                "previous_status": r.previous_status,
                "status": r.status,
                "reason": r.reason,
                "created_at": r.created_at,
                "reviewed_at": r.reviewed_at,
            }
            for r in requests
        ],
    }


@router.patch("/{order_id}/status")
async def update_status(
    order_id: int,
    body: StatusUpdate,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = order_service.update_order_status(db, order_id, body.status, changed_by=f"admin:{admin.user_id}")
    db.commit()
    return {"success": True, **order_json(order)}


# ==========================================
# ❌ Cancellation
# ==========================================

@router.post("/{order_id}/cancel")
async def admin_cancel(
    order_id: int,
    body: Optional[AdminCancel] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = cancellation_service.admin_cancel_order(
        db, order_id, (body.reason if body else "") or "", admin_id=admin.user_id,
    )
    db.commit()
    return {"success": True, "refund_status": result.refund_status, **order_json(result.order)}


@router.post("/{order_id}/cancellation/approve")
async def approve_cancellation(
    order_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = cancellation_service.approve_cancellation(db, order_id, admin_id=admin.user_id)
    db.commit()
    return {"success": True, "refund_status": result.refund_status, **order_json(result.order)}


@router.post("/{order_id}/cancellation/reject")
async def reject_cancellation(
    order_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = cancellation_service.reject_cancellation(db, order_id, admin_id=admin.user_id)
    db.commit()
    return {"success": True, **order_json(result.order)}
