"""
Order Routes
=============
JSON API for the caller's orders.

Endpoints:
  POST /api/orders/cod                  - Place COD order from active checkout
  POST /api/orders/gateway              - Place gateway order, returns intent
  GET  /api/orders                      - My orders
  GET  /api/orders/{id}                 - Order detail
  POST /api/orders/{id}/cancel          - Cancel (direct or queued for review)
  POST /api/orders/{id}/retry-payment   - New gateway intent after failure
  POST /api/orders/{id}/return          - Request a return
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.order.models import Order
from modules.order.service import order_service, GatewayIntent
from modules.order.cancellation_service import cancellation_service
from modules.payment.service import payment_service
from modules.returns.service import return_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ==========================================
# Schemas
# ==========================================

class CancelRequest(BaseModel):
    reason: Optional[str] = Field("", max_length=500)


class ReturnBody(BaseModel):
    reason: str


def order_json(order: Order, with_items: bool = False) -> dict:
    data = {
        "order_id": order.id,
        "total_amount": order.total_amount,
        "discount_amount": order.discount_amount,
        "final_amount": order.final_amount,
        "coupon_code": order.coupon_code,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "delivery_status": order.delivery_status,
        "order_status": order.order_status,
        "refund_status": order.refund_status,
        "has_return_request": order.has_return_request,
        "created_at": order.created_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
    }
    if with_items:
        data["items"] = [
            {
                "product_id": it.product_id,
                "name": it.product_name,
                "quantity": it.quantity,
                "unit_price": it.unit_price,
                "line_total": it.line_total,
            }
            for it in order.items
        ]
    return data


def intent_json(intent: GatewayIntent) -> dict:
    return {
        "order_id": intent.order.id,
        "gateway": intent.gateway,
        "gateway_order_id": intent.gateway_order_id,
        "amount": intent.amount_minor,
        "currency": intent.currency,
        "key_id": intent.key_id,
    }


# ==========================================
# 🧾 Placement
# ==========================================

@router.post("/cod")
async def place_cod(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    order = order_service.place_order_cod(db, me.user_id)
    db.commit()
    return {"success": True, **order_json(order)}


@router.post("/gateway")
async def place_gateway(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    intent = order_service.place_order_gateway(db, me.user_id)
    db.commit()
    return {"success": True, **intent_json(intent)}


# ==========================================
# 📋 Query
# ==========================================

@router.get("")
async def my_orders(
    status: Optional[str] = Query(None),
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    orders = order_service.list_user_orders(db, me.user_id, status=status)
    return {"success": True, "orders": [order_json(o) for o in orders]}


@router.get("/{order_id}")
async def order_detail(
    order_id: int,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    order = order_service.get_order(db, me.user_id, order_id)
    return {"success": True, **order_json(order, with_items=True)}


# ==========================================
# ❌ Cancel / 🔁 Retry / ↩️ Return
# ==========================================

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    body: Optional[CancelRequest] = None,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    result = cancellation_service.cancel_order(db, me.user_id, order_id, (body.reason if body else "") or "")
    db.commit()
    return {
        "success": True,
        "requires_admin_review": result.requires_admin_review,
        "refund_status": result.refund_status,
        **order_json(result.order),
    }


@router.post("/{order_id}/retry-payment")
async def retry_payment(
    order_id: int,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    intent = payment_service.retry_payment(db, me.user_id, order_id)
    db.commit()
    return {"success": True, **intent_json(intent)}


@router.post("/{order_id}/return")
async def request_return(
    order_id: int,
    body: ReturnBody,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    req = return_service.initiate_return(db, me.user_id, order_id, body.reason)
    db.commit()
    return {
        "success": True,
        "return_id": req.id,
        "order_id": req.order_id,
        "status": req.status,
        "refund_status": req.refund_status,
    }
