"""
Cart Routes
=============
JSON API for the caller's cart.

Endpoints:
  GET    /api/cart             - Cart lines + total
  POST   /api/cart/items       - Add product
  PATCH  /api/cart/items/{id}  - Set quantity (0 removes)
  DELETE /api/cart/items/{id}  - Remove line
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.cart.service import cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


# ==========================================
# Schemas
# ==========================================

class AddItemRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = 1


class UpdateItemRequest(BaseModel):
    quantity: int


# ==========================================
# 🛒 Cart
# ==========================================

@router.get("")
async def view_cart(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    return {"success": True, **cart_service.get_cart(db, me.user_id)}


@router.post("/items")
async def add_item(
    body: AddItemRequest,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    item = cart_service.add_item(db, me.user_id, body.product_id, body.quantity)
    db.commit()
    return {
        "success": True,
        "item_id": item.id,
        "quantity": item.quantity,
        **cart_service.get_cart(db, me.user_id),
    }


@router.patch("/items/{item_id}")
async def update_item(
    item_id: int,
    body: UpdateItemRequest,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    cart_service.update_item_quantity(db, me.user_id, item_id, body.quantity)
    db.commit()
    return {"success": True, **cart_service.get_cart(db, me.user_id)}


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: int,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    cart_service.delete_item(db, me.user_id, item_id)
    db.commit()
    return {"success": True, **cart_service.get_cart(db, me.user_id)}
