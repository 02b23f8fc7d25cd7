"""
Return Routes - Customer Facing
=================================
A return is requested via POST /api/orders/{id}/return; these only read.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, Identity
from modules.returns.models import ReturnRequest
from modules.returns.service import return_service

router = APIRouter(prefix="/api/returns", tags=["returns"])


def return_json(req: ReturnRequest) -> dict:
    return {
        "return_id": req.id,
        "order_id": req.order_id,
        "user_id": req.user_id,
        "reason": req.reason,
        "status": req.status,
        "refund_status": req.refund_status,
        "refund_amount": req.refund_amount,
        "approved_at": req.approved_at,
        "rejected_at": req.rejected_at,
        "is_order_reached_seller": req.is_order_reached_seller,
        "returned_to_seller_at": req.returned_to_seller_at,
        "created_at": req.created_at,
    }


@router.get("")
async def my_returns(
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    returns = return_service.list_user_returns(db, me.user_id)
    return {"success": True, "returns": [return_json(r) for r in returns]}


@router.get("/{return_id}")
async def return_detail(
    return_id: int,
    me: Identity = Depends(require_login),
    db: Session = Depends(get_db),
):
    req = return_service.get_return(db, me.user_id, return_id)
    return {"success": True, **return_json(req)}
