"""
Returns Module - Admin Routes
===============================
Decision, refund and physical receipt of returned orders.

Endpoints:
  GET  /admin/returns                        - All return requests
  POST /admin/returns/{id}/decision          - Approve / reject (once)
  POST /admin/returns/{id}/refund            - Initiate refund to wallet
  POST /admin/returns/{id}/complete-refund   - Retry a refund left Initiated
  POST /admin/returns/{id}/received          - Goods back at seller, restock
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_admin, Identity
from modules.returns.service import return_service
from modules.returns.routes import return_json

router = APIRouter(prefix="/admin/returns", tags=["returns-admin"])


class Decision(BaseModel):
    approve: bool


@router.get("")
async def admin_returns(
    status: Optional[str] = Query(None),
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    returns = return_service.list_returns(db, status=status)
    return {"success": True, "returns": [return_json(r) for r in returns]}


@router.post("/{return_id}/decision")
async def decide(
    return_id: int,
    body: Decision,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    req = return_service.decide_return(db, return_id, body.approve, admin_id=admin.user_id)
    db.commit()
    return {"success": True, **return_json(req)}


@router.post("/{return_id}/refund")
async def initiate_refund(
    return_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    req = return_service.initiate_refund(db, return_id)
    db.commit()
    return {"success": True, **return_json(req)}


@router.post("/{return_id}/complete-refund")
async def complete_refund(
    return_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    req = return_service.complete_refund(db, return_id)
    db.commit()
    return {"success": True, **return_json(req)}


@router.post("/{return_id}/received")
async def mark_received(
    return_id: int,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    req = return_service.mark_returned_to_seller(db, return_id)
    db.commit()
    return {"success": True, **return_json(req)}
