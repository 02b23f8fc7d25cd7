"""
Returns Module - Service Layer
================================
Return request -> admin decision -> refund to wallet / goods back to seller.

Approval never moves money. InitiateRefund does, inside a savepoint: if the
wallet credit fails the request stays Initiated (logged) and complete_refund
retries it with the same idempotency key, so it can never credit twice.
"""

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import desc

from config.settings import RETURN_WINDOW_DAYS, MAX_RETURN_REASON_LENGTH
from common.exceptions import (
    ShopError, ErrorKind, ValidationError, ConflictError, PreconditionError,
    NotFoundError, AuthorizationError,
)
from common.helpers import now_utc, as_utc, to_money
from modules.inventory.service import inventory_service
from modules.order.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, DeliveryStatus, RefundStatus,
)
from modules.order.service import order_service
from modules.returns.models import ReturnRequest, ReturnStatus, ReturnRefundStatus
from modules.wallet.service import wallet_service

logger = logging.getLogger("rmshop.returns")

# Delivered-like states a return can be asked for (re-entry hits the duplicate guard)
RETURNABLE_STATUSES = (
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURN_REQUESTED.value,
    OrderStatus.RETURNED.value,
)


class ReturnService:

    # ==========================================
    # Helpers
    # ==========================================

    def _get_for_update(self, db: Session, return_id: int) -> ReturnRequest:
        req = db.query(ReturnRequest).filter(ReturnRequest.id == return_id).with_for_update().first()
        if not req:
            raise NotFoundError(ErrorKind.RETURN_NOT_FOUND, return_id=return_id)
        return req

    # ==========================================
    # User
    # ==========================================

    def initiate_return(self, db: Session, user_id: int, order_id: int, reason: str) -> ReturnRequest:
        order_service.get_order(db, user_id, order_id)
        order = order_service.get_order_for_update(db, order_id)

        if order.order_status not in RETURNABLE_STATUSES or not order.delivered_at:
            raise ValidationError(
                ErrorKind.ORDER_NOT_ELIGIBLE_FOR_RETURN,
                "Only delivered orders can be returned",
                order_id=order_id, status=order.order_status,
            )

        if now_utc() - as_utc(order.delivered_at) > timedelta(days=RETURN_WINDOW_DAYS):
            raise ValidationError(
                ErrorKind.RETURN_WINDOW_EXPIRED,
                f"Returns are accepted within {RETURN_WINDOW_DAYS} days of delivery",
                order_id=order_id, delivered_at=order.delivered_at,
            )

        if order.has_return_request:
            raise ConflictError(ErrorKind.RETURN_ALREADY_REQUESTED, order_id=order_id)

        reason = (reason or "").strip()
        if not reason or len(reason) > MAX_RETURN_REASON_LENGTH:
            raise ValidationError(
                ErrorKind.INVALID_RETURN_REASON,
                f"Reason must be 1-{MAX_RETURN_REASON_LENGTH} characters",
                order_id=order_id,
            )

        req = ReturnRequest(
            order_id=order.id,
            user_id=user_id,
            reason=reason,
            status=ReturnStatus.PENDING.value,
            refund_status=ReturnRefundStatus.NONE.value,
        )
        db.add(req)
        order.has_return_request = True
        order_service.set_status(db, order, "order_status", OrderStatus.RETURN_REQUESTED, f"user:{user_id}", reason)
        db.flush()
        logger.info(f"Return #{req.id} requested for order #{order.id}")
        return req

    # ==========================================
    # Admin: decision
    # ==========================================

    def decide_return(self, db: Session, return_id: int, approve: bool, admin_id: int = None) -> ReturnRequest:
        """Approve or reject exactly once; a decided request raises AlreadyProcessed."""
        req = self._get_for_update(db, return_id)
        if req.is_decided:
            raise ConflictError(ErrorKind.ALREADY_PROCESSED, return_id=return_id, status=req.status)

        order = order_service.get_order_for_update(db, req.order_id)
        changed_by = f"admin:{admin_id}" if admin_id else "admin"
        now = now_utc()

        if approve:
            req.status = ReturnStatus.APPROVED.value
            req.approved_at = now
            order_service.set_status(db, order, "order_status", OrderStatus.RETURNED, changed_by, "Return approved")
            event = "return_approved"
        else:
            req.status = ReturnStatus.REJECTED.value
            req.rejected_at = now
            order_service.set_status(db, order, "order_status", OrderStatus.DELIVERED, changed_by, "Return rejected")
            event = "return_rejected"

        db.flush()
        logger.info(f"Return #{req.id} {req.status.lower()} (order #{order.id})")
        order_service.notify(db, order, event)
        return req

    def approve_return(self, db: Session, return_id: int, admin_id: int = None) -> ReturnRequest:
        return self.decide_return(db, return_id, True, admin_id)

    def reject_return(self, db: Session, return_id: int, admin_id: int = None) -> ReturnRequest:
        return self.decide_return(db, return_id, False, admin_id)

    # ==========================================
    # Admin: refund (money flow)
    # ==========================================

    def _settle_refund(self, db: Session, req: ReturnRequest, order: Order, raise_on_error: bool) -> ReturnRequest:
        try:
            # Nothing to move for a fully discounted order
            if to_money(req.refund_amount) > 0:
                with db.begin_nested():
                    wallet_service.credit(
                        db, req.user_id, req.refund_amount,
                        reason=f"Refund for returned order #{order.id}",
                        reference_type="return",
                        reference_id=req.id,
                        related_order_id=order.id,
                        idempotency_key=f"refund:return:{req.id}",
                    )
        except (ShopError, SQLAlchemyError) as e:
            logger.error(f"Refund for return #{req.id} failed, left Initiated: {e}")
            if raise_on_error:
                raise
            return req

        req.refund_status = ReturnRefundStatus.COMPLETED.value
        order_service.set_status(db, order, "refund_status", RefundStatus.COMPLETED, "admin")
        order_service.set_status(db, order, "payment_status", PaymentStatus.REFUNDED, "admin")
        db.flush()
        logger.info(f"Refund for return #{req.id} completed: {req.refund_amount} to user={req.user_id}")
        order_service.notify(db, order, "refund_completed")
        return req

    def initiate_refund(self, db: Session, return_id: int) -> ReturnRequest:
        req = self._get_for_update(db, return_id)
        if req.status != ReturnStatus.APPROVED:
            raise PreconditionError(ErrorKind.RETURN_NOT_APPROVED, return_id=return_id, status=req.status)
        if req.refund_status != ReturnRefundStatus.NONE:
            raise ConflictError(
                ErrorKind.REFUND_ALREADY_INITIATED,
                return_id=return_id, refund_status=req.refund_status,
            )

        order = order_service.get_order_for_update(db, req.order_id)
        if order.order_status == OrderStatus.CANCELLED:
            raise ValidationError(ErrorKind.ORDER_NOT_ELIGIBLE_FOR_RETURN, order_id=order.id)

        req.refund_status = ReturnRefundStatus.INITIATED.value
        req.refund_amount = to_money(order.final_amount)
        order_service.set_status(db, order, "refund_status", RefundStatus.INITIATED, "admin")
        db.flush()
        logger.info(f"Refund for return #{req.id} initiated: {req.refund_amount}")

        return self._settle_refund(db, req, order, raise_on_error=False)

    def complete_refund(self, db: Session, return_id: int) -> ReturnRequest:
        """Retry the wallet credit of a refund stuck in Initiated."""
        req = self._get_for_update(db, return_id)
        if req.refund_status == ReturnRefundStatus.NONE:
            raise PreconditionError(ErrorKind.REFUND_NOT_INITIATED, return_id=return_id)
        if req.refund_status == ReturnRefundStatus.COMPLETED:
            raise ConflictError(
                ErrorKind.REFUND_ALREADY_INITIATED,
                "Refund already completed",
                return_id=return_id, refund_status=req.refund_status,
            )
        order = order_service.get_order_for_update(db, req.order_id)
        return self._settle_refund(db, req, order, raise_on_error=True)

    # ==========================================
    # Admin: goods back at the seller
    # ==========================================

    def mark_returned_to_seller(self, db: Session, return_id: int) -> ReturnRequest:
        req = self._get_for_update(db, return_id)
        if req.status != ReturnStatus.APPROVED:
            raise PreconditionError(ErrorKind.RETURN_NOT_APPROVED, return_id=return_id, status=req.status)
        if req.is_stock_updated:
            raise ConflictError(ErrorKind.RETURN_ALREADY_RECEIVED, return_id=return_id)

        order = order_service.get_order_for_update(db, req.order_id)
        lines = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
        for it in lines:
            inventory_service.increment(db, it.product_id, it.quantity, "return", req.id)

        req.is_stock_updated = True
        req.is_order_reached_seller = True
        req.returned_to_seller_at = now_utc()
        order.is_stock_restored = True
        order_service.set_status(db, order, "delivery_status", DeliveryStatus.RETURNED_TO_SENDER, "admin")
        db.flush()
        logger.info(f"Return #{req.id} received by seller, stock restored for order #{order.id}")
        return req

    # ==========================================
    # Query
    # ==========================================

    def get_return(self, db: Session, user_id: int, return_id: int) -> ReturnRequest:
        req = db.query(ReturnRequest).filter(ReturnRequest.id == return_id).first()
        if not req:
            raise NotFoundError(ErrorKind.RETURN_NOT_FOUND, return_id=return_id)
        if req.user_id != user_id:
            raise AuthorizationError(ErrorKind.UNAUTHORIZED, return_id=return_id, user_id=user_id)
        return req

    def list_user_returns(self, db: Session, user_id: int) -> List[ReturnRequest]:
        return (
            db.query(ReturnRequest)
            .filter(ReturnRequest.user_id == user_id)
            .order_by(desc(ReturnRequest.id))
            .all()
        )

    def list_returns(self, db: Session, status: str = None) -> List[ReturnRequest]:
        q = db.query(ReturnRequest)
        if status:
            q = q.filter(ReturnRequest.status == status)
        return q.order_by(desc(ReturnRequest.id)).all()


return_service = ReturnService()
