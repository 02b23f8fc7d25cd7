"""
Order Module - Cancellation Workflow
======================================
User cancellation (direct inside the window, queued for review outside it),
admin approve / reject of queued requests, and the admin override.

Side effects of any cancellation:
  - unpaid gateway order: stock hold released
  - sold stock (COD, paid gateway): stock incremented back
  - captured payment: full refund to the wallet
is_stock_restored and the wallet idempotency key make each of them one-shot.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import desc

from config.settings import CANCELLATION_WINDOW_HOURS
from common.exceptions import ErrorKind, ConflictError, PreconditionError
from common.helpers import now_utc, as_utc, to_money
from modules.coupon.service import coupon_service
from modules.inventory.service import inventory_service
from modules.order.models import (
    Order, OrderItem, CancellationRequest, CancellationStatus,
    OrderStatus, PaymentStatus, DeliveryStatus, RefundStatus,
)
from modules.order.service import order_service
from modules.payment.service import payment_service
from modules.wallet.service import wallet_service

logger = logging.getLogger("rmshop.order")

# Orders in these states can no longer be cancelled at all
NOT_CANCELLABLE = (
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURN_REQUESTED.value,
    OrderStatus.RETURNED.value,
)


@dataclass
class CancellationResult:
    order: Order
    requires_admin_review: bool = False
    refund_status: str = RefundStatus.NOT_APPLICABLE.value
    request: Optional[CancellationRequest] = None


class CancellationService:

    # ==========================================
    # Guards
    # ==========================================

    def _check_cancellable(self, order: Order):
        if order.order_status == OrderStatus.CANCELLED:
            raise ConflictError(ErrorKind.ORDER_ALREADY_CANCELLED, order_id=order.id)
        if order.order_status in NOT_CANCELLABLE:
            raise ConflictError(
                ErrorKind.ORDER_NOT_CANCELLABLE,
                f"Order in status {order.order_status} cannot be cancelled",
                order_id=order.id, status=order.order_status,
            )

    def within_window(self, order: Order, now=None) -> bool:
        now = now or now_utc()
        created = as_utc(order.created_at)
        return created is not None and now - created <= timedelta(hours=CANCELLATION_WINDOW_HOURS)

    def _pending_request(self, db: Session, order_id: int) -> Optional[CancellationRequest]:
        return (
            db.query(CancellationRequest)
            .filter(
                CancellationRequest.order_id == order_id,
                CancellationRequest.status == CancellationStatus.PENDING_REVIEW.value,
            )
            .with_for_update()
            .first()
        )

    # ==========================================
    # Side effects
    # ==========================================

    def _restore_stock(self, db: Session, order: Order):
        if order.is_stock_reserved:
            payment_service.release_reservation(db, order, "cancellation")
            return
        if order.is_stock_restored or not order.is_stock_sold:
            return
        lines = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
        for it in lines:
            inventory_service.increment(db, it.product_id, it.quantity, "cancellation", order.id)
        order.is_stock_restored = True

    def _apply_cancellation(self, db: Session, order: Order, reason: str, changed_by: str) -> str:
        """Stock back, refund if captured, terminal statuses. Returns refund status."""
        self._restore_stock(db, order)

        if order.payment_status == PaymentStatus.PAID:
            if to_money(order.final_amount) > 0:
                wallet_service.credit(
                    db, order.user_id, order.final_amount,
                    reason=f"Refund for cancelled order #{order.id}",
                    reference_type="cancellation",
                    reference_id=order.id,
                    related_order_id=order.id,
                    idempotency_key=f"refund:cancel:{order.id}",
                )
            order_service.set_status(db, order, "refund_status", RefundStatus.COMPLETED, changed_by)
            order_service.set_status(db, order, "payment_status", PaymentStatus.REFUNDED, changed_by)
        elif order.payment_status in (PaymentStatus.AWAITING_PAYMENT, PaymentStatus.FAILED):
            payment_service.cancel_open_payments(db, order)
            coupon_service.release_usage(db, order.id)
            order_service.set_status(db, order, "payment_status", PaymentStatus.CANCELLED, changed_by)

        order_service.set_status(db, order, "order_status", OrderStatus.CANCELLED, changed_by, reason or None)
        order_service.set_status(db, order, "delivery_status", DeliveryStatus.CANCELLED, changed_by)
        order.cancelled_at = now_utc()
        order.cancellation_reason = reason or None
        db.flush()

        logger.info(f"Order #{order.id} cancelled by {changed_by} (refund={order.refund_status})")
        return order.refund_status

    # ==========================================
    # User
    # ==========================================

    def cancel_order(self, db: Session, user_id: int, order_id: int, reason: str = "") -> CancellationResult:
        """
        Direct cancel while not shipped and inside the window; otherwise queue
        a review request and park the order in PendingCancellation.
        """
        order_service.get_order(db, user_id, order_id)
        order = order_service.get_order_for_update(db, order_id)

        if order.order_status == OrderStatus.PENDING_CANCELLATION:
            raise ConflictError(ErrorKind.CANCELLATION_ALREADY_REQUESTED, order_id=order_id)
        self._check_cancellable(order)

        direct = (
            order.order_status in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value)
            and self.within_window(order)
        )
        if direct:
            refund_status = self._apply_cancellation(db, order, reason, f"user:{user_id}")
            order_service.notify(db, order, "order_cancelled")
            return CancellationResult(order=order, refund_status=refund_status)

        request = db.query(CancellationRequest).filter(CancellationRequest.order_id == order.id).first()
        if request:
            # A previously rejected request is reopened
            request.previous_status = order.order_status
            request.status = CancellationStatus.PENDING_REVIEW.value
            request.reason = reason or None
            request.reviewed_at = None
        else:
            request = CancellationRequest(
                order_id=order.id,
                user_id=user_id,
                previous_status=order.order_status,
                status=CancellationStatus.PENDING_REVIEW.value,
                reason=reason or None,
            )
            db.add(request)
        order_service.set_status(
            db, order, "order_status", OrderStatus.PENDING_CANCELLATION, f"user:{user_id}", reason or None,
        )
        db.flush()
        logger.info(f"Order #{order.id} cancellation queued for review")
        order_service.notify(db, order, "cancellation_requested")
        return CancellationResult(
            order=order,
            requires_admin_review=True,
            refund_status=order.refund_status,
            request=request,
        )

    # ==========================================
    # Admin
    # ==========================================

    def approve_cancellation(self, db: Session, order_id: int, admin_id: int = None) -> CancellationResult:
        order = order_service.get_order_for_update(db, order_id)
        request = self._pending_request(db, order_id)
        if order.order_status != OrderStatus.PENDING_CANCELLATION or not request:
            raise PreconditionError(ErrorKind.NOT_PENDING_CANCELLATION, order_id=order_id)

        changed_by = f"admin:{admin_id}" if admin_id else "admin"
        refund_status = self._apply_cancellation(db, order, request.reason, changed_by)
        request.status = CancellationStatus.APPROVED.value
        request.is_stock_updated = True
        request.reviewed_at = now_utc()
        db.flush()
        order_service.notify(db, order, "order_cancelled")
        return CancellationResult(order=order, refund_status=refund_status, request=request)

    def reject_cancellation(self, db: Session, order_id: int, admin_id: int = None) -> CancellationResult:
        order = order_service.get_order_for_update(db, order_id)
        request = self._pending_request(db, order_id)
        if order.order_status != OrderStatus.PENDING_CANCELLATION or not request:
            raise PreconditionError(ErrorKind.NOT_PENDING_CANCELLATION, order_id=order_id)

        changed_by = f"admin:{admin_id}" if admin_id else "admin"
        order_service.set_status(
            db, order, "order_status", request.previous_status, changed_by, "Cancellation rejected",
        )
        request.status = CancellationStatus.REJECTED.value
        request.reviewed_at = now_utc()
        db.flush()
        logger.info(f"Order #{order.id} cancellation rejected, back to {request.previous_status}")
        return CancellationResult(order=order, refund_status=order.refund_status, request=request)

    def admin_cancel_order(
        self, db: Session, order_id: int, reason: str = "", admin_id: int = None,
    ) -> CancellationResult:
        """Privileged override: ignores the window, terminal guards still apply."""
        order = order_service.get_order_for_update(db, order_id)
        self._check_cancellable(order)

        changed_by = f"admin:{admin_id}" if admin_id else "admin"
        request = self._pending_request(db, order_id)
        refund_status = self._apply_cancellation(db, order, reason, changed_by)
        if request:
            request.status = CancellationStatus.APPROVED.value
            request.is_stock_updated = True
            request.reviewed_at = now_utc()
            db.flush()
        order_service.notify(db, order, "order_cancelled")
        return CancellationResult(order=order, refund_status=refund_status, request=request)

    # ==========================================
    # Query
    # ==========================================

    def list_cancellation_requests(self, db: Session, status: str = None) -> List[CancellationRequest]:
        q = db.query(CancellationRequest)
        if status:
            q = q.filter(CancellationRequest.status == status)
        return q.order_by(desc(CancellationRequest.id)).all()


cancellation_service = CancellationService()
