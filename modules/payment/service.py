"""
Payment Service
=================
Gateway callback verification (HMAC) and payment retry.

Callbacks are correlated to orders only through gateway_order_id. A mismatch
is never treated as success: the reservation is released and the failure
state is flushed before InvalidSignature is raised, so the callback route can
commit it.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from common.exceptions import (
    ErrorKind, ConflictError, NotFoundError, SignatureError,
)
from common.helpers import now_utc
from common.security import verify_payment_signature
from modules.checkout.models import CheckoutSession
from modules.checkout.service import checkout_service
from modules.inventory.service import inventory_service
from modules.order.models import Order, OrderItem, OrderStatus, PaymentStatus
from modules.order.service import order_service, GatewayIntent
from modules.payment.models import Payment, PaymentRecordStatus

logger = logging.getLogger("rmshop.payment")


class PaymentService:

    def _order_lines(self, db: Session, order: Order) -> List[OrderItem]:
        return db.query(OrderItem).filter(OrderItem.order_id == order.id).order_by(OrderItem.id).all()

    def release_reservation(self, db: Session, order: Order, reference_type: str = "order"):
        """Drop the stock hold of an unpaid gateway order (idempotent)."""
        if not order.is_stock_reserved:
            return
        for it in self._order_lines(db, order):
            inventory_service.release(db, it.product_id, it.quantity, reference_type, order.id)
        order.is_stock_reserved = False
        db.flush()

    # ==========================================
    # 🔐 Verify callback
    # ==========================================

    def verify_payment(
        self,
        db: Session,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> Order:
        payment = (
            db.query(Payment)
            .filter(Payment.gateway_order_id == gateway_order_id)
            .with_for_update()
            .first()
        )
        if not payment:
            raise NotFoundError(ErrorKind.PAYMENT_NOT_FOUND, gateway_order_id=gateway_order_id)

        order = order_service.get_order_for_update(db, payment.order_id)

        if payment.status != PaymentRecordStatus.CREATED:
            raise ConflictError(
                ErrorKind.PAYMENT_ALREADY_VERIFIED,
                f"Payment already {payment.status.lower()}",
                gateway_order_id=gateway_order_id, order_id=order.id, status=payment.status,
            )

        payment.attempts = (payment.attempts or 0) + 1

        if not verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
            self.release_reservation(db, order)
            payment.status = PaymentRecordStatus.FAILED.value
            payment.gateway_payment_id = gateway_payment_id or None
            order_service.set_status(
                db, order, "payment_status", PaymentStatus.FAILED, "gateway", "Signature mismatch",
            )
            db.flush()
            logger.warning(f"Payment for order #{order.id} rejected: invalid signature ({gateway_order_id})")
            raise SignatureError(
                ErrorKind.INVALID_SIGNATURE,
                "Payment signature verification failed",
                gateway_order_id=gateway_order_id, order_id=order.id,
            )

        for it in self._order_lines(db, order):
            inventory_service.commit_reservation(db, it.product_id, it.quantity, "order", order.id)
        order.is_stock_reserved = False

        payment.status = PaymentRecordStatus.PAID.value
        payment.gateway_payment_id = gateway_payment_id
        payment.signature = signature
        payment.verified_at = now_utc()

        order_service.set_status(db, order, "payment_status", PaymentStatus.PAID, "gateway")
        order_service.set_status(db, order, "order_status", OrderStatus.CONFIRMED, "gateway", "Payment verified")

        session = (
            db.query(CheckoutSession)
            .filter(CheckoutSession.id == order.checkout_session_id)
            .with_for_update()
            .first()
        )
        if session and not session.is_completed:
            checkout_service._complete(db, session)

        db.flush()
        logger.info(f"Payment verified for order #{order.id} ({gateway_order_id} / {gateway_payment_id})")
        order_service.notify(db, order, "payment_confirmed")
        return order

    # ==========================================
    # 🔁 Retry
    # ==========================================

    def retry_payment(self, db: Session, user_id: int, order_id: int) -> GatewayIntent:
        """New intent for a failed (or reservation-less) gateway order."""
        order_service.get_order(db, user_id, order_id)
        order = order_service.get_order_for_update(db, order_id)

        retryable = (
            order.is_gateway
            and order.order_status == OrderStatus.PENDING
            and (
                order.payment_status == PaymentStatus.FAILED
                or (order.payment_status == PaymentStatus.AWAITING_PAYMENT and not order.is_stock_reserved)
            )
        )
        if not retryable:
            raise ConflictError(
                ErrorKind.PAYMENT_NOT_RETRYABLE,
                order_id=order_id, payment_status=order.payment_status, order_status=order.order_status,
            )

        with db.begin_nested():
            # Older attempts can no longer be completed
            for old in db.query(Payment).filter(
                Payment.order_id == order.id,
                Payment.status == PaymentRecordStatus.CREATED.value,
            ).all():
                old.status = PaymentRecordStatus.FAILED.value

            intent = order_service.open_payment(db, order)
            order_service.set_status(
                db, order, "payment_status", PaymentStatus.AWAITING_PAYMENT, f"user:{user_id}", "Payment retried",
            )
            db.flush()

        logger.info(f"Payment retry for order #{order.id}: {intent.gateway_order_id}")
        return intent

    # ==========================================
    # Query
    # ==========================================

    def get_payments(self, db: Session, order_id: int) -> List[Payment]:
        return db.query(Payment).filter(Payment.order_id == order_id).order_by(Payment.id).all()

    def cancel_open_payments(self, db: Session, order: Order):
        """Mark unfinished attempts failed so late callbacks are rejected."""
        for p in db.query(Payment).filter(
            Payment.order_id == order.id,
            Payment.status == PaymentRecordStatus.CREATED.value,
        ).all():
            p.status = PaymentRecordStatus.FAILED.value
        db.flush()


payment_service = PaymentService()
