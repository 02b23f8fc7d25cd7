"""
Checkout Module - Service Layer
=================================
Session lifecycle: Created -> AddressSet <-> CouponApplied -> Completed.

The caller never passes a session id: the active session is resolved by
user id (newest, not superseded). Creating a new session supersedes every
earlier unclaimed one. Completion happens only from order placement.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from common.exceptions import (
    ErrorKind, ValidationError, ConflictError, ResourceError, NotFoundError,
)
from common.helpers import now_utc, to_money
from modules.cart.service import cart_service
from modules.checkout.models import CheckoutSession, CheckoutItem, CheckoutStatus
from modules.coupon.service import coupon_service
from modules.user.models import UserAddress

logger = logging.getLogger("rmshop.checkout")


class CheckoutService:

    # ==========================================
    # Lookup
    # ==========================================

    def _latest_session(self, db: Session, user_id: int, lock: bool = False) -> Optional[CheckoutSession]:
        """Newest non-superseded session of the user, in any status."""
        q = (
            db.query(CheckoutSession)
            .filter(
                CheckoutSession.user_id == user_id,
                CheckoutSession.is_superseded == False,
            )
            .order_by(CheckoutSession.id.desc())
        )
        if lock:
            q = q.with_for_update()
        return q.first()

    def get_active_session(self, db: Session, user_id: int, lock: bool = False) -> CheckoutSession:
        """The session the user is currently checking out with (not Completed, not claimed by an order)."""
        session = self._latest_session(db, user_id, lock=lock)
        if not session or session.is_completed or session.is_claimed:
            raise NotFoundError(ErrorKind.CHECKOUT_NOT_FOUND, user_id=user_id)
        return session

    def _mutable_session(self, db: Session, user_id: int) -> CheckoutSession:
        session = self._latest_session(db, user_id, lock=True)
        if not session:
            raise NotFoundError(ErrorKind.CHECKOUT_NOT_FOUND, user_id=user_id)
        if session.is_completed or session.is_claimed:
            raise ConflictError(ErrorKind.CHECKOUT_COMPLETED, session_id=session.id)
        return session

    # ==========================================
    # Helpers
    # ==========================================

    def is_stale(self, db: Session, session: CheckoutSession) -> bool:
        return cart_service.fingerprint(db, session.user_id) != session.cart_fingerprint

    def ensure_fresh(self, db: Session, session: CheckoutSession):
        """Reject sessions whose cart changed since the snapshot."""
        if self.is_stale(db, session):
            raise ConflictError(
                ErrorKind.CART_CHANGED,
                "Cart changed since checkout was created",
                session_id=session.id,
            )

    def _derive_status(self, session: CheckoutSession):
        if session.status == CheckoutStatus.COMPLETED:
            return
        if session.coupon_code:
            session.status = CheckoutStatus.COUPON_APPLIED
        elif session.shipping_address_id:
            session.status = CheckoutStatus.ADDRESS_SET
        else:
            session.status = CheckoutStatus.CREATED

    # ==========================================
    # Create
    # ==========================================

    def create_checkout(self, db: Session, user_id: int) -> CheckoutSession:
        """
        Snapshot the cart at live prices into a new session.
        Earlier unclaimed sessions of the user are superseded.
        """
        cart_service._require_active_user(db, user_id)
        lines = cart_service.get_lines(db, user_id)
        if not lines:
            raise ValidationError(ErrorKind.EMPTY_CART, user_id=user_id)

        snapshot = []
        subtotal = to_money(0)
        for line in lines:
            product = line.product
            if not product or not product.is_sellable:
                raise ValidationError(ErrorKind.PRODUCT_UNAVAILABLE, product_id=line.product_id)
            if product.available_quantity < line.quantity:
                raise ResourceError(
                    ErrorKind.INSUFFICIENT_STOCK,
                    product_id=product.id,
                    requested=line.quantity,
                    available=product.available_quantity,
                )
            unit_price = to_money(product.price)
            line_total = to_money(unit_price * line.quantity)
            subtotal += line_total
            snapshot.append((product, line.quantity, unit_price, line_total))

        superseded = (
            db.query(CheckoutSession)
            .filter(
                CheckoutSession.user_id == user_id,
                CheckoutSession.is_superseded == False,
                CheckoutSession.order_id.is_(None),
                CheckoutSession.status != CheckoutStatus.COMPLETED,
            )
            .all()
        )
        for old in superseded:
            old.is_superseded = True

        session = CheckoutSession(
            user_id=user_id,
            subtotal=to_money(subtotal),
            discount_amount=to_money(0),
            final_amount=to_money(subtotal),
            cart_fingerprint=cart_service.fingerprint(db, user_id),
            item_count=sum(qty for _, qty, _, _ in snapshot),
            status=CheckoutStatus.CREATED,
        )
        db.add(session)
        db.flush()

        for product, qty, unit_price, line_total in snapshot:
            db.add(CheckoutItem(
                session_id=session.id,
                product_id=product.id,
                product_name=product.name,
                quantity=qty,
                unit_price=unit_price,
                line_total=line_total,
            ))
        db.flush()
        logger.info(
            f"Checkout #{session.id} created for user={user_id} subtotal={session.subtotal} "
            f"(superseded {len(superseded)})"
        )
        return session

    # ==========================================
    # Mutations
    # ==========================================

    def set_address(self, db: Session, user_id: int, address_id: int) -> CheckoutSession:
        session = self._mutable_session(db, user_id)
        self.ensure_fresh(db, session)

        address = db.query(UserAddress).filter(UserAddress.id == address_id).first()
        if not address:
            raise NotFoundError(ErrorKind.ADDRESS_NOT_FOUND, address_id=address_id)
        if address.user_id != user_id:
            raise ValidationError(ErrorKind.ADDRESS_NOT_OWNED, address_id=address_id, user_id=user_id)

        session.shipping_address_id = address.id
        self._derive_status(session)
        db.flush()
        return session

    def apply_coupon(self, db: Session, user_id: int, code: str) -> CheckoutSession:
        session = self._mutable_session(db, user_id)
        if session.coupon_code:
            raise ConflictError(ErrorKind.ALREADY_APPLIED, session_id=session.id, code=session.coupon_code)
        self.ensure_fresh(db, session)

        quote = coupon_service.evaluate(db, code, session.subtotal, user_id=user_id)
        session.coupon_code = quote.coupon.code
        session.discount_amount = quote.discount_amount
        session.final_amount = to_money(to_money(session.subtotal) - quote.discount_amount)
        self._derive_status(session)
        db.flush()
        logger.info(
            f"Checkout #{session.id} coupon {session.coupon_code} discount={session.discount_amount}"
            f"{' (capped)' if quote.capped else ''}"
        )
        return session

    def remove_coupon(self, db: Session, user_id: int) -> CheckoutSession:
        session = self._mutable_session(db, user_id)
        if not session.coupon_code:
            raise ValidationError(ErrorKind.NO_COUPON_APPLIED, session_id=session.id)

        session.coupon_code = None
        session.discount_amount = to_money(0)
        session.final_amount = to_money(session.subtotal)
        self._derive_status(session)
        db.flush()
        return session

    def claim(self, db: Session, session: CheckoutSession, order_id: int):
        """Record the order created from this session (placement guard)."""
        session.order_id = order_id
        db.flush()

    def _complete(self, db: Session, session: CheckoutSession):
        session.status = CheckoutStatus.COMPLETED
        session.completed_at = now_utc()
        db.flush()
        logger.info(f"Checkout #{session.id} completed (order #{session.order_id})")

    # ==========================================
    # Query
    # ==========================================

    def get_summary(self, db: Session, user_id: int) -> Dict[str, Any]:
        session = self.get_active_session(db, user_id)
        self.ensure_fresh(db, session)

        items = (
            db.query(CheckoutItem)
            .filter(CheckoutItem.session_id == session.id)
            .order_by(CheckoutItem.id)
            .all()
        )
        address = None
        if session.shipping_address_id:
            address = db.query(UserAddress).filter(UserAddress.id == session.shipping_address_id).first()

        return {
            "session": session,
            "items": items,
            "address": address,
        }


checkout_service = CheckoutService()
