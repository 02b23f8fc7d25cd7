"""
Order Module - Service Layer
===============================
Order placement (COD / gateway), admin fulfilment transitions, queries.

Placement guards run before any write; all writes of one placement happen
inside a savepoint, so a late failure (stock gate, gateway error) leaves
nothing behind in the caller's transaction.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc

from config.settings import COD_LIMIT, PAYMENT_GATEWAY, GATEWAY_CURRENCY, GATEWAY_KEY_ID
from common.exceptions import (
    ErrorKind, ValidationError, ConflictError, ExternalServiceError,
    PreconditionError, NotFoundError, AuthorizationError,
)
from common.helpers import now_utc, to_money, to_minor_units
from common.notifications import notify_order_update
from modules.cart.service import cart_service
from modules.checkout.models import CheckoutSession, CheckoutItem
from modules.checkout.service import checkout_service
from modules.coupon.service import coupon_service
from modules.inventory.service import inventory_service
from modules.order.models import (
    Order, OrderItem, OrderStatusLog,
    PaymentMethod, PaymentStatus, DeliveryStatus, OrderStatus, RefundStatus,
)
from modules.payment.models import Payment, PaymentRecordStatus
from modules.user.models import User, UserAddress

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import get_gateway, IntentRequest
import modules.payment.gateways.razorpay  # noqa: F401
import modules.payment.gateways.sandbox   # noqa: F401

logger = logging.getLogger("rmshop.order")


@dataclass
class GatewayIntent:
    """What the client needs to open the gateway checkout widget."""
    order: Order
    payment: Payment
    gateway: str
    gateway_order_id: str
    amount_minor: int
    currency: str
    key_id: str = ""


# Admin fulfilment: current order_status -> allowed next status
FULFILMENT_TRANSITIONS = {
    OrderStatus.PENDING.value: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED.value: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED.value: OrderStatus.DELIVERED,
}


class OrderService:

    # ==========================================
    # Status helpers (audit trail)
    # ==========================================

    def set_status(
        self, db: Session, order: Order, field: str, new_value,
        changed_by: str = "system", description: str = None,
    ):
        """Assign a status field and append an OrderStatusLog row if it changed."""
        new_value = getattr(new_value, "value", new_value)
        old_value = getattr(order, field)
        if old_value == new_value:
            return
        setattr(order, field, new_value)
        db.add(OrderStatusLog(
            order_id=order.id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
            description=description,
        ))

    def notify(self, db: Session, order: Order, event_type: str):
        """Fire-and-forget customer notification; never blocks the flow."""
        user = db.query(User).filter(User.id == order.user_id).first()
        if user and user.email:
            notify_order_update(user.email, order.id, event_type)

    # ==========================================
    # Placement
    # ==========================================

    def _prepare_placement(self, db: Session, user_id: int) -> Tuple[CheckoutSession, List[CheckoutItem]]:
        """All guards shared by both payment paths. No writes."""
        cart_service._require_active_user(db, user_id)

        session = checkout_service._latest_session(db, user_id, lock=True)
        if not session:
            raise NotFoundError(ErrorKind.CHECKOUT_NOT_FOUND, user_id=user_id)

        already = db.query(Order.id).filter(Order.checkout_session_id == session.id).first()
        if session.is_completed or session.is_claimed or already:
            raise ConflictError(
                ErrorKind.ORDER_ALREADY_PLACED,
                "An order was already placed from this checkout",
                session_id=session.id,
                order_id=session.order_id or (already[0] if already else None),
            )

        if not session.shipping_address_id:
            raise ValidationError(ErrorKind.INVALID_ADDRESS, "Shipping address is not set", session_id=session.id)
        address = db.query(UserAddress).filter(UserAddress.id == session.shipping_address_id).first()
        if not address or address.user_id != user_id:
            raise ValidationError(ErrorKind.INVALID_ADDRESS, session_id=session.id)

        checkout_service.ensure_fresh(db, session)

        if session.coupon_code:
            # Coupon may have expired or run out since it was applied
            coupon_service.evaluate(db, session.coupon_code, session.subtotal, user_id=user_id)

        items = (
            db.query(CheckoutItem)
            .filter(CheckoutItem.session_id == session.id)
            .order_by(CheckoutItem.id)
            .all()
        )
        if not items:
            raise ValidationError(ErrorKind.EMPTY_CART, session_id=session.id)
        return session, items

    def _create_order(
        self, db: Session, session: CheckoutSession, items: List[CheckoutItem],
        method: PaymentMethod, payment_status: PaymentStatus, delivery_status: DeliveryStatus,
    ) -> Order:
        order = Order(
            user_id=session.user_id,
            checkout_session_id=session.id,
            shipping_address_id=session.shipping_address_id,
            total_amount=to_money(session.subtotal),
            discount_amount=to_money(session.discount_amount),
            final_amount=to_money(session.final_amount),
            coupon_code=session.coupon_code,
            payment_method=method.value,
            payment_status=payment_status.value,
            delivery_status=delivery_status.value,
            order_status=OrderStatus.PENDING.value,
            refund_status=RefundStatus.NOT_APPLICABLE.value,
            created_at=now_utc(),
        )
        db.add(order)
        db.flush()

        for it in items:
            db.add(OrderItem(
                order_id=order.id,
                product_id=it.product_id,
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
                line_total=it.line_total,
            ))
        db.add(OrderStatusLog(
            order_id=order.id,
            field="order_status",
            old_value=None,
            new_value=OrderStatus.PENDING.value,
            changed_by=f"user:{session.user_id}",
            description=f"Placed via {method.value}",
        ))
        db.flush()
        return order

    def place_order_cod(self, db: Session, user_id: int) -> Order:
        """
        Cash on delivery: decrement stock now, settle payment on delivery.
        Raises CODLimitExceeded above the COD ceiling.
        """
        session, items = self._prepare_placement(db, user_id)

        if to_money(session.final_amount) > to_money(COD_LIMIT):
            raise ValidationError(
                ErrorKind.COD_LIMIT_EXCEEDED,
                f"Cash on delivery is limited to {to_money(COD_LIMIT)}",
                session_id=session.id, final_amount=session.final_amount,
            )

        with db.begin_nested():
            order = self._create_order(
                db, session, items, PaymentMethod.COD,
                PaymentStatus.PENDING, DeliveryStatus.PROCESSING,
            )
            for it in items:
                inventory_service.decrement(db, it.product_id, it.quantity, "order", order.id)

            if session.coupon_code:
                coupon_service.record_usage(db, session.coupon_code, user_id, order.id, session.discount_amount)

            checkout_service.claim(db, session, order.id)
            checkout_service._complete(db, session)
            cart_service.clear_cart(db, user_id)

        logger.info(f"Order #{order.id} placed (COD) user={user_id} final={order.final_amount}")
        self.notify(db, order, "order_placed")
        return order

    def _create_intent(self, order: Order) -> Tuple[str, int, str]:
        gateway = get_gateway(PAYMENT_GATEWAY)
        if not gateway:
            raise ExternalServiceError(
                ErrorKind.GATEWAY_UNAVAILABLE, f"Gateway '{PAYMENT_GATEWAY}' is not registered",
                order_id=order.id,
            )
        amount_minor = to_minor_units(order.final_amount)
        result = gateway.create_intent(IntentRequest(
            amount_minor=amount_minor,
            currency=GATEWAY_CURRENCY,
            receipt=f"order_{order.id}",
            notes={"order_id": str(order.id), "user_id": str(order.user_id)},
        ))
        if not result.success or not result.gateway_order_id:
            logger.error(f"Gateway intent failed for order #{order.id}: {result.error_message}")
            raise ExternalServiceError(
                ErrorKind.GATEWAY_UNAVAILABLE,
                result.error_message or "Payment gateway unavailable",
                order_id=order.id,
            )
        return result.gateway_order_id, amount_minor, gateway.name

    def open_payment(self, db: Session, order: Order) -> GatewayIntent:
        """Reserve stock, create the gateway intent and its Payment row."""
        lines = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
        for it in lines:
            inventory_service.reserve(db, it.product_id, it.quantity, "order", order.id)
        order.is_stock_reserved = True

        gateway_order_id, amount_minor, gateway_name = self._create_intent(order)
        payment = Payment(
            order_id=order.id,
            method=gateway_name,
            amount=to_money(order.final_amount),
            currency=GATEWAY_CURRENCY,
            status=PaymentRecordStatus.CREATED.value,
            gateway_order_id=gateway_order_id,
            attempts=0,
        )
        db.add(payment)
        db.flush()
        return GatewayIntent(
            order=order,
            payment=payment,
            gateway=gateway_name,
            gateway_order_id=gateway_order_id,
            amount_minor=amount_minor,
            currency=GATEWAY_CURRENCY,
            key_id=GATEWAY_KEY_ID,
        )

    def place_order_gateway(self, db: Session, user_id: int) -> GatewayIntent:
        """
        Gateway payment: reserve stock, create a remote intent, hand back its id.
        Stock is decremented only when the signed callback is verified.
        """
        session, items = self._prepare_placement(db, user_id)

        with db.begin_nested():
            order = self._create_order(
                db, session, items, PaymentMethod.GATEWAY,
                PaymentStatus.AWAITING_PAYMENT, DeliveryStatus.PENDING,
            )
            # Held from placement so limits apply before money moves
            if session.coupon_code:
                coupon_service.record_usage(db, session.coupon_code, user_id, order.id, session.discount_amount)
            intent = self.open_payment(db, order)

            checkout_service.claim(db, session, order.id)
            cart_service.clear_cart(db, user_id)

        logger.info(
            f"Order #{order.id} placed (gateway {intent.gateway}) user={user_id} "
            f"gateway_order={intent.gateway_order_id} amount_minor={intent.amount_minor}"
        )
        self.notify(db, order, "order_placed")
        return intent

    # ==========================================
    # Admin fulfilment
    # ==========================================

    def get_order_for_update(self, db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(ErrorKind.ORDER_NOT_FOUND, order_id=order_id)
        return order

    def update_order_status(
        self, db: Session, order_id: int, new_status: str, changed_by: str = "admin",
    ) -> Order:
        """Pending -> Confirmed -> Shipped -> Delivered. Anything else is rejected."""
        order = self.get_order_for_update(db, order_id)
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise PreconditionError(
                ErrorKind.INVALID_STATUS_TRANSITION, f"Unknown status '{new_status}'",
                order_id=order_id, to=new_status,
            )

        current = order.order_status
        if FULFILMENT_TRANSITIONS.get(current) != target:
            raise PreconditionError(
                ErrorKind.INVALID_STATUS_TRANSITION,
                f"Cannot move order from {current} to {target.value}",
                order_id=order_id, current=current, to=target.value,
            )
        if target == OrderStatus.CONFIRMED and order.is_gateway and not order.is_paid:
            raise PreconditionError(
                ErrorKind.INVALID_STATUS_TRANSITION,
                "Gateway order must be paid before confirmation",
                order_id=order_id, payment_status=order.payment_status,
            )

        self.set_status(db, order, "order_status", target, changed_by)
        if target == OrderStatus.SHIPPED:
            self.set_status(db, order, "delivery_status", DeliveryStatus.SHIPPED, changed_by)
        elif target == OrderStatus.DELIVERED:
            self.set_status(db, order, "delivery_status", DeliveryStatus.DELIVERED, changed_by)
            order.delivered_at = now_utc()
            if order.is_cod:
                self.set_status(db, order, "payment_status", PaymentStatus.PAID, changed_by, "COD settled on delivery")

        db.flush()
        logger.info(f"Order #{order.id} {current} -> {target.value} by {changed_by}")
        return order

    # ==========================================
    # Query
    # ==========================================

    def get_order(self, db: Session, user_id: int, order_id: int) -> Order:
        """Order of this user. Raises OrderNotFound / Unauthorized."""
        order = (
            db.query(Order)
            .options(joinedload(Order.items))
            .filter(Order.id == order_id)
            .first()
        )
        if not order:
            raise NotFoundError(ErrorKind.ORDER_NOT_FOUND, order_id=order_id)
        if order.user_id != user_id:
            raise AuthorizationError(ErrorKind.UNAUTHORIZED, order_id=order_id, user_id=user_id)
        return order

    def get_order_by_id(self, db: Session, order_id: int) -> Optional[Order]:
        return db.query(Order).filter(Order.id == order_id).first()

    def list_user_orders(self, db: Session, user_id: int, status: str = None) -> List[Order]:
        q = db.query(Order).filter(Order.user_id == user_id)
        if status:
            q = q.filter(Order.order_status == status)
        return q.order_by(desc(Order.id)).all()

    def list_orders(self, db: Session, status: str = None) -> List[Order]:
        q = db.query(Order)
        if status:
            q = q.filter(Order.order_status == status)
        return q.order_by(desc(Order.id)).all()

    def get_status_history(self, db: Session, order_id: int) -> List[OrderStatusLog]:
        return (
            db.query(OrderStatusLog)
            .filter(OrderStatusLog.order_id == order_id)
            .order_by(OrderStatusLog.id)
            .all()
        )


order_service = OrderService()
