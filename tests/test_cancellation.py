from datetime import timedelta
from decimal import Decimal

import pytest

from common.exceptions import ErrorKind, ConflictError, PreconditionError, AuthorizationError
from common.helpers import now_utc
from modules.coupon.models import CouponUsage
from modules.inventory.service import inventory_service
from modules.order.cancellation_service import cancellation_service
from modules.order.models import (
    CancellationStatus, OrderStatus, PaymentStatus, DeliveryStatus, RefundStatus,
)
from modules.order.service import order_service
from modules.payment.models import PaymentRecordStatus
from modules.payment.service import payment_service
from modules.wallet.models import WalletTransaction
from modules.wallet.service import wallet_service


@pytest.fixture
def cod_order(db, ready_checkout, user):
    ready_checkout()
    return order_service.place_order_cod(db, user.id)


@pytest.fixture
def paid_order(db, ready_checkout, user, sign):
    ready_checkout()
    intent = order_service.place_order_gateway(db, user.id)
    gid = intent.gateway_order_id
    return payment_service.verify_payment(db, gid, "pay_c1", sign(gid, "pay_c1"))


def age(db, order, hours):
    order.created_at = now_utc() - timedelta(hours=hours)
    db.flush()


class TestDirectCancel:

    def test_cod_within_window(self, db, cod_order, user, product):
        result = cancellation_service.cancel_order(db, user.id, cod_order.id, "Changed my mind")

        assert result.requires_admin_review is False
        assert result.refund_status == RefundStatus.NOT_APPLICABLE.value
        order = result.order
        assert order.order_status == OrderStatus.CANCELLED.value
        assert order.delivery_status == DeliveryStatus.CANCELLED.value
        assert order.cancellation_reason == "Changed my mind"
        assert order.cancelled_at is not None
        assert order.is_stock_restored is True
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5
        assert wallet_service.get_balance(db, user.id) == Decimal("0.00")

    def test_paid_gateway_refunds_to_wallet(self, db, paid_order, user, product):
        result = cancellation_service.cancel_order(db, user.id, paid_order.id)

        assert result.refund_status == RefundStatus.COMPLETED.value
        assert paid_order.payment_status == PaymentStatus.REFUNDED.value
        assert wallet_service.get_balance(db, user.id) == Decimal("200.00")
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5

    def test_unpaid_gateway_releases_hold(self, db, ready_checkout, user, product):
        ready_checkout()
        intent = order_service.place_order_gateway(db, user.id)

        cancellation_service.cancel_order(db, user.id, intent.order.id)

        assert intent.order.payment_status == PaymentStatus.CANCELLED.value
        assert intent.payment.status == PaymentRecordStatus.FAILED.value
        stock = inventory_service.get_stock(db, product.id)
        assert stock["stock_quantity"] == 5
        assert stock["reserved_quantity"] == 0
        assert wallet_service.get_balance(db, user.id) == Decimal("0.00")

    def test_late_callback_after_cancel_is_rejected(self, db, ready_checkout, user, sign):
        ready_checkout()
        intent = order_service.place_order_gateway(db, user.id)
        cancellation_service.cancel_order(db, user.id, intent.order.id)
        gid = intent.gateway_order_id
        with pytest.raises(ConflictError) as exc:
            payment_service.verify_payment(db, gid, "pay_late", sign(gid, "pay_late"))
        assert exc.value.kind == ErrorKind.PAYMENT_ALREADY_VERIFIED

    def test_foreign_order(self, db, cod_order, make_user):
        with pytest.raises(AuthorizationError):
            cancellation_service.cancel_order(db, make_user().id, cod_order.id)

    def test_fully_discounted_paid_order(self, db, ready_checkout, make_coupon, user, product, sign):
        make_coupon(code="FREE", percent="100")
        ready_checkout(coupon_code="FREE")
        intent = order_service.place_order_gateway(db, user.id)
        assert intent.amount_minor == 0
        gid = intent.gateway_order_id
        order = payment_service.verify_payment(db, gid, "pay_free", sign(gid, "pay_free"))
        assert order.final_amount == Decimal("0.00")

        result = cancellation_service.cancel_order(db, user.id, order.id)

        assert result.refund_status == RefundStatus.COMPLETED.value
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert order.order_status == OrderStatus.CANCELLED.value
        assert db.query(WalletTransaction).count() == 0
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5

    def test_unpaid_cancel_gives_coupon_back(self, db, ready_checkout, make_coupon, user):
        coupon = make_coupon()
        ready_checkout(coupon_code="SAVE10")
        intent = order_service.place_order_gateway(db, user.id)
        assert coupon.current_uses == 1

        cancellation_service.cancel_order(db, user.id, intent.order.id)

        assert coupon.current_uses == 0
        assert db.query(CouponUsage).count() == 0
        ready_checkout(coupon_code="SAVE10")
        assert order_service.place_order_cod(db, user.id).coupon_code == "SAVE10"

    def test_paid_cancel_keeps_coupon_used(self, db, ready_checkout, make_coupon, user, sign):
        coupon = make_coupon()
        ready_checkout(coupon_code="SAVE10")
        intent = order_service.place_order_gateway(db, user.id)
        gid = intent.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_c05", sign(gid, "pay_c05"))

        cancellation_service.cancel_order(db, user.id, intent.order.id)
        assert coupon.current_uses == 1
        assert wallet_service.get_balance(db, user.id) == Decimal("180.00")


class TestReviewQueue:

    def test_outside_window_is_queued_then_approved(self, db, paid_order, user, product):
        age(db, paid_order, 25)
        result = cancellation_service.cancel_order(db, user.id, paid_order.id, "Too slow")

        assert result.requires_admin_review is True
        assert paid_order.order_status == OrderStatus.PENDING_CANCELLATION.value
        assert result.request.previous_status == OrderStatus.CONFIRMED.value
        assert wallet_service.get_balance(db, user.id) == Decimal("0.00")
        assert len(cancellation_service.list_cancellation_requests(
            db, status=CancellationStatus.PENDING_REVIEW.value,
        )) == 1

        approved = cancellation_service.approve_cancellation(db, paid_order.id, admin_id=1)
        assert approved.request.status == CancellationStatus.APPROVED.value
        assert paid_order.order_status == OrderStatus.CANCELLED.value
        assert paid_order.cancellation_reason == "Too slow"
        assert wallet_service.get_balance(db, user.id) == Decimal("200.00")
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5

    def test_reject_restores_previous_status(self, db, cod_order, user, product):
        age(db, cod_order, 30)
        cancellation_service.cancel_order(db, user.id, cod_order.id)

        result = cancellation_service.reject_cancellation(db, cod_order.id)
        assert result.request.status == CancellationStatus.REJECTED.value
        assert cod_order.order_status == OrderStatus.PENDING.value
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 3

        # A rejected request can be raised again
        again = cancellation_service.cancel_order(db, user.id, cod_order.id)
        assert again.requires_admin_review is True
        assert again.request.id == result.request.id

    def test_shipped_order_is_queued_even_inside_window(self, db, cod_order, user):
        order_service.update_order_status(db, cod_order.id, "Confirmed")
        order_service.update_order_status(db, cod_order.id, "Shipped")
        result = cancellation_service.cancel_order(db, user.id, cod_order.id)
        assert result.requires_admin_review is True
        assert result.request.previous_status == OrderStatus.SHIPPED.value

    def test_already_requested(self, db, cod_order, user):
        age(db, cod_order, 25)
        cancellation_service.cancel_order(db, user.id, cod_order.id)
        with pytest.raises(ConflictError) as exc:
            cancellation_service.cancel_order(db, user.id, cod_order.id)
        assert exc.value.kind == ErrorKind.CANCELLATION_ALREADY_REQUESTED

    def test_approve_without_request(self, db, cod_order):
        with pytest.raises(PreconditionError) as exc:
            cancellation_service.approve_cancellation(db, cod_order.id)
        assert exc.value.kind == ErrorKind.NOT_PENDING_CANCELLATION
        with pytest.raises(PreconditionError):
            cancellation_service.reject_cancellation(db, cod_order.id)


class TestGuards:

    def test_already_cancelled(self, db, cod_order, user):
        cancellation_service.cancel_order(db, user.id, cod_order.id)
        with pytest.raises(ConflictError) as exc:
            cancellation_service.cancel_order(db, user.id, cod_order.id)
        assert exc.value.kind == ErrorKind.ORDER_ALREADY_CANCELLED

    def test_delivered_is_not_cancellable(self, db, cod_order, user):
        for status in ("Confirmed", "Shipped", "Delivered"):
            order_service.update_order_status(db, cod_order.id, status)
        with pytest.raises(ConflictError) as exc:
            cancellation_service.cancel_order(db, user.id, cod_order.id)
        assert exc.value.kind == ErrorKind.ORDER_NOT_CANCELLABLE
        with pytest.raises(ConflictError):
            cancellation_service.admin_cancel_order(db, cod_order.id)

    def test_stock_restored_only_once(self, db, cod_order, user, product):
        cancellation_service.cancel_order(db, user.id, cod_order.id)
        with pytest.raises(ConflictError):
            cancellation_service.admin_cancel_order(db, cod_order.id)
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5


class TestAdminCancel:

    def test_override_ignores_window(self, db, paid_order, user, product):
        age(db, paid_order, 72)
        order_service.update_order_status(db, paid_order.id, "Shipped")

        result = cancellation_service.admin_cancel_order(db, paid_order.id, "Out of stock", admin_id=7)

        assert result.requires_admin_review is False
        assert paid_order.order_status == OrderStatus.CANCELLED.value
        assert paid_order.refund_status == RefundStatus.COMPLETED.value
        assert wallet_service.get_balance(db, user.id) == Decimal("200.00")
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5

        history = order_service.get_status_history(db, paid_order.id)
        assert any(h.changed_by == "admin:7" and h.new_value == "Cancelled" for h in history)

    def test_override_closes_open_request(self, db, cod_order, user):
        age(db, cod_order, 25)
        cancellation_service.cancel_order(db, user.id, cod_order.id)
        result = cancellation_service.admin_cancel_order(db, cod_order.id)
        assert result.request.status == CancellationStatus.APPROVED.value
