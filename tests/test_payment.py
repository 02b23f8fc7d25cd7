import pytest

from common.exceptions import (
    ErrorKind, ValidationError, ConflictError, NotFoundError, SignatureError, AuthorizationError,
)
from modules.checkout.models import CheckoutStatus
from modules.coupon.models import CouponUsage
from modules.inventory.service import inventory_service
from modules.order.models import OrderStatus, PaymentStatus
from modules.order.service import order_service
from modules.payment.models import Payment, PaymentRecordStatus
from modules.payment.service import payment_service


@pytest.fixture
def gateway_order(db, ready_checkout, user):
    ready_checkout()
    return order_service.place_order_gateway(db, user.id)


class TestVerify:

    def test_valid_callback_confirms_order(self, db, gateway_order, product, sign):
        gid = gateway_order.gateway_order_id
        order = payment_service.verify_payment(db, gid, "pay_001", sign(gid, "pay_001"))

        assert order.payment_status == PaymentStatus.PAID.value
        assert order.order_status == OrderStatus.CONFIRMED.value
        assert order.is_stock_reserved is False

        stock = inventory_service.get_stock(db, product.id)
        assert stock["stock_quantity"] == 3
        assert stock["reserved_quantity"] == 0

        payment = gateway_order.payment
        assert payment.status == PaymentRecordStatus.PAID.value
        assert payment.gateway_payment_id == "pay_001"
        assert payment.verified_at is not None

    def test_session_completed_on_payment(self, db, ready_checkout, user, sign):
        session = ready_checkout()
        intent = order_service.place_order_gateway(db, user.id)
        gid = intent.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_002", sign(gid, "pay_002"))
        assert session.status == CheckoutStatus.COMPLETED.value

    def test_signature_is_case_insensitive(self, db, gateway_order, sign):
        gid = gateway_order.gateway_order_id
        order = payment_service.verify_payment(db, gid, "pay_003", sign(gid, "pay_003").upper())
        assert order.is_paid

    def test_tampered_signature_releases_hold(self, db, gateway_order, product, sign):
        gid = gateway_order.gateway_order_id
        with pytest.raises(SignatureError) as exc:
            payment_service.verify_payment(db, gid, "pay_004", sign(gid, "pay_other"))
        assert exc.value.kind == ErrorKind.INVALID_SIGNATURE
        assert exc.value.status_code == 400

        order = gateway_order.order
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.order_status == OrderStatus.PENDING.value
        assert order.is_stock_reserved is False
        assert gateway_order.payment.status == PaymentRecordStatus.FAILED.value

        stock = inventory_service.get_stock(db, product.id)
        assert stock["stock_quantity"] == 5
        assert stock["reserved_quantity"] == 0

    def test_empty_signature_is_rejected(self, db, gateway_order):
        with pytest.raises(SignatureError):
            payment_service.verify_payment(db, gateway_order.gateway_order_id, "pay_005", "")

    def test_second_callback_is_rejected(self, db, gateway_order, sign):
        gid = gateway_order.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_006", sign(gid, "pay_006"))
        with pytest.raises(ConflictError) as exc:
            payment_service.verify_payment(db, gid, "pay_006", sign(gid, "pay_006"))
        assert exc.value.kind == ErrorKind.PAYMENT_ALREADY_VERIFIED

    def test_callback_after_failure_is_rejected(self, db, gateway_order, sign):
        gid = gateway_order.gateway_order_id
        with pytest.raises(SignatureError):
            payment_service.verify_payment(db, gid, "pay_007", "deadbeef")
        with pytest.raises(ConflictError) as exc:
            payment_service.verify_payment(db, gid, "pay_007", sign(gid, "pay_007"))
        assert exc.value.kind == ErrorKind.PAYMENT_ALREADY_VERIFIED
        assert gateway_order.order.payment_status == PaymentStatus.FAILED.value

    def test_unknown_gateway_order(self, db, sign):
        with pytest.raises(NotFoundError) as exc:
            payment_service.verify_payment(db, "order_missing", "pay_x", sign("order_missing", "pay_x"))
        assert exc.value.kind == ErrorKind.PAYMENT_NOT_FOUND


class TestRetry:

    def test_retry_after_failed_signature(self, db, gateway_order, user, product, sign):
        gid = gateway_order.gateway_order_id
        with pytest.raises(SignatureError):
            payment_service.verify_payment(db, gid, "pay_008", "bad")

        retry = payment_service.retry_payment(db, user.id, gateway_order.order.id)
        assert retry.gateway_order_id != gid
        assert retry.order.payment_status == PaymentStatus.AWAITING_PAYMENT.value
        assert inventory_service.get_stock(db, product.id)["reserved_quantity"] == 2

        payments = payment_service.get_payments(db, retry.order.id)
        assert [p.status for p in payments] == [
            PaymentRecordStatus.FAILED.value, PaymentRecordStatus.CREATED.value,
        ]

        new_gid = retry.gateway_order_id
        order = payment_service.verify_payment(db, new_gid, "pay_009", sign(new_gid, "pay_009"))
        assert order.order_status == OrderStatus.CONFIRMED.value
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 3

    def test_paid_order_not_retryable(self, db, gateway_order, user, sign):
        gid = gateway_order.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_010", sign(gid, "pay_010"))
        with pytest.raises(ConflictError) as exc:
            payment_service.retry_payment(db, user.id, gateway_order.order.id)
        assert exc.value.kind == ErrorKind.PAYMENT_NOT_RETRYABLE

    def test_awaiting_with_hold_not_retryable(self, db, gateway_order, user):
        with pytest.raises(ConflictError):
            payment_service.retry_payment(db, user.id, gateway_order.order.id)
        assert db.query(Payment).count() == 1

    def test_cod_order_not_retryable(self, db, ready_checkout, user):
        ready_checkout()
        order = order_service.place_order_cod(db, user.id)
        with pytest.raises(ConflictError):
            payment_service.retry_payment(db, user.id, order.id)

    def test_foreign_order(self, db, gateway_order, make_user):
        with pytest.raises(AuthorizationError):
            payment_service.retry_payment(db, make_user().id, gateway_order.order.id)


class TestCouponUsage:

    def test_gateway_order_consumes_coupon(self, db, ready_checkout, make_coupon, user, sign):
        coupon = make_coupon(max_total_uses=1)
        ready_checkout(coupon_code="SAVE10")
        intent = order_service.place_order_gateway(db, user.id)

        assert coupon.current_uses == 1
        usage = db.query(CouponUsage).filter(CouponUsage.order_id == intent.order.id).one()
        assert usage.user_id == user.id

        gid = intent.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_c01", sign(gid, "pay_c01"))
        assert coupon.current_uses == 1
        assert db.query(CouponUsage).count() == 1

    def test_single_use_coupon_cannot_back_two_gateway_orders(
        self, db, ready_checkout, make_coupon, make_user, make_address, user, sign,
    ):
        coupon = make_coupon(max_total_uses=1)
        other = make_user()
        ready_checkout(coupon_code="SAVE10")
        ready_checkout(coupon_code="SAVE10", target_user=other, target_address=make_address(other))

        intent = order_service.place_order_gateway(db, user.id)
        gid = intent.gateway_order_id
        payment_service.verify_payment(db, gid, "pay_c02", sign(gid, "pay_c02"))

        with pytest.raises(ValidationError) as exc:
            order_service.place_order_gateway(db, other.id)
        assert exc.value.kind == ErrorKind.COUPON_USAGE_EXHAUSTED
        assert coupon.current_uses == 1
        assert db.query(Payment).count() == 1

    def test_failed_signature_keeps_usage_for_retry(self, db, ready_checkout, make_coupon, user, sign):
        coupon = make_coupon()
        ready_checkout(coupon_code="SAVE10")
        intent = order_service.place_order_gateway(db, user.id)
        gid = intent.gateway_order_id
        with pytest.raises(SignatureError):
            payment_service.verify_payment(db, gid, "pay_c03", "0" * 64)

        retry = payment_service.retry_payment(db, user.id, intent.order.id)
        new_gid = retry.gateway_order_id
        order = payment_service.verify_payment(db, new_gid, "pay_c04", sign(new_gid, "pay_c04"))
        assert order.is_paid
        assert coupon.current_uses == 1
        assert db.query(CouponUsage).filter(CouponUsage.order_id == order.id).count() == 1
