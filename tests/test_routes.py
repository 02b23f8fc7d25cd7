from datetime import timedelta

import pytest

from common.helpers import now_utc
from modules.order.models import Order


def as_user(user):
    return {"X-User-ID": str(user.id)}


def as_admin(admin):
    return {"X-User-ID": str(admin.id), "X-User-Role": "admin"}


@pytest.fixture
def prepared(client, user, address, product, make_coupon):
    """Cart with 2 items, checkout with address and SAVE10 applied, all over HTTP."""
    make_coupon()
    h = as_user(user)
    assert client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=h).status_code == 200
    assert client.post("/api/checkout", headers=h).status_code == 200
    assert client.put("/api/checkout/address", json={"address_id": address.id}, headers=h).status_code == 200
    resp = client.post("/api/checkout/coupon", json={"code": "save10"}, headers=h)
    assert resp.status_code == 200
    return resp.json()


class TestAuth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "version": "1.0.0"}

    def test_login_required(self, client):
        resp = client.get("/api/cart")
        assert resp.status_code == 401

    def test_admin_required(self, client, user):
        assert client.get("/admin/orders", headers=as_user(user)).status_code == 403


class TestCheckoutFlow:

    def test_checkout_summary(self, client, prepared, user):
        assert prepared["coupon_code"] == "SAVE10"
        assert prepared["final_amount"] == 180

        summary = client.get("/api/checkout", headers=as_user(user)).json()
        assert summary["subtotal"] == 200
        assert summary["discount_amount"] == 20
        assert [i["quantity"] for i in summary["items"]] == [2]

    def test_coupon_preview(self, client, user, product, make_coupon):
        make_coupon()
        h = as_user(user)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=h)
        body = client.get("/api/coupon/check", params={"code": "save10"}, headers=h).json()
        assert body["code"] == "SAVE10"
        assert body["discount_amount"] == 20
        assert body["final_amount"] == 180

    def test_gateway_order_to_refund(self, client, prepared, user, admin, sign):
        h, ah = as_user(user), as_admin(admin)

        intent = client.post("/api/orders/gateway", headers=h).json()
        assert intent["amount"] == 18000
        assert intent["currency"] == "INR"
        order_id = intent["order_id"]

        pending = client.get("/api/checkout", headers=h)
        assert pending.status_code == 404
        assert pending.json()["error"] == "CheckoutNotFound"

        gid = intent["gateway_order_id"]
        verified = client.post("/api/payments/verify", json={
            "gateway_order_id": gid,
            "gateway_payment_id": "pay_http",
            "signature": sign(gid, "pay_http"),
        }).json()
        assert verified["payment_status"] == "Paid"
        assert verified["order_status"] == "Confirmed"

        for status in ("Shipped", "Delivered"):
            resp = client.patch(f"/admin/orders/{order_id}/status", json={"status": status}, headers=ah)
            assert resp.status_code == 200
        assert resp.json()["delivery_status"] == "Delivered"

        ret = client.post(f"/api/orders/{order_id}/return", json={"reason": "Too small"}, headers=h).json()
        return_id = ret["return_id"]
        assert ret["status"] == "Pending"

        decided = client.post(f"/admin/returns/{return_id}/decision", json={"approve": True}, headers=ah)
        assert decided.json()["status"] == "Approved"

        refunded = client.post(f"/admin/returns/{return_id}/refund", headers=ah).json()
        assert refunded["refund_status"] == "Completed"
        assert refunded["refund_amount"] == 180

        assert client.get("/api/wallet", headers=h).json()["balance"] == 180
        txns = client.get("/api/wallet/transactions", headers=h).json()["transactions"]
        assert len(txns) == 1

        detail = client.get(f"/api/orders/{order_id}", headers=h).json()
        assert detail["payment_status"] == "Refunded"
        assert detail["order_status"] == "Returned"
        assert detail["items"][0]["quantity"] == 2

    def test_cod_and_cancel(self, client, prepared, user):
        h = as_user(user)
        order = client.post("/api/orders/cod", headers=h).json()
        assert order["payment_method"] == "COD"
        assert order["final_amount"] == 180

        resp = client.post(f"/api/orders/{order['order_id']}/cancel", json={"reason": "Duplicate"}, headers=h)
        body = resp.json()
        assert body["requires_admin_review"] is False
        assert body["order_status"] == "Cancelled"

        orders = client.get("/api/orders", headers=h).json()["orders"]
        assert [o["order_id"] for o in orders] == [order["order_id"]]


class TestErrors:

    def test_error_shape(self, client, user):
        resp = client.post("/api/orders/cod", headers=as_user(user))
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "CheckoutNotFound"
        assert body["message"]

    def test_second_placement_conflict(self, client, prepared, user):
        h = as_user(user)
        assert client.post("/api/orders/cod", headers=h).status_code == 200
        resp = client.post("/api/orders/cod", headers=h)
        assert resp.status_code == 409
        assert resp.json()["error"] == "OrderAlreadyPlaced"

    def test_bad_signature_persists_failure(self, client, prepared, user):
        h = as_user(user)
        intent = client.post("/api/orders/gateway", headers=h).json()

        resp = client.post("/api/payments/verify", json={
            "gateway_order_id": intent["gateway_order_id"],
            "gateway_payment_id": "pay_bad",
            "signature": "0" * 64,
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidSignature"

        detail = client.get(f"/api/orders/{intent['order_id']}", headers=h).json()
        assert detail["payment_status"] == "Failed"

        retry = client.post(f"/api/orders/{intent['order_id']}/retry-payment", headers=h)
        assert retry.status_code == 200
        assert retry.json()["gateway_order_id"] != intent["gateway_order_id"]

        payments = client.get(f"/api/payments/order/{intent['order_id']}", headers=h).json()["payments"]
        assert [p["status"] for p in payments] == ["Failed", "Created"]

    def test_foreign_order_is_forbidden(self, client, prepared, user, make_user):
        order = client.post("/api/orders/cod", headers=as_user(user)).json()
        stranger = make_user()
        resp = client.get(f"/api/orders/{order['order_id']}", headers=as_user(stranger))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized"

    def test_validation_error_status(self, client, user, product):
        resp = client.post(
            "/api/cart/items", json={"product_id": product.id, "quantity": 11}, headers=as_user(user),
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "ExceedsMaxQuantity"


class TestAdmin:

    def test_coupon_crud(self, client, admin):
        ah = as_admin(admin)
        created = client.post("/admin/coupons", json={"code": "fest20", "discount_percent": "20"}, headers=ah)
        assert created.status_code == 200
        coupon_id = created.json()["id"]
        assert created.json()["code"] == "FEST20"

        updated = client.patch(f"/admin/coupons/{coupon_id}", json={"is_active": False}, headers=ah).json()
        assert updated["is_active"] is False

        assert client.delete(f"/admin/coupons/{coupon_id}", headers=ah).json()["deleted"] == "hard"
        assert client.get(f"/admin/coupons/{coupon_id}", headers=ah).status_code == 404

    def test_queued_cancellation_review(self, client, db, prepared, user, admin):
        order = client.post("/api/orders/cod", headers=as_user(user)).json()
        row = db.query(Order).filter(Order.id == order["order_id"]).one()
        row.created_at = now_utc() - timedelta(hours=48)
        db.commit()

        queued = client.post(f"/api/orders/{order['order_id']}/cancel", headers=as_user(user)).json()
        assert queued["requires_admin_review"] is True
        assert queued["order_status"] == "PendingCancellation"

        ah = as_admin(admin)
        pending = client.get("/admin/orders/cancellations", headers=ah).json()
        assert [r["previous_status"] for r in pending["requests"]] == ["Pending"]

        approved = client.post(f"/admin/orders/{order['order_id']}/cancellation/approve", headers=ah).json()
        assert approved["order_status"] == "Cancelled"
