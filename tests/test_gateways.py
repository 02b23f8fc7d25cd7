import httpx
import pytest

import modules.payment.gateways.razorpay as razorpay
import modules.payment.gateways.sandbox  # noqa: F401
from modules.payment.gateways import (
    IntentRequest, get_gateway, get_all_gateway_names,
)


def intent_request(amount_minor=20000):
    return IntentRequest(
        amount_minor=amount_minor, currency="INR", receipt="order_12", notes={"order_id": "12"},
    )


class TestRegistry:

    def test_both_gateways_registered(self):
        names = get_all_gateway_names()
        assert "sandbox" in names
        assert "razorpay" in names
        assert get_gateway("nope") is None


class TestSandbox:

    def test_creates_unique_ids(self):
        gw = get_gateway("sandbox")
        first = gw.create_intent(intent_request())
        second = gw.create_intent(intent_request())
        assert first.success and second.success
        assert first.gateway_order_id.startswith("order_")
        assert first.gateway_order_id != second.gateway_order_id

    def test_negative_amount(self):
        result = get_gateway("sandbox").create_intent(intent_request(-1))
        assert result.success is False


class TestRazorpay:

    @pytest.fixture
    def post(self, monkeypatch):
        calls = []

        def install(response=None, error=None):
            def fake_post(url, json=None, auth=None, timeout=None):
                calls.append({"url": url, "json": json, "auth": auth, "timeout": timeout})
                if error:
                    raise error
                return response

            monkeypatch.setattr(httpx, "post", fake_post)
            return calls

        return install

    def test_success(self, post):
        calls = post(httpx.Response(200, json={"id": "order_Rzp123", "status": "created"}))
        result = get_gateway("razorpay").create_intent(intent_request())

        assert result.success is True
        assert result.gateway_order_id == "order_Rzp123"
        call = calls[0]
        assert call["url"] == razorpay.RAZORPAY_ORDERS_URL
        assert call["json"] == {
            "amount": 20000, "currency": "INR", "receipt": "order_12", "notes": {"order_id": "12"},
        }
        assert call["auth"] == ("rzp_test_key", "test_secret")

    def test_http_error(self, post):
        post(httpx.Response(401, json={"error": {"description": "Authentication failed"}}))
        result = get_gateway("razorpay").create_intent(intent_request())
        assert result.success is False
        assert "401" in result.error_message

    def test_missing_id(self, post):
        post(httpx.Response(200, json={"status": "created"}))
        assert get_gateway("razorpay").create_intent(intent_request()).success is False

    def test_invalid_json(self, post):
        post(httpx.Response(200, text="<html>"))
        assert get_gateway("razorpay").create_intent(intent_request()).success is False

    @pytest.mark.parametrize("error", [
        httpx.ReadTimeout("slow"),
        httpx.ConnectError("refused"),
    ])
    def test_network_errors(self, post, error):
        post(error=error)
        result = get_gateway("razorpay").create_intent(intent_request())
        assert result.success is False
        assert result.error_message
