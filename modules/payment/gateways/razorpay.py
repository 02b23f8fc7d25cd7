"""
Razorpay Gateway
=================
REST/JSON order creation with HTTP basic auth (key id / key secret).
The checkout widget completes the payment and posts back a signed callback.
"""

import httpx
import logging

from config.settings import GATEWAY_KEY_ID, GATEWAY_KEY_SECRET, GATEWAY_TIMEOUT
from modules.payment.gateways import (
    BaseGateway, IntentRequest, IntentResult, register_gateway,
)

logger = logging.getLogger("rmshop.gateway.razorpay")

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"


class RazorpayGateway(BaseGateway):
    name = "razorpay"
    label = "Razorpay"

    def create_intent(self, req: IntentRequest) -> IntentResult:
        try:
            resp = httpx.post(
                RAZORPAY_ORDERS_URL,
                json={
                    "amount": req.amount_minor,
                    "currency": req.currency,
                    "receipt": req.receipt,
                    "notes": req.notes or {},
                },
                auth=(GATEWAY_KEY_ID, GATEWAY_KEY_SECRET),
                timeout=GATEWAY_TIMEOUT,
            )
            if resp.status_code >= 400:
                logger.error(f"Razorpay create [{req.receipt}] HTTP {resp.status_code}: {resp.text}")
                return IntentResult(success=False, error_message=f"Gateway error: HTTP {resp.status_code}")

            data = resp.json()
            logger.info(f"Razorpay create [{req.receipt}]: id={data.get('id')} status={data.get('status')}")

            if data.get("id"):
                return IntentResult(success=True, gateway_order_id=str(data["id"]))
            return IntentResult(success=False, error_message="Gateway returned no order id")

        except httpx.TimeoutException:
            logger.error(f"Razorpay create [{req.receipt}] timed out")
            return IntentResult(success=False, error_message="Gateway did not respond. Try again.")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Razorpay create failed: {e}")
            return IntentResult(success=False, error_message=f"Gateway connection error: {e}")


register_gateway(RazorpayGateway())
