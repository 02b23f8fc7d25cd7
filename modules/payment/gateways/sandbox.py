"""
Sandbox Gateway
================
Local intents for development and tests: `order_<hex>` ids, no network.
Callbacks are signed with GATEWAY_KEY_SECRET like the real gateway.
"""

import logging
import secrets

from modules.payment.gateways import (
    BaseGateway, IntentRequest, IntentResult, register_gateway,
)

logger = logging.getLogger("rmshop.gateway.sandbox")


class SandboxGateway(BaseGateway):
    name = "sandbox"
    label = "Sandbox"

    def create_intent(self, req: IntentRequest) -> IntentResult:
        if req.amount_minor < 0:
            return IntentResult(success=False, error_message="Amount must not be negative")
        gateway_order_id = f"order_{secrets.token_hex(7)}"
        logger.info(f"Sandbox create [{req.receipt}]: {gateway_order_id} {req.amount_minor} {req.currency}")
        return IntentResult(success=True, gateway_order_id=gateway_order_id)


register_gateway(SandboxGateway())
