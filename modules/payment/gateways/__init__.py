"""
Payment Gateway Abstraction
=============================
Each gateway implements create_intent().
Callback verification is done in-core (HMAC), not by the gateway adapter.
Registry pattern for gateway lookup by name.
"""

import logging
from typing import Dict, Optional, List
from dataclasses import dataclass

logger = logging.getLogger("rmshop.gateway")


@dataclass
class IntentRequest:
    """Input for creating a payment intent."""
    amount_minor: int       # paise / cents
    currency: str
    receipt: str            # our order reference
    notes: Optional[Dict[str, str]] = None


@dataclass
class IntentResult:
    """Result of create_intent()."""
    success: bool
    gateway_order_id: Optional[str] = None
    error_message: Optional[str] = None


class BaseGateway:
    """Abstract gateway interface."""
    name: str = ""
    label: str = ""

    def create_intent(self, req: IntentRequest) -> IntentResult:
        raise NotImplementedError


# ── Registry ──

_GATEWAYS: Dict[str, BaseGateway] = {}


def register_gateway(gw: BaseGateway):
    _GATEWAYS[gw.name] = gw


def get_gateway(name: str) -> Optional[BaseGateway]:
    return _GATEWAYS.get(name)


def get_all_gateway_names() -> List[str]:
    return list(_GATEWAYS.keys())
