"""
RMShop - Custom Exceptions
===========================
Business-level exceptions that can be caught and converted to HTTP responses.

Every error carries a typed ErrorKind plus a context dict (entity ids, reason),
so callers branch on `err.kind` instead of matching message strings.

Categories:
  - ValidationError       bad input, nothing mutated
  - ConflictError         already applied / placed / cancelled, stale cart
  - ResourceError         insufficient stock or wallet balance
  - ExternalServiceError  gateway unreachable, signature mismatch
  - PreconditionError     invalid admin state-machine transition
  - NotFoundError / AuthorizationError
"""

import enum
from typing import Any, Dict

from fastapi import status


class ErrorKind(str, enum.Enum):
    # Cart
    EMPTY_CART = "EmptyCart"
    INVALID_QUANTITY = "InvalidQuantity"
    EXCEEDS_MAX_QUANTITY = "ExceedsMaxQuantity"
    CART_FULL = "CartFull"
    PRODUCT_NOT_FOUND = "ProductNotFound"
    PRODUCT_UNAVAILABLE = "ProductUnavailable"
    CART_ITEM_NOT_FOUND = "CartItemNotFound"
    INSUFFICIENT_STOCK = "InsufficientStock"

    # Checkout
    CHECKOUT_NOT_FOUND = "CheckoutNotFound"
    CHECKOUT_COMPLETED = "CheckoutCompleted"
    CART_CHANGED = "CartChanged"
    ADDRESS_NOT_FOUND = "AddressNotFound"
    ADDRESS_NOT_OWNED = "AddressNotOwned"
    INVALID_ADDRESS = "InvalidAddress"

    # Coupon
    COUPON_NOT_FOUND = "CouponNotFound"
    COUPON_INACTIVE = "CouponInactive"
    COUPON_EXPIRED = "CouponExpired"
    COUPON_USAGE_EXHAUSTED = "CouponUsageExhausted"
    BELOW_MINIMUM_ORDER = "BelowMinimumOrder"
    ALREADY_APPLIED = "AlreadyApplied"
    NO_COUPON_APPLIED = "NoCouponApplied"
    DUPLICATE_COUPON_CODE = "DuplicateCouponCode"
    INVALID_COUPON = "InvalidCoupon"

    # Order & payment
    COD_LIMIT_EXCEEDED = "CODLimitExceeded"
    ORDER_ALREADY_PLACED = "OrderAlreadyPlaced"
    ORDER_NOT_FOUND = "OrderNotFound"
    PAYMENT_NOT_FOUND = "PaymentNotFound"
    PAYMENT_ALREADY_VERIFIED = "PaymentAlreadyVerified"
    PAYMENT_NOT_RETRYABLE = "PaymentNotRetryable"
    INVALID_SIGNATURE = "InvalidSignature"
    GATEWAY_UNAVAILABLE = "GatewayUnavailable"
    INVALID_STATUS_TRANSITION = "InvalidStatusTransition"

    # Cancellation
    ORDER_ALREADY_CANCELLED = "OrderAlreadyCancelled"
    ORDER_NOT_CANCELLABLE = "OrderNotCancellable"
    CANCELLATION_ALREADY_REQUESTED = "CancellationAlreadyRequested"
    NOT_PENDING_CANCELLATION = "NotPendingCancellation"

    # Returns & refunds
    ORDER_NOT_ELIGIBLE_FOR_RETURN = "OrderNotEligibleForReturn"
    RETURN_WINDOW_EXPIRED = "ReturnWindowExpired"
    RETURN_ALREADY_REQUESTED = "ReturnAlreadyRequested"
    INVALID_RETURN_REASON = "InvalidReturnReason"
    RETURN_NOT_FOUND = "ReturnNotFound"
    ALREADY_PROCESSED = "AlreadyProcessed"
    RETURN_NOT_APPROVED = "ReturnNotApproved"
    REFUND_ALREADY_INITIATED = "RefundAlreadyInitiated"
    REFUND_NOT_INITIATED = "RefundNotInitiated"
    RETURN_ALREADY_RECEIVED = "ReturnAlreadyReceived"

    # Wallet
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    INVALID_AMOUNT = "InvalidAmount"

    # Access
    UNAUTHORIZED = "Unauthorized"
    USER_BLOCKED = "UserBlocked"


class ShopError(Exception):
    """Base exception for all business logic errors."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, kind: ErrorKind, message: str = "", **context: Any):
        self.kind = kind
        self.message = message or kind.value
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
            "context": {k: str(v) if v is not None else None for k, v in self.context.items()},
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.kind.value} {self.context}>"


class ValidationError(ShopError):
    """Bad input (coupon, address, quantity). No state mutated."""
    status_code = 422


class ConflictError(ShopError):
    """Already applied / placed / cancelled, or stale snapshot."""
    status_code = status.HTTP_409_CONFLICT


class ResourceError(ShopError):
    """Insufficient stock or wallet balance, checked at commit time."""
    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(ShopError):
    """Gateway unreachable or callback signature mismatch."""
    status_code = status.HTTP_502_BAD_GATEWAY


class PreconditionError(ShopError):
    """Invalid state-machine transition (mostly admin actions)."""
    status_code = status.HTTP_409_CONFLICT


class SignatureError(ExternalServiceError):
    """Callback signature did not match; never treated as success."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ShopError):
    """Raised when a requested resource doesn't exist."""
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(ShopError):
    """Raised when the caller does not own the entity or is blocked."""
    status_code = status.HTTP_403_FORBIDDEN
