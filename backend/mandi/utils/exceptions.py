"""
Custom business exceptions for the marketplace core.

WHAT: Domain-specific exceptions carrying an error code and an actionable payload
WHY: Consistent error handling across HTTP endpoints and real-time events
HOW: BusinessException base with code/details, grouped by error category
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    category = "validation"

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_payload(self) -> dict:
        """Serializable error body for events and HTTP responses."""
        return {"code": self.code, "message": self.message, "details": self.details}


# ========== Configuration errors ==========

class ConfigurationError(BusinessException):
    """Session or product is not set up for the requested operation."""

    category = "configuration"


class SessionNotFoundError(ConfigurationError):
    """Raised when a session code does not resolve."""

    def __init__(self, session_code: str):
        super().__init__(
            message=f"Session not found: {session_code}",
            code="SESSION_NOT_FOUND",
            details={"session_code": session_code}
        )


class SessionNotLiveError(ConfigurationError):
    """Raised when a session exists but has been disconnected."""

    def __init__(self, session_code: str, status: str):
        super().__init__(
            message=f"Session {session_code} is not live (status: {status})",
            code="SESSION_NOT_LIVE",
            details={"session_code": session_code, "status": status}
        )


class FloorPriceNotSetError(ConfigurationError):
    """Raised when a product has no registered floor price."""

    def __init__(self, session_code: str, product_id: str):
        super().__init__(
            message=f"Floor price not set for product {product_id}",
            code="FLOOR_PRICE_NOT_SET",
            details={"session_code": session_code, "product_id": product_id}
        )


# ========== Validation errors ==========

class ValidationError(BusinessException):
    """Raised for invalid input."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class UnauthorizedRoleError(BusinessException):
    """Raised when a role token does not match the session role."""

    def __init__(self, session_code: str, role: str):
        super().__init__(
            message=f"Operation requires the {role} of session {session_code}",
            code="UNAUTHORIZED_ROLE",
            details={"session_code": session_code, "required_role": role}
        )


class SessionFullError(BusinessException):
    """Raised when a second customer tries to join a session."""

    def __init__(self, session_code: str):
        super().__init__(
            message="Session already has a customer",
            code="SESSION_FULL",
            details={"session_code": session_code}
        )


class ProductNotFoundError(BusinessException):
    """Raised when a product id is not in the session inventory."""

    def __init__(self, session_code: str, product_id: str):
        super().__init__(
            message=f"Product not found in session inventory: {product_id}",
            code="PRODUCT_NOT_FOUND",
            details={"session_code": session_code, "product_id": product_id}
        )


class InsufficientStockError(BusinessException):
    """Raised when a cart mutation would exceed available stock."""

    def __init__(self, product_id: str, requested: float, available_stock: float, current_cart_quantity: float):
        super().__init__(
            message=(
                f"Only {available_stock:g}kg of {product_id} available; "
                f"{current_cart_quantity:g}kg already in cart, requested {requested:g}kg"
            ),
            code="INSUFFICIENT_STOCK",
            details={
                "product_id": product_id,
                "requested": requested,
                "available_stock": available_stock,
                "current_cart_quantity": current_cart_quantity
            }
        )


class CartLineLockedError(BusinessException):
    """Raised when a cart line is locked by a pending settlement."""

    def __init__(self, product_id: str, payment_ref: str | None = None):
        super().__init__(
            message=f"Cart line {product_id} is locked by a pending payment",
            code="CART_LINE_LOCKED",
            details={"product_id": product_id, "payment_ref": payment_ref}
        )


class NegotiationClosedError(BusinessException):
    """Raised when an offer targets a closed negotiation."""

    def __init__(self, product_id: str, status: str):
        super().__init__(
            message=f"Negotiation for {product_id} is closed (status: {status})",
            code="NEGOTIATION_CLOSED",
            details={"product_id": product_id, "status": status}
        )


class AwaitingVendorError(BusinessException):
    """Raised when an offer arrives while the vendor has not answered the last one."""

    def __init__(self, product_id: str, negotiation_id: str):
        super().__init__(
            message=f"Previous offer for {product_id} is awaiting vendor approval",
            code="AWAITING_VENDOR",
            details={"product_id": product_id, "negotiation_id": negotiation_id}
        )


class NegotiationStateError(BusinessException):
    """Raised when a response does not fit the current negotiation status."""

    def __init__(self, product_id: str, status: str, expected: List[str]):
        super().__init__(
            message=f"Negotiation for {product_id} is {status}, expected one of {expected}",
            code="NEGOTIATION_STATE",
            details={"product_id": product_id, "status": status, "expected": expected}
        )


class SettlementNotFoundError(BusinessException):
    """Raised when a payment reference is unknown."""

    def __init__(self, payment_ref: str):
        super().__init__(
            message=f"No pending payment with reference {payment_ref}",
            code="SETTLEMENT_NOT_FOUND",
            details={"payment_ref": payment_ref}
        )


class SettlementPendingError(BusinessException):
    """Raised when a session already has a payment waiting for confirmation."""

    def __init__(self, payment_ref: str):
        super().__init__(
            message=f"Payment {payment_ref} is already pending",
            code="SETTLEMENT_PENDING",
            details={"payment_ref": payment_ref}
        )


class PaymentVerificationError(BusinessException):
    """Raised when a gateway signature does not verify."""

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Payment signature verification failed for order {order_id}",
            code="PAYMENT_VERIFICATION_FAILED",
            details={"order_id": order_id}
        )


# ========== Protocol errors ==========

class ProtocolError(BusinessException):
    """Out-of-order or stale client messages."""

    category = "protocol"


class StaleRoundError(ProtocolError):
    """Raised when a round number does not increase."""

    def __init__(self, product_id: str, round_number: int, last_round: int):
        super().__init__(
            message=f"Round {round_number} for {product_id} is stale (last round: {last_round})",
            code="STALE_ROUND",
            details={"product_id": product_id, "round": round_number, "last_round": last_round}
        )


class StaleNegotiationError(ProtocolError):
    """Raised when a response names a negotiation that is no longer current."""

    def __init__(self, product_id: str, negotiation_id: str, current_id: str | None):
        super().__init__(
            message=f"Negotiation {negotiation_id} for {product_id} is no longer current",
            code="STALE_NEGOTIATION",
            details={"product_id": product_id, "negotiation_id": negotiation_id, "current_id": current_id}
        )


# ========== External dependency errors ==========

class ExternalServiceError(BusinessException):
    """Raised when an external collaborator fails and no fallback applies."""

    category = "external"

    def __init__(self, service: str, message: str):
        super().__init__(
            message=f"{service} unavailable: {message}",
            code="EXTERNAL_SERVICE_ERROR",
            details={"service": service}
        )


class PaymentGatewayError(ExternalServiceError):
    """Raised when the payment gateway cannot create an order."""

    def __init__(self, message: str):
        super().__init__("payment_gateway", message)
        self.code = "PAYMENT_GATEWAY_ERROR"
