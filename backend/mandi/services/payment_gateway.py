"""
Payment gateway clients.

WHAT: Order creation and payment signature verification
WHY: The settlement coordinator delegates online payments entirely to a gateway
HOW: Razorpay over httpx (basic auth, HMAC-SHA256 signatures) or an offline sandbox with the same signature scheme
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from ..core.config import settings
from ..utils.exceptions import PaymentGatewayError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

SANDBOX_SECRET = "mandi-sandbox-secret"


@dataclass
class GatewayOrder:
    """An order created at the gateway."""
    order_id: str
    amount: float
    currency: str
    reference: str
    key_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "reference": self.reference,
            "key_id": self.key_id,
        }


class PaymentGateway(Protocol):
    name: str

    async def create_order(self, amount: float, reference: str) -> GatewayOrder:
        ...

    async def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...

    async def close(self) -> None:
        ...


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    """Razorpay checkout signature: HMAC-SHA256 of "order_id|payment_id"."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _to_minor_units(amount: float) -> int:
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    return int(round(amount * 100))


def _signature_matches(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    if not order_id or not payment_id or not signature:
        return False
    expected = sign_payment(secret, order_id, payment_id)
    return hmac.compare_digest(expected, signature)


class SandboxPaymentGateway:
    """Offline gateway for development and tests."""

    name = "sandbox"

    def __init__(self, secret: Optional[str] = None, currency: Optional[str] = None):
        self.secret = secret or settings.RAZORPAY_KEY_SECRET or SANDBOX_SECRET
        self.currency = currency or settings.PAYMENT_CURRENCY

    async def create_order(self, amount: float, reference: str) -> GatewayOrder:
        _to_minor_units(amount)
        order = GatewayOrder(
            order_id=f"order_sbx_{secrets.token_hex(8)}",
            amount=round(amount, 2),
            currency=self.currency,
            reference=reference,
            key_id="sandbox",
        )
        logger.info(f"Sandbox order {order.order_id} created for {reference} ({order.amount} {order.currency})")
        return order

    def sign(self, order_id: str, payment_id: str) -> str:
        """Signature a real checkout would return; used by clients and tests."""
        return sign_payment(self.secret, order_id, payment_id)

    async def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return _signature_matches(self.secret, order_id, payment_id, signature)

    async def close(self):
        return None


class RazorpayPaymentGateway:
    """Razorpay Orders API client."""

    name = "razorpay"

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.currency = currency or settings.PAYMENT_CURRENCY

        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=15.0),
            auth=(self.key_id, self.key_secret),
        )
        logger.info(f"Razorpay gateway initialized (key: {self.key_id[:8]}...)")

    async def create_order(self, amount: float, reference: str) -> GatewayOrder:
        """
        Create an order.

        Raises:
            PaymentGatewayError: Gateway rejected the request or returned garbage
            httpx.TransportError: Network failure (retried by the caller's policy)
        """
        payload = {
            "amount": _to_minor_units(amount),
            "currency": self.currency,
            "receipt": reference,
            "notes": {"payment_ref": reference},
        }
        try:
            response = await self.client.post(f"{self.base_url}/orders", json=payload)
            response.raise_for_status()
            data = response.json()
            order_id = data["id"]
        except httpx.HTTPStatusError as e:
            logger.error(f"Razorpay order creation failed: HTTP {e.response.status_code}")
            raise PaymentGatewayError(f"HTTP {e.response.status_code}: {e.response.text[:200]}") from e
        except (KeyError, ValueError) as e:
            raise PaymentGatewayError(f"Invalid order response: {e}") from e

        logger.info(f"Razorpay order {order_id} created for {reference}")
        return GatewayOrder(
            order_id=order_id,
            amount=data.get("amount", payload["amount"]) / 100,
            currency=data.get("currency", self.currency),
            reference=reference,
            key_id=self.key_id,
        )

    async def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return _signature_matches(self.key_secret, order_id, payment_id, signature)

    async def close(self):
        await self.client.aclose()


def build_payment_gateway() -> PaymentGateway:
    """Gateway selected by PAYMENT_GATEWAY."""
    if settings.PAYMENT_GATEWAY == "razorpay":
        return RazorpayPaymentGateway()
    return SandboxPaymentGateway()
