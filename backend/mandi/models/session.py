"""
Session domain models.

WHAT: The per-session aggregate (inventory, cart, negotiations, messages, payments)
WHY: One session code owns all state for one vendor and one customer
HOW: Pydantic v2 model holding the other domain models, mutated only through services
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .cart import CartLineItem
from .inventory import Product
from .negotiation import NegotiationRecord
from .settlement import PendingSettlement, SaleReceipt


class Role(str, Enum):
    VENDOR = "vendor"
    CUSTOMER = "customer"

    @property
    def counterpart(self) -> "Role":
        return Role.CUSTOMER if self is Role.VENDOR else Role.VENDOR


class SessionStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class Message(BaseModel):
    """A relayed chat message. Append-only."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    sender_role: Role
    text: str
    source_language: str
    target_language: str
    rendered_text: str
    sentiment: str = "neutral"
    cultural_note: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class Session(BaseModel):
    """All state of one marketplace session."""

    code: str
    vendor_token: str
    customer_token: str | None = None
    vendor_connection: str | None = None
    customer_connection: str | None = None
    vendor_language: str = "en"
    customer_language: str | None = None
    location: str | None = None
    status: SessionStatus = SessionStatus.WAITING
    created_at: datetime = Field(default_factory=datetime.utcnow)

    products: dict[str, Product] = Field(default_factory=dict)
    cart: dict[str, CartLineItem] = Field(default_factory=dict)
    negotiations: dict[str, NegotiationRecord] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)
    pending_settlements: dict[str, PendingSettlement] = Field(default_factory=dict)
    completed_payment_refs: set[str] = Field(default_factory=set)
    sales: list[SaleReceipt] = Field(default_factory=list)

    @property
    def is_live(self) -> bool:
        return self.status != SessionStatus.DISCONNECTED

    def language_for(self, role: Role) -> str:
        if role is Role.VENDOR:
            return self.vendor_language
        return self.customer_language or self.vendor_language

    def cart_quantity(self, product_id: str) -> float:
        line = self.cart.get(product_id)
        return line.quantity if line else 0.0

    def cart_total(self) -> float:
        return round(sum(line.line_total for line in self.cart.values()), 2)

    def cart_snapshot(self) -> dict:
        return {
            "cart": [line.to_dict() for line in self.cart.values()],
            "cart_total": self.cart_total(),
        }
