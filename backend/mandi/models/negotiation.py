"""
Negotiation domain models.

WHAT: Per-product negotiation records, offer history and decision outcomes
WHY: The state machine, gateway and tests share one typed vocabulary
HOW: Pydantic v2 models; status values are wire-compatible strings
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class NegotiationStatus(str, Enum):
    """Status of a (session, product) negotiation."""

    ACTIVE = "active"
    PENDING_VENDOR_APPROVAL = "pending_vendor_approval"
    AI_COUNTER_OFFER = "ai_counter_offer"
    NEGOTIATION_LIMIT_EXCEEDED = "negotiation_limit_exceeded"
    CUSTOM_MESSAGE = "custom_message"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FINAL_OFFER = "final_offer"


# No new offers until the vendor resets the negotiation
CLOSED_STATUSES = frozenset({
    NegotiationStatus.ACCEPTED,
    NegotiationStatus.FINAL_OFFER,
    NegotiationStatus.NEGOTIATION_LIMIT_EXCEEDED,
})

# States in which the vendor may still answer the customer's proposal
AWAITING_VENDOR_STATUSES = frozenset({
    NegotiationStatus.PENDING_VENDOR_APPROVAL,
    NegotiationStatus.CUSTOM_MESSAGE,
})

VendorDecision = Literal["accept", "reject", "custom_message", "final_offer"]


class OfferEntry(BaseModel):
    """A single customer offer."""

    round: int = Field(ge=1)
    price: float = Field(gt=0.0, allow_inf_nan=False)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class NegotiationRecord(BaseModel):
    """Live negotiation state for one product in one session."""

    negotiation_id: str = Field(default_factory=lambda: str(uuid4()))
    product_id: str
    round: int = Field(default=0, ge=0)
    offers: list[OfferEntry] = Field(default_factory=list)
    status: NegotiationStatus = NegotiationStatus.ACTIVE
    proposed_price: float | None = None
    final_price: float | None = None
    suggested_range: tuple[int, int] | None = None
    narrative: str | None = None
    vendor_message: str | None = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def last_offer(self) -> OfferEntry | None:
        return self.offers[-1] if self.offers else None

    def touch(self):
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class NegotiationOutcome(BaseModel):
    """Result of one customer offer or vendor response."""

    negotiation_id: str
    product_id: str
    product_name: str
    status: NegotiationStatus
    round: int
    offered_price: float | None = None
    proposed_price: float | None = None
    final_price: float | None = None
    floor_price: float | None = None
    market_price: float | None = None
    suggested_range: tuple[int, int] | None = None
    message: str | None = None
    is_final: bool = False
    next_round: int | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def vendor_view(self) -> dict:
        return self.model_dump(mode="json")

    def customer_view(self) -> dict:
        return self.model_dump(mode="json", exclude={"floor_price"})
