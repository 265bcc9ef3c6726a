"""
Cart domain models.

WHAT: Line items of the customer's server-side cart
WHY: The server copy is authoritative; the client keeps an optimistic mirror
HOW: Pydantic v2 models, mutated only by the cart reconciler and ledger
"""

from enum import Enum

from pydantic import BaseModel, Field


class CartLineStatus(str, Enum):
    """Pricing status of a cart line."""

    ADDED = "added"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FINAL = "final"


class CartLineItem(BaseModel):
    """One product in the cart."""

    product_id: str
    name: str
    quantity: float = Field(gt=0.0, allow_inf_nan=False)
    original_price: float = Field(gt=0.0, allow_inf_nan=False, description="List price when the line was created")
    agreed_price: float = Field(gt=0.0, allow_inf_nan=False)
    status: CartLineStatus = CartLineStatus.ADDED
    locked_by: str | None = Field(default=None, description="Payment reference holding this line")

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.agreed_price, 2)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["line_total"] = self.line_total
        return data


class CartLineInput(BaseModel):
    """A cart line as sent by the client in a full cart sync."""

    product_id: str = Field(min_length=1)
    quantity: float = Field(gt=0.0, allow_inf_nan=False)
