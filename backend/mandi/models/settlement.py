"""
Settlement domain models.

WHAT: Pending payments and completed sale receipts
WHY: Stock is only deducted once per payment reference
HOW: Pydantic v2 models snapshotting the cart at initiation time
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .cart import CartLineStatus


class SettlementMethod(str, Enum):
    CASH = "cash"
    GATEWAY = "gateway"


class SettlementLine(BaseModel):
    """A cart line frozen at payment initiation."""

    product_id: str
    name: str
    quantity: float = Field(gt=0.0, allow_inf_nan=False)
    unit_price: float = Field(gt=0.0, allow_inf_nan=False)

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price, 2)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["line_total"] = self.line_total
        return data


class PendingSettlement(BaseModel):
    """A payment awaiting vendor confirmation or gateway verification."""

    payment_ref: str
    method: SettlementMethod
    lines: list[SettlementLine]
    total: float = Field(ge=0.0, allow_inf_nan=False)
    gateway_order_id: str | None = None
    previous_statuses: dict[str, CartLineStatus] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        """Client view; previous_statuses stays server side."""
        data = self.model_dump(mode="json", exclude={"previous_statuses"})
        data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleReceipt(BaseModel):
    """Outcome of a completed (or duplicate) settlement."""

    payment_ref: str
    method: SettlementMethod
    lines: list[SettlementLine] = Field(default_factory=list)
    total: float = 0.0
    stock_after: dict[str, float] = Field(default_factory=dict)
    gateway_order_id: str | None = None
    duplicate: bool = False
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["lines"] = [line.to_dict() for line in self.lines]
        return data
