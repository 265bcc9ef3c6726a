"""
Inventory domain models.

WHAT: Product records held in a session's inventory ledger
WHY: Vendor and customer views of the same product differ (floor price is private)
HOW: Pydantic v2 model with a customer-safe view
"""

from typing import Literal

from pydantic import BaseModel, Field

Trend = Literal["up", "down", "stable"]

# Fields the customer never receives
PRIVATE_PRODUCT_FIELDS = {"floor_price"}


class Product(BaseModel):
    """A product on the vendor's stall. Stock is in kilograms and may be fractional."""

    id: str = Field(min_length=1, max_length=80)
    name: str = Field(min_length=1, max_length=100)
    category: str = "vegetables"
    market_price: float = Field(gt=0.0, allow_inf_nan=False, description="Market reference price per kg")
    vendor_price: float = Field(gt=0.0, allow_inf_nan=False, description="Vendor list price per kg")
    floor_price: float | None = Field(
        default=None, gt=0.0, allow_inf_nan=False, description="Lowest acceptable price per kg"
    )
    stock: float = Field(ge=0.0, allow_inf_nan=False)
    trend: Trend = "stable"
    image: str | None = None

    def vendor_view(self) -> dict:
        return self.model_dump()

    def customer_view(self) -> dict:
        return self.model_dump(exclude=PRIVATE_PRODUCT_FIELDS)


class MarketQuote(BaseModel):
    """Answer of the pricing oracle for one product."""

    product_name: str
    price: float = Field(gt=0.0, allow_inf_nan=False)
    trend: Trend = "stable"
    location: str
    source: Literal["oracle", "fallback"] = "oracle"
