"""
Pricing oracle.

WHAT: Market reference prices per kilogram for mandi products
WHY: Vendors start from market prices; negotiation anchors on them
HOW: LLM batch prompt returning JSON, clamped to a sane range, with a deterministic fallback table
"""

import zlib
from typing import Optional

from ..core.config import settings
from ..llm.provider import LLMProvider
from ..models.inventory import MarketQuote
from ..utils.exceptions import ValidationError
from ..utils.llm_output import extract_json_object
from ..utils.logger import get_logger
from .external_call import ExternalCallPolicy
from .prompts import render_market_price_prompt

logger = get_logger(__name__)

CATEGORY_PRODUCTS = {
    "vegetables": ["Potato", "Tomato", "Cauliflower", "Onion", "Brinjal"],
    "fruits": ["Mango", "Banana", "Apple", "Papaya", "Grapes"],
}

# Typical Mumbai retail prices, used when the oracle is unavailable
REFERENCE_PRICES = {
    "Potato": 30, "Tomato": 40, "Cauliflower": 45, "Onion": 35, "Brinjal": 40,
    "Mango": 120, "Banana": 50, "Apple": 160, "Papaya": 45, "Grapes": 90,
}

VALID_TRENDS = {"up", "down", "stable"}


def product_id_for(category: str, name: str) -> str:
    return f"{category}-{name.lower().replace(' ', '-')}"


def product_image(category: str, name: str) -> str:
    return f"/static/{category}/{name.lower().replace(' ', '')}.png"


class PricingOracle:
    """Market price lookups with a fallback that never fails."""

    def __init__(self, provider: LLMProvider, policy: Optional[ExternalCallPolicy] = None):
        self.provider = provider
        self.policy = policy or ExternalCallPolicy()
        self.min_price = settings.MIN_MARKET_PRICE
        self.max_price = settings.MAX_MARKET_PRICE

    def clamp(self, price: float) -> int:
        return int(max(self.min_price, min(self.max_price, round(price))))

    def reference_price(self, product_name: str) -> int:
        """Deterministic fallback: table value, else a stable hash of the name."""
        if product_name in REFERENCE_PRICES:
            return REFERENCE_PRICES[product_name]
        spread = self.max_price - self.min_price
        bucket = zlib.crc32(product_name.strip().lower().encode("utf-8")) % min(spread, 140)
        return self.clamp(self.min_price + 20 + bucket)

    def _fallback_quotes(self, names: list[str], location: str) -> dict[str, MarketQuote]:
        logger.info(f"Using reference prices for {len(names)} products ({location})")
        return {
            name: MarketQuote(
                product_name=name,
                price=self.reference_price(name),
                trend="stable",
                location=location,
                source="fallback",
            )
            for name in names
        }

    async def _ask(self, names: list[str], location: str) -> dict[str, MarketQuote]:
        result = await self.provider.generate(
            render_market_price_prompt(names, location),
            temperature=0.3,
            max_tokens=500,
        )
        data = extract_json_object(result.text)
        if data is None:
            raise ValueError(f"Pricing answer is not JSON: {result.text[:100]}")

        quotes = {}
        for name in names:
            entry = data.get(name)
            if not isinstance(entry, dict) or not isinstance(entry.get("price"), (int, float)):
                raise ValueError(f"No valid price for {name}")
            raw_price = entry["price"]
            price = self.clamp(raw_price)
            if price != round(raw_price):
                logger.warning(f"Clamped oracle price for {name}: {raw_price} -> {price}")
            trend = entry.get("trend") if entry.get("trend") in VALID_TRENDS else "stable"
            quotes[name] = MarketQuote(product_name=name, price=price, trend=trend, location=location)
        return quotes

    async def get_market_prices(self, names: list[str], location: Optional[str] = None) -> dict[str, MarketQuote]:
        """Quotes for several products from one oracle call."""
        location = location or settings.DEFAULT_LOCATION
        if not names:
            return {}
        return await self.policy.run(
            lambda: self._ask(names, location),
            lambda: self._fallback_quotes(names, location),
            label="pricing oracle",
        )

    async def get_market_price(self, product_name: str, location: Optional[str] = None) -> MarketQuote:
        """Quote for one product (price and trend)."""
        if not product_name or not product_name.strip():
            raise ValidationError("Product name is required")
        name = product_name.strip()
        quotes = await self.get_market_prices([name], location)
        return quotes[name]

    async def get_category_products(self, category: str, location: Optional[str] = None) -> list[dict]:
        """
        Product templates for a category, priced by the oracle.

        Raises:
            ValidationError: Unsupported category
        """
        key = (category or "").strip().lower()
        names = CATEGORY_PRODUCTS.get(key)
        if names is None:
            raise ValidationError(
                f"Unsupported category: {category}. Available: {', '.join(CATEGORY_PRODUCTS)}"
            )
        location = location or settings.DEFAULT_LOCATION
        quotes = await self.get_market_prices(names, location)
        return [
            {
                "id": product_id_for(key, name),
                "name": name,
                "category": key,
                "market_price": quotes[name].price,
                "trend": quotes[name].trend,
                "location": location,
                "source": quotes[name].source,
                "image": product_image(key, name),
            }
            for name in names
        ]
