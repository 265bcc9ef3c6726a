"""
Catalog endpoints.

WHAT: Category product templates, market prices, languages and message transformation
WHY: Vendors price their stall from these before creating a session
HOW: Thin FastAPI wrappers over the pricing oracle and message transformer
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ....core.config import settings
from ....core.languages import SUPPORTED_LANGUAGES
from ....core.runtime import MarketplaceRuntime
from ....models.api_schemas import (
    CategoryProductsResponse,
    MarketPriceResponse,
    TransformMessageRequest,
    TransformMessageResponse,
)
from ....utils.exceptions import ValidationError
from ....utils.logger import get_logger
from ..deps import get_runtime

logger = get_logger(__name__)

router = APIRouter()

MAX_PRICE_NAMES = 20


@router.get("/products/{category}", response_model=CategoryProductsResponse)
async def category_products(
    category: str,
    location: Optional[str] = None,
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """Product templates of a category (vegetables, fruits) with market prices."""
    location = location or settings.DEFAULT_LOCATION
    products = await runtime.pricing.get_category_products(category, location)
    return CategoryProductsResponse(category=category.strip().lower(), location=location, products=products)


@router.get("/market-prices", response_model=MarketPriceResponse)
async def market_prices(
    names: list[str] = Query(..., description="Product names"),
    location: Optional[str] = None,
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """
    Market quotes for arbitrary product names.

    Raises:
        ValidationError: No names or more than MAX_PRICE_NAMES
    """
    cleaned = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
    if not cleaned:
        raise ValidationError("At least one product name is required")
    if len(cleaned) > MAX_PRICE_NAMES:
        raise ValidationError(f"At most {MAX_PRICE_NAMES} products can be priced at once")

    location = location or settings.DEFAULT_LOCATION
    quotes = await runtime.pricing.get_market_prices(cleaned, location)
    return MarketPriceResponse(
        location=location,
        prices={name: quote.model_dump() for name, quote in quotes.items()},
    )


@router.get("/languages")
async def languages():
    return {"languages": SUPPORTED_LANGUAGES}


@router.post("/transform-message", response_model=TransformMessageResponse)
async def transform_message(
    request: TransformMessageRequest,
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """Polite rewrite plus translation, outside any session."""
    transformed = await runtime.transformer.transform(
        request.text,
        request.sender_role,
        request.source_language,
        request.target_language,
    )
    return TransformMessageResponse(**transformed.to_dict())
