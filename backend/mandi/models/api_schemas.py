"""
Pydantic API schemas for the HTTP endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and serialization matching frontend interfaces
HOW: Pydantic v2 models with validators and constraints
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.languages import SUPPORTED_LANGUAGES

LANGUAGE_CODES = {lang["code"] for lang in SUPPORTED_LANGUAGES}


# ========== Messages ==========

class TransformMessageRequest(BaseModel):
    """Message to rewrite politely and translate."""
    text: str = Field(..., min_length=1, max_length=1000, description="Raw message text")
    sender_role: Literal["vendor", "customer"] = Field(default="customer", description="Who wrote the text")
    source_language: str = Field(default="en", description="Language the text is written in")
    target_language: str = Field(default="en", description="Language of the recipient")

    @field_validator("source_language", "target_language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        """Only supported language codes."""
        code = v.strip().lower()
        if code not in LANGUAGE_CODES:
            raise ValueError(f"Unsupported language: {v}. Expected one of {sorted(LANGUAGE_CODES)}")
        return code

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message text must not be blank")
        return v


class TransformMessageResponse(BaseModel):
    """Rendered message for the recipient."""
    original_text: str
    rendered_text: str
    sentiment: str
    cultural_note: Optional[str] = None
    source_language: str
    target_language: str
    fallback: bool = False


# ========== Pricing ==========

class MarketPriceResponse(BaseModel):
    """Market quotes keyed by product name."""
    location: str
    prices: dict[str, dict]


class CategoryProductsResponse(BaseModel):
    """Priced product templates for a category."""
    category: str
    location: str
    products: list[dict]


# ========== Payments ==========

class PaymentVerifyRequest(BaseModel):
    """Gateway checkout callback."""
    order_id: str = Field(..., min_length=1, max_length=100)
    payment_id: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1, max_length=256)
