"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Multilingual Mandi"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # LLM Provider Selection
    LLM_PROVIDER: Literal["lm_studio", "openrouter"] = "lm_studio"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"
    LM_STUDIO_TIMEOUT: int = 30  # seconds

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 1  # attempts per backend; the external call policy owns retries
    LLM_RETRY_DELAY: float = 0.5  # seconds, base for exponential backoff

    # OpenRouter Configuration
    LLM_ENABLE_OPENROUTER: bool = False
    OPENROUTER_API_KEYS: str = ""  # comma-separated, rotated on quota errors
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_DEFAULT_MODEL: str = "google/gemini-2.5-flash"

    # External collaborator calls
    EXTERNAL_CALL_TIMEOUT: float = 5.0  # seconds
    EXTERNAL_CALL_RETRIES: int = 1

    # Negotiation
    MAX_NEGOTIATION_ROUNDS: int = 3

    # Sessions
    SESSION_CODE_LENGTH: int = 6

    # Pricing
    DEFAULT_LOCATION: str = "Mumbai"
    MIN_MARKET_PRICE: int = 10
    MAX_MARKET_PRICE: int = 500

    # Payments
    PAYMENT_GATEWAY: Literal["sandbox", "razorpay"] = "sandbox"
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @field_validator("CORS_ORIGINS", "OPENROUTER_API_KEYS", mode="before")
    @classmethod
    def join_list_values(cls, v):
        """Accept either a comma-separated string or a list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def get_openrouter_keys(self) -> list[str]:
        """Get OpenRouter API keys in rotation order."""
        return [key.strip() for key in self.OPENROUTER_API_KEYS.split(",") if key.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
