"""
Status and health check endpoints.

WHAT: Health monitoring for the LLM provider and live sessions
WHY: Quick diagnostics for frontend and ops
HOW: FastAPI endpoints calling provider ping and reading the session store
"""

from fastapi import APIRouter, Depends

from ....core.config import settings
from ....core.runtime import MarketplaceRuntime
from ....llm.types import ProviderError
from ....models.session import SessionStatus
from ....utils.logger import get_logger
from ..deps import get_runtime

logger = get_logger(__name__)

router = APIRouter()


async def _ping_llm(runtime: MarketplaceRuntime) -> dict:
    try:
        status = await runtime.provider.ping()
        return {
            "available": status.available,
            "base_url": status.base_url,
            "models": status.models,
            "error": status.error,
            "backend": status.backend,
        }
    except ProviderError as e:
        logger.error(f"Failed to get LLM status: {e}")
        return {
            "available": False,
            "base_url": "unknown",
            "models": None,
            "error": str(e),
            "backend": None,
        }


@router.get("/llm/status")
async def llm_status(runtime: MarketplaceRuntime = Depends(get_runtime)):
    """
    Check LLM provider status.

    WHAT: Get health status of the configured LLM provider
    WHY: Frontend can warn that narratives and translations will use fallbacks
    HOW: Call provider.ping()
    """
    return {"llm": await _ping_llm(runtime), "provider": settings.LLM_PROVIDER}


@router.get("/health")
async def health_check(runtime: MarketplaceRuntime = Depends(get_runtime)):
    """
    Overall application health check.

    The marketplace keeps working without the LLM (fallback texts), so an
    unavailable provider only degrades the status.
    """
    llm = await _ping_llm(runtime)
    store = runtime.store

    return {
        "status": "healthy" if llm["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "llm": {
                "available": llm["available"],
                "provider": settings.LLM_PROVIDER,
            },
            "payments": {
                "gateway": runtime.payment_gateway.name,
            },
            "sessions": {
                "total": store.count(),
                "active": store.count(SessionStatus.ACTIVE),
                "waiting": store.count(SessionStatus.WAITING),
            },
        },
    }
