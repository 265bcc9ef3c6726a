"""
FastAPI application entry point.

WHAT: Main application setup and wiring
WHY: Initialize all components and routes
HOW: Create FastAPI app, register middleware, routers, handlers
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.router import api_router
from .core.config import settings
from .core.runtime import MarketplaceRuntime
from .middleware.error_handler import register_exception_handlers
from .utils.logger import get_logger, setup_logging

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Build the runtime once, close its HTTP clients cleanly
    HOW: Async context manager for FastAPI lifespan; a runtime preset on app.state is reused
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = MarketplaceRuntime()
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await app.state.runtime.close()
    logger.info("Application shutdown complete")


def create_app(runtime: Optional[MarketplaceRuntime] = None) -> FastAPI:
    """Build the FastAPI app, optionally around an existing runtime."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.state.runtime = runtime

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Include API router
    app.include_router(api_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "mandi.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
