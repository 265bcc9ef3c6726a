"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints with prefixes
"""

from fastapi import APIRouter

from .endpoints import catalog, realtime, sessions, status, streaming

# Create main v1 router
api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    status.router,
    prefix="/api/v1",
    tags=["status"]
)

api_router.include_router(
    catalog.router,
    prefix="/api/v1",
    tags=["catalog"]
)

api_router.include_router(
    sessions.router,
    prefix="/api/v1",
    tags=["sessions"]
)

api_router.include_router(
    realtime.router,
    prefix="/api/v1",
    tags=["realtime"]
)

api_router.include_router(
    streaming.router,
    prefix="/api/v1",
    tags=["streaming"]
)
