"""
Shared endpoint dependencies.

WHAT: Access to the runtime built in the application lifespan
WHY: HTTP and WebSocket routes resolve the same store and services
HOW: FastAPI dependency reading app.state.runtime off the connection
"""

from fastapi.requests import HTTPConnection

from ...core.runtime import MarketplaceRuntime


def get_runtime(connection: HTTPConnection) -> MarketplaceRuntime:
    return connection.app.state.runtime
