"""
SSE streaming endpoint.

WHAT: Server-Sent Events mirror of a session role's broadcast stream
WHY: Read-only clients (dashboards, a vendor's second screen) follow a session without a WebSocket
HOW: EventSourceResponse over a hub subscription, with heartbeats and replay after a sequence number
"""

import asyncio
import json
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from ....core.config import settings
from ....core.runtime import MarketplaceRuntime
from ....models.session import Role
from ....realtime.hub import OutboundEvent
from ....utils.exceptions import UnauthorizedRoleError
from ....utils.logger import get_logger
from ..deps import get_runtime

logger = get_logger(__name__)

router = APIRouter()


def _sse(outbound: OutboundEvent) -> dict:
    return {
        "event": outbound.event,
        "id": str(outbound.seq),
        "data": json.dumps(outbound.to_frame()),
    }


async def session_event_generator(
    runtime: MarketplaceRuntime,
    session_code: str,
    role: Role,
    is_disconnected: Callable[[], Awaitable[bool]],
    since: Optional[int] = None,
    heartbeat_interval: Optional[float] = None,
) -> AsyncIterator[dict]:
    """
    Generate SSE events for one session role.

    WHAT: Stream hub events with heartbeats
    WHY: Real-time updates without a WebSocket
    HOW: Subscribe a queue, replay history after `since`, then wait with a heartbeat timeout

    Yields:
        SSE event dicts
    """
    hub = runtime.hub
    interval = heartbeat_interval or settings.SSE_HEARTBEAT_INTERVAL
    queue = hub.subscribe(session_code, role)
    logger.info(f"Starting SSE stream for {role.value} of {session_code}")

    try:
        yield {
            "event": "connected",
            "data": json.dumps({
                "type": "connected",
                "session_code": session_code,
                "role": role.value,
                "last_seq": hub.last_seq(session_code),
                "timestamp": datetime.now().isoformat(),
            }),
        }

        if since is not None:
            for outbound in hub.events_for(session_code, role):
                if outbound.seq > since:
                    yield _sse(outbound)

        while True:
            if await is_disconnected():
                logger.info(f"SSE client left {session_code} ({role.value})")
                break
            try:
                outbound = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({
                        "type": "heartbeat",
                        "timestamp": datetime.now().isoformat(),
                    }),
                }
                continue
            if since is not None and outbound.seq is not None and outbound.seq <= since:
                continue
            yield _sse(outbound)
    finally:
        hub.unsubscribe(session_code, role, queue)
        logger.info(f"SSE stream closed for {role.value} of {session_code}")


@router.get("/sessions/{code}/events")
async def stream_session_events(
    code: str,
    request: Request,
    token: str = Query(..., min_length=1),
    since: Optional[int] = Query(default=None, ge=0),
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """
    Stream a session's events for the role owning `token`.

    Raises:
        SessionNotFoundError: Unknown code (404)
        UnauthorizedRoleError: Token belongs to neither party (403)
    """
    session = runtime.store.require_live(code)
    role = runtime.store.role_of(session, token)
    if role is None:
        raise UnauthorizedRoleError(session.code, "vendor or customer")

    return EventSourceResponse(
        session_event_generator(runtime, session.code, role, request.is_disconnected, since)
    )
