"""
WebSocket endpoint.

WHAT: Bidirectional event channel for vendor and customer clients
WHY: Both parties see every state change as it happens
HOW: Reader loop hands frames to the realtime gateway; a sender task drains the connection's outbox
"""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ....realtime.gateway import ConnectionContext
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, ctx: ConnectionContext):
    """Forward queued events to the socket in order."""
    while True:
        outbound = await ctx.outbox.get()
        await websocket.send_json(outbound.to_frame())


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    await websocket.accept()
    gateway = websocket.app.state.runtime.gateway
    ctx = gateway.connect()
    sender = asyncio.create_task(_pump(websocket, ctx))

    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_text(ctx, raw)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {ctx.connection_id}")
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        gateway.disconnect(ctx)
