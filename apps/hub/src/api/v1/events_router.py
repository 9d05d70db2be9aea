from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from services.event_bus import EventMessage, event_bus
from services.wind_relay import get_wind_relay

logger = logging.getLogger("windhub.hub.events")

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = 20.0


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Server-sent events relay of live wind updates",
)
async def stream_events() -> StreamingResponse:
    logger.debug("Event stream requested")

    async def _event_source() -> AsyncIterator[bytes]:
        subscription = await event_bus.subscribe()
        try:
            yield EventMessage(type="init", data=_relay_status()).to_sse()
            while True:
                try:
                    message = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SECONDS)
                    yield message.to_sse()
                except asyncio.TimeoutError:
                    yield b": keep-alive\n\n"
        except asyncio.CancelledError:  # pragma: no cover - server shutdown
            raise
        finally:
            await subscription.close()

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_source(), media_type="text/event-stream", headers=headers)


def _relay_status() -> dict[str, object]:
    relay = get_wind_relay()
    if relay is None:
        return {"relay": {"running": False}}
    return {"relay": relay.status_snapshot()}


__all__ = ["router"]
