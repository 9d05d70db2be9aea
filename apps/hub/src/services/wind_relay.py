from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from services.event_bus import EventBus, event_bus
from services.models import StreamUpdate
from services.wind_stream import WindStreamClient, WindStreamSubscription

logger = logging.getLogger("windhub.hub.wind_relay")

WIND_UPDATE_EVENT = "wind_update"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    iso = dt.astimezone(timezone.utc).isoformat(timespec="seconds")
    if iso.endswith("+00:00"):
        return iso[:-6] + "Z"
    return iso


class WindRelay:
    """Single consumer of the backend stream, republishing each update on the event bus."""

    def __init__(
        self,
        *,
        client: Optional[WindStreamClient[StreamUpdate]] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._client: WindStreamClient[StreamUpdate] = client or WindStreamClient()
        self._bus = bus or event_bus
        self._subscription: Optional[WindStreamSubscription[StreamUpdate]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._relayed = 0
        self._last_update_time: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def relayed(self) -> int:
        return self._relayed

    async def start(self) -> None:
        if self.running:
            return
        self._subscription = self._client.subscribe()
        self._task = asyncio.create_task(self._run(self._subscription), name="wind-relay")
        logger.info("Relaying wind stream from %s", self._client.url)

    async def _run(self, subscription: WindStreamSubscription[StreamUpdate]) -> None:
        async for update in subscription:
            self._relayed += 1
            self._last_update_time = update.timestamp
            await self._bus.publish(WIND_UPDATE_EVENT, update.model_dump(mode="json", by_alias=True))

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Wind relay stopped after %s update(s)", self._relayed)

    def status_snapshot(self) -> dict:
        subscription = self._subscription
        return {
            "running": self.running,
            "url": self._client.url,
            "relayed": self._relayed,
            "reconnects": subscription.reconnects if subscription is not None else 0,
            "last_update_time": _iso(self._last_update_time),
        }


_relay: Optional[WindRelay] = None


def get_wind_relay() -> Optional[WindRelay]:
    return _relay


async def startup() -> None:
    global _relay
    if _relay is not None:
        return
    relay = WindRelay()
    await relay.start()
    _relay = relay


async def shutdown() -> None:
    global _relay
    if _relay:
        await _relay.stop()
        _relay = None


__all__ = ["WIND_UPDATE_EVENT", "WindRelay", "get_wind_relay", "shutdown", "startup"]
