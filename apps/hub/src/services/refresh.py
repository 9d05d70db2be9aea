from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

from config import settings
from services.errors import WindDataError
from services.wind_api import SleepFunc
from services.wind_data import WindDataService, WindSnapshot, wind_data_service
from services.wind_store import CacheKind

logger = logging.getLogger("windhub.hub.refresh")

DEFAULT_KINDS: tuple[CacheKind, ...] = (
    CacheKind.CURRENT,
    CacheKind.FORECAST,
    CacheKind.TREND,
)


class BackgroundRefresher:
    """Periodically tops up the local store, reusing anything younger than ``max_age``."""

    def __init__(
        self,
        *,
        service: Optional[WindDataService] = None,
        interval: Optional[float] = None,
        max_age: Optional[float] = None,
        kinds: Sequence[CacheKind] = DEFAULT_KINDS,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._service = service or wind_data_service
        self._interval = settings.refresh_interval_seconds if interval is None else interval
        self._max_age = settings.background_max_age_seconds if max_age is None else max_age
        self._kinds = tuple(kinds)
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._task: Optional[asyncio.Task[None]] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh_once(self) -> Dict[CacheKind, Optional[WindSnapshot]]:
        results: Dict[CacheKind, Optional[WindSnapshot]] = {}
        for kind in self._kinds:
            try:
                snapshot = await self._service.latest(kind, self._max_age)
            except WindDataError as exc:
                logger.warning("Background refresh of %s failed with nothing cached: %s", kind.value, exc)
                results[kind] = None
                continue
            if snapshot.stale:
                logger.info("Background refresh kept stale %s", kind.value)
            results[kind] = snapshot
        self.cycles += 1
        return results

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background refresh cycle failed")
            await self._sleep(self._interval)

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="wind-refresh")
        logger.info("Background refresh every %.0fs (max age %.0fs)", self._interval, self._max_age)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


background_refresher = BackgroundRefresher()

__all__ = ["BackgroundRefresher", "DEFAULT_KINDS", "background_refresher"]
