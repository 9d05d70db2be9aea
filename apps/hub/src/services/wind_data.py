from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from services.ambient_weather import AmbientWeatherProvider
from services.errors import WindDataError
from services.models import (
    ForecastEntry,
    HistoryDay,
    TimelineSnapshot,
    TrendSummary,
    WaveSample,
    WindSample,
    WindStatistics,
)
from services.open_meteo import OpenMeteoProvider
from services.wind_api import WindApiClient
from services.wind_store import CacheEntry, CacheKind, Clock, WindStore, wind_store

logger = logging.getLogger("windhub.hub.wind_data")

Loader = Callable[[], Awaitable[CacheEntry]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class WindSnapshot:
    """What ``latest()`` hands back: the data plus where it came from."""

    entry: CacheEntry
    stale: bool
    from_cache: bool

    @property
    def payload(self) -> Any:
        return self.entry.payload

    def to_payload(self, now: Optional[datetime] = None) -> dict[str, Any]:
        return {
            "kind": self.entry.kind.value,
            "fetchedAt": self.entry.fetched_at.isoformat(),
            "ageSeconds": round(self.entry.age(now), 3),
            "stale": self.stale,
            "fromCache": self.from_cache,
            "data": self.entry.payload_json(),
        }


class WindDataService:
    """Primary-first wind data with provider fallback and cache write-through.

    current wind falls back to Ambient Weather and the forecast to Open-Meteo;
    everything else surfaces the backend client's already-retried result.
    """

    def __init__(
        self,
        *,
        api: Optional[WindApiClient] = None,
        ambient: Optional[AmbientWeatherProvider] = None,
        open_meteo: Optional[OpenMeteoProvider] = None,
        store: Optional[WindStore] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._api = api or WindApiClient()
        self._ambient = ambient or AmbientWeatherProvider()
        self._open_meteo = open_meteo or OpenMeteoProvider()
        self._store = store or wind_store
        self._clock: Clock = clock or _utc_now
        self._loaders: Dict[CacheKind, Loader] = {
            CacheKind.CURRENT: self._load_current,
            CacheKind.FORECAST: self._load_forecast,
            CacheKind.TREND: self._load_trend,
            CacheKind.TIMELINE: self._load_timeline,
        }

    @property
    def store(self) -> WindStore:
        return self._store

    async def close(self) -> None:
        await self._api.close()
        await self._ambient.close()
        await self._open_meteo.close()

    async def current_wind(self) -> WindSample:
        entry = await self._load_current()
        return entry.payload

    async def forecast(self) -> list[ForecastEntry]:
        entry = await self._load_forecast()
        return entry.payload

    async def trend(self) -> TrendSummary:
        entry = await self._load_trend()
        return entry.payload

    async def today_timeline(self) -> TimelineSnapshot:
        entry = await self._load_timeline()
        return entry.payload

    async def statistics(self, hours: int = 24) -> WindStatistics:
        return await self._api.fetch_statistics(hours)

    async def history(self, hours: int = 24) -> list[WindSample]:
        return await self._api.fetch_history(hours)

    async def week_history(self, days: int = 7) -> list[HistoryDay]:
        return await self._api.fetch_week_history(days)

    async def waves(self, days: Optional[int] = None) -> list[WaveSample]:
        return await self._open_meteo.fetch_marine_forecast(days)

    async def cached(self, kind: CacheKind) -> Optional[CacheEntry]:
        return await self._store.read(CacheKind(kind))

    async def latest(self, kind: CacheKind, max_age: float = 0.0) -> WindSnapshot:
        """Serve ``kind`` from cache when young enough, otherwise refresh it.

        When the refresh fails and something is cached, the cached entry comes
        back flagged stale; with nothing cached the refresh error is raised.
        """
        kind = CacheKind(kind)
        cached = await self._store.read(kind)
        if cached is not None and not cached.is_stale(max_age, self._clock()):
            return WindSnapshot(entry=cached, stale=False, from_cache=True)
        try:
            entry = await self._loaders[kind]()
        except WindDataError as exc:
            if cached is None:
                raise
            logger.warning(
                "Serving stale %s from %s after refresh failed: %s",
                kind.value,
                cached.fetched_at.isoformat(),
                exc,
            )
            return WindSnapshot(entry=cached, stale=True, from_cache=True)
        return WindSnapshot(entry=entry, stale=False, from_cache=False)

    async def _load_current(self) -> CacheEntry:
        sample = await self._with_fallback(
            CacheKind.CURRENT,
            self._api.fetch_current_wind,
            self._ambient.fetch_current_wind,
            self._ambient.name,
        )
        return await self._store.write(CacheKind.CURRENT, sample)

    async def _load_forecast(self) -> CacheEntry:
        entries = await self._with_fallback(
            CacheKind.FORECAST,
            self._api.fetch_forecast,
            self._open_meteo.fetch_forecast,
            self._open_meteo.name,
        )
        return await self._store.write(CacheKind.FORECAST, entries)

    async def _load_trend(self) -> CacheEntry:
        summary = await self._api.fetch_trend()
        return await self._store.write(CacheKind.TREND, summary)

    async def _load_timeline(self) -> CacheEntry:
        snapshot = await self._api.fetch_today_timeline()
        return await self._store.write(CacheKind.TIMELINE, snapshot)

    async def _with_fallback(
        self,
        kind: CacheKind,
        primary: Callable[[], Awaitable[Any]],
        fallback: Callable[[], Awaitable[Any]],
        fallback_name: str,
    ) -> Any:
        try:
            return await primary()
        except WindDataError as primary_error:
            logger.warning("Backend %s failed (%s); falling back to %s", kind.value, primary_error, fallback_name)
            try:
                result = await fallback()
            except WindDataError as fallback_error:
                logger.warning("Fallback %s for %s failed too: %s", fallback_name, kind.value, fallback_error)
                raise fallback_error from primary_error
        logger.info("Served %s from %s", kind.value, fallback_name)
        return result


wind_data_service = WindDataService()

__all__ = ["WindDataService", "WindSnapshot", "wind_data_service"]
