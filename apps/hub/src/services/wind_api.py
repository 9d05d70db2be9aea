from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from config import settings
from services.errors import (
    DecodeFailureError,
    HttpStatusError,
    InvalidRequestError,
    NetworkError,
    WindDataError,
    is_retryable,
    wrap_transport_error,
)
from services.models import (
    ForecastEntry,
    HistoryDay,
    TimelineSnapshot,
    TrendSummary,
    WindSample,
    WindStatistics,
    forecast_adapter,
    statistics_adapter,
    timeline_adapter,
    trend_adapter,
    week_history_adapter,
    wind_history_adapter,
    wind_sample_adapter,
)

logger = logging.getLogger("windhub.hub.wind_api")

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]

TIMELINE_INTERVAL_MINUTES = 5
MAX_ERROR_BODY_CHARS = 2_048


def _with_trailing_slash(url: str) -> str:
    # Relative endpoint paths must resolve under the base path, not beside it.
    return url if url.endswith("/") else url + "/"


def _require_positive(name: str, value: int) -> None:
    if value <= 0:
        raise InvalidRequestError(f"{name} must be greater than zero")


class WindApiClient:
    """Client for the primary wind backend with bounded retry and exponential backoff."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._base_url = _with_trailing_slash(base_url or settings.wind_api_base_url)
        retries = settings.wind_max_retries if max_retries is None else max_retries
        self._max_retries = max(1, retries)
        self._timeout = settings.wind_request_timeout if timeout is None else timeout
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": settings.wind_user_agent,
                "Accept": "application/json",
            }
            self._client = httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_current_wind(self) -> WindSample:
        return await self.fetch("wind/current", wind_sample_adapter)

    async def fetch_forecast(self) -> list[ForecastEntry]:
        return await self.fetch("wind/forecast", forecast_adapter)

    async def fetch_trend(self) -> TrendSummary:
        return await self.fetch("wind/trend", trend_adapter)

    async def fetch_history(self, hours: int = 24) -> list[WindSample]:
        _require_positive("hours", hours)
        return await self.fetch(f"wind/history/{hours}", wind_history_adapter)

    async def fetch_week_history(self, days: int = 7) -> list[HistoryDay]:
        _require_positive("days", days)
        return await self.fetch("wind/history/week", week_history_adapter, params={"days": days})

    async def fetch_statistics(self, hours: int = 24) -> WindStatistics:
        _require_positive("hours", hours)
        return await self.fetch(f"wind/statistics/{hours}", statistics_adapter)

    async def fetch_today_timeline(self) -> TimelineSnapshot:
        return await self.fetch(
            "wind/today/full",
            timeline_adapter,
            params={"interval": TIMELINE_INTERVAL_MINUTES},
        )

    async def fetch(
        self,
        path: str,
        adapter: TypeAdapter[T],
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> T:
        """Request ``path`` and decode it, retrying retryable failures.

        Attempt ``k`` (zero based) waits ``2 ** (k - 1)`` seconds first. A
        non-retryable error is raised on first sight; otherwise the last
        retryable error is raised once the attempts run out. Cancellation is
        never absorbed: it propagates out of any attempt or backoff sleep.
        """
        last_error: WindDataError = NetworkError(RuntimeError("no attempt was made"))
        for attempt in range(self._max_retries):
            if attempt > 0:
                delay = 2.0 ** (attempt - 1)
                logger.info("Retrying %s in %.1fs (attempt %s/%s)", path, delay, attempt + 1, self._max_retries)
                await self._sleep(delay)
            try:
                return await self._attempt(path, adapter, params)
            except WindDataError as exc:
                if not is_retryable(exc):
                    logger.warning("Backend request %s failed permanently: %s", path, exc)
                    raise
                last_error = exc
                logger.warning(
                    "Backend request %s failed (attempt %s/%s): %s",
                    path,
                    attempt + 1,
                    self._max_retries,
                    exc,
                )
        raise last_error

    async def _attempt(self, path: str, adapter: TypeAdapter[T], params: Optional[dict[str, Any]]) -> T:
        client = await self._get_client()
        logger.debug("Fetching %s%s params=%s", self._base_url, path, params)
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc) from exc
        except httpx.InvalidURL as exc:
            raise InvalidRequestError(str(exc)) from exc

        if not response.is_success:
            body = response.text[:MAX_ERROR_BODY_CHARS] if response.text else None
            raise HttpStatusError(response.status_code, body)

        try:
            return adapter.validate_json(response.content)
        except ValidationError as exc:
            raise DecodeFailureError(f"Failed to decode {path}: {exc}") from exc


__all__ = ["SleepFunc", "WindApiClient"]
