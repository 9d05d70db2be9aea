from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo

import httpx
from pydantic import ValidationError

from config import settings
from services.errors import InvalidRequestError, ProviderUnavailableError, wrap_transport_error
from services.models import ForecastEntry, WaveSample

logger = logging.getLogger("windhub.hub.open_meteo")

KMH_TO_KNOTS = 0.539957
HOURLY_WIND_FIELDS = [
    "wind_speed_10m",
    "wind_direction_10m",
    "wind_gusts_10m",
    "precipitation_probability",
]
HOURLY_MARINE_FIELDS = ["wave_height", "wave_direction", "wave_period"]


def kmh_to_knots(kmh: float) -> float:
    return kmh * KMH_TO_KNOTS


def _value_at(series: Any, index: int) -> Any:
    if not isinstance(series, list) or index >= len(series):
        return None
    return series[index]


class OpenMeteoProvider:
    """Hourly wind and marine forecasts straight from Open-Meteo.

    Times come back in the venue's zone because the request names it, so the
    venue hour is read off the timestamp directly.
    """

    name = "open_meteo"

    def __init__(
        self,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        timezone_name: Optional[str] = None,
        forecast_url: Optional[str] = None,
        marine_url: Optional[str] = None,
        timeout: Optional[float] = None,
        start_hour: Optional[int] = None,
        end_hour: Optional[int] = None,
    ) -> None:
        self._latitude = settings.venue_latitude if latitude is None else latitude
        self._longitude = settings.venue_longitude if longitude is None else longitude
        self._timezone_name = timezone_name or settings.venue_timezone
        self._tz = ZoneInfo(self._timezone_name)
        self._forecast_url = forecast_url or settings.open_meteo_forecast_url
        self._marine_url = marine_url or settings.open_meteo_marine_url
        self._timeout = settings.provider_timeout if timeout is None else timeout
        self._start_hour = settings.forecast_start_hour if start_hour is None else start_hour
        self._end_hour = settings.forecast_end_hour if end_hour is None else end_hour
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": settings.wind_user_agent,
                "Accept": "application/json",
            }
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_forecast(self, days: Optional[int] = None) -> list[ForecastEntry]:
        hourly = await self._fetch_hourly(self._forecast_url, HOURLY_WIND_FIELDS, days)
        try:
            entries = self._convert_forecast(hourly)
        except (ValidationError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(f"Open-Meteo forecast failed validation: {exc}") from exc
        logger.debug("Open-Meteo forecast produced %s entries", len(entries))
        return entries

    async def fetch_marine_forecast(self, days: Optional[int] = None) -> list[WaveSample]:
        hourly = await self._fetch_hourly(self._marine_url, HOURLY_MARINE_FIELDS, days)
        try:
            return self._convert_waves(hourly)
        except (ValidationError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(f"Open-Meteo marine forecast failed validation: {exc}") from exc

    async def _fetch_hourly(self, url: str, fields: Sequence[str], days: Optional[int]) -> dict[str, Any]:
        forecast_days = settings.forecast_days if days is None else days
        if forecast_days <= 0:
            raise InvalidRequestError("days must be greater than zero")
        params = {
            "latitude": str(self._latitude),
            "longitude": str(self._longitude),
            "hourly": ",".join(fields),
            "timezone": self._timezone_name,
            "forecast_days": str(forecast_days),
        }
        client = await self._get_client()
        logger.debug("Fetching Open-Meteo %s with params %s", url, params)
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc) from exc

        if not response.is_success:
            raise ProviderUnavailableError(f"Open-Meteo returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError("Open-Meteo returned a malformed body") from exc

        hourly = payload.get("hourly") if isinstance(payload, dict) else None
        if not isinstance(hourly, dict) or not isinstance(hourly.get("time"), list):
            raise ProviderUnavailableError("Open-Meteo response is missing the hourly block")
        return hourly

    def _local_time(self, value: str) -> datetime:
        # "2025-01-15T08:00": no offset, already in the requested zone.
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=self._tz)
        return parsed.astimezone(self._tz)

    def _convert_forecast(self, hourly: dict[str, Any]) -> list[ForecastEntry]:
        entries: list[ForecastEntry] = []
        for index, raw_time in enumerate(hourly["time"]):
            if not isinstance(raw_time, str):
                continue
            local = self._local_time(raw_time)
            if local.hour < self._start_hour or local.hour > self._end_hour:
                continue
            speed_kmh = _value_at(hourly.get("wind_speed_10m"), index)
            gust_kmh = _value_at(hourly.get("wind_gusts_10m"), index)
            direction = _value_at(hourly.get("wind_direction_10m"), index)
            if speed_kmh is None or gust_kmh is None or direction is None:
                continue
            precipitation = _value_at(hourly.get("precipitation_probability"), index)
            entries.append(
                ForecastEntry(
                    date=local,
                    hour=local.hour,
                    speed=round(kmh_to_knots(float(speed_kmh)), 1),
                    direction=int(float(direction)) % 360,
                    gust=round(kmh_to_knots(float(gust_kmh)), 1),
                    precipitation_probability=int(precipitation) if precipitation is not None else None,
                )
            )
        entries.sort(key=lambda entry: entry.date)
        return entries

    def _convert_waves(self, hourly: dict[str, Any]) -> list[WaveSample]:
        samples: list[WaveSample] = []
        for index in range(len(hourly["time"])):
            height = _value_at(hourly.get("wave_height"), index)
            direction = _value_at(hourly.get("wave_direction"), index)
            period = _value_at(hourly.get("wave_period"), index)
            if height is None or direction is None or period is None:
                continue
            samples.append(
                WaveSample(
                    height=float(height),
                    direction=int(float(direction)) % 360,
                    period=float(period),
                )
            )
        return samples


__all__ = ["HOURLY_MARINE_FIELDS", "HOURLY_WIND_FIELDS", "KMH_TO_KNOTS", "OpenMeteoProvider", "kmh_to_knots"]
