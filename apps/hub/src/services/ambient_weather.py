from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from config import settings
from services.errors import NoDataError, ProviderUnavailableError, wrap_transport_error
from services.models import WindSample

logger = logging.getLogger("windhub.hub.ambient")

MPH_TO_KNOTS = 0.868976
DEVICES_PATH = "/devices"


def mph_to_knots(mph: float) -> float:
    return mph * MPH_TO_KNOTS


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and (value != value or value in (float("inf"), float("-inf"))):
            return None
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            result = float(value.strip())
        except ValueError:
            return None
        if result != result or result in (float("inf"), float("-inf")):
            return None
        return result
    return None


def _coerce_degrees(value: Any) -> Optional[int]:
    degrees = _coerce_float(value)
    if degrees is None:
        return None
    return int(degrees) % 360


class AmbientWeatherProvider:
    """Direct read of the venue's Ambient Weather station, used when the backend is down.

    One attempt per call; the caller decides what to do on failure.
    """

    name = "ambient_weather"

    def __init__(
        self,
        *,
        slug: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._slug = slug or settings.ambient_station_slug
        self._base_url = (base_url or settings.ambient_base_url).rstrip("/")
        self._timeout = settings.provider_timeout if timeout is None else timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": settings.ambient_user_agent,
                "Accept": "application/json",
            }
            self._client = httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_current_wind(self) -> WindSample:
        client = await self._get_client()
        logger.debug("Fetching Ambient Weather device %s", self._slug)
        try:
            response = await client.get(DEVICES_PATH, params={"public.slug": self._slug})
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc) from exc

        if not response.is_success:
            raise ProviderUnavailableError(f"Ambient Weather returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError("Ambient Weather returned a malformed body") from exc

        devices = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(devices, list):
            raise ProviderUnavailableError("Ambient Weather response is missing the device list")
        if not devices or not isinstance(devices[0], dict):
            raise NoDataError("Ambient Weather returned no devices")
        last_data = devices[0].get("lastData")
        if not isinstance(last_data, dict) or not last_data:
            raise NoDataError("Ambient Weather device has no recent observation")

        try:
            return self._convert(last_data)
        except (ValidationError, TypeError, ValueError, OverflowError, OSError) as exc:
            raise ProviderUnavailableError(f"Ambient Weather observation failed validation: {exc}") from exc

    def _convert(self, raw: dict[str, Any]) -> WindSample:
        dateutc = _coerce_float(raw.get("dateutc"))
        if dateutc is not None:
            timestamp = datetime.fromtimestamp(dateutc / 1000.0, tz=timezone.utc)
        else:
            timestamp = datetime.now(timezone.utc)

        speed_mph = _coerce_float(raw.get("windspeedmph")) or 0.0
        gust_mph = _coerce_float(raw.get("windgustmph")) or 0.0
        max_gust_mph = _coerce_float(raw.get("maxdailygust")) or 0.0

        return WindSample(
            timestamp=timestamp,
            speed=mph_to_knots(speed_mph),
            gust=mph_to_knots(gust_mph),
            max_gust=mph_to_knots(max_gust_mph),
            direction=_coerce_degrees(raw.get("winddir")) or 0,
            direction_avg=_coerce_degrees(raw.get("winddir_avg10m")),
            temperature=_coerce_float(raw.get("tempf")),
            humidity=_coerce_float(raw.get("humidity")),
            pressure=_coerce_float(raw.get("baromrelin")),
        )


__all__ = ["AmbientWeatherProvider", "MPH_TO_KNOTS", "mph_to_knots"]
