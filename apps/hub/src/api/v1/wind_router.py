from __future__ import annotations

from typing import Any, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import TypeAdapter

from config import settings
from services.errors import ErrorKind, WindDataError
from services.models import (
    statistics_adapter,
    week_history_adapter,
    wind_history_adapter,
)
from services.wind_data import WindDataService, WindSnapshot, wind_data_service
from services.wind_store import CacheKind

router = APIRouter(prefix="/wind", tags=["wind"])

ERROR_STATUS = {
    ErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NO_DATA: status.HTTP_404_NOT_FOUND,
}


def get_wind_data_service() -> WindDataService:
    return wind_data_service


def validate_max_age(
    max_age: float = Query(0.0, ge=0.0, description="Accept cached data up to this many seconds old"),
) -> float:
    return max_age


def _raise_http(exc: WindDataError) -> NoReturn:
    code = ERROR_STATUS.get(exc.kind, status.HTTP_503_SERVICE_UNAVAILABLE)
    raise HTTPException(status_code=code, detail=str(exc)) from exc


def _dump(adapter: TypeAdapter[Any], value: Any) -> Any:
    return adapter.dump_python(value, mode="json", by_alias=True)


async def _latest(service: WindDataService, kind: CacheKind, max_age: float) -> dict[str, Any]:
    try:
        snapshot: WindSnapshot = await service.latest(kind, max_age)
    except WindDataError as exc:
        _raise_http(exc)
    return snapshot.to_payload()


@router.get("/current")
async def get_current_wind(
    max_age: float = Depends(validate_max_age),
    service: WindDataService = Depends(get_wind_data_service),
):
    return await _latest(service, CacheKind.CURRENT, max_age)


@router.get("/forecast")
async def get_forecast(
    max_age: float = Depends(validate_max_age),
    service: WindDataService = Depends(get_wind_data_service),
):
    return await _latest(service, CacheKind.FORECAST, max_age)


@router.get("/trend")
async def get_trend(
    max_age: float = Depends(validate_max_age),
    service: WindDataService = Depends(get_wind_data_service),
):
    return await _latest(service, CacheKind.TREND, max_age)


@router.get("/timeline")
async def get_today_timeline(
    max_age: float = Depends(validate_max_age),
    service: WindDataService = Depends(get_wind_data_service),
):
    return await _latest(service, CacheKind.TIMELINE, max_age)


@router.get("/statistics/{hours}")
async def get_statistics(hours: int, service: WindDataService = Depends(get_wind_data_service)):
    try:
        stats = await service.statistics(hours)
    except WindDataError as exc:
        _raise_http(exc)
    return _dump(statistics_adapter, stats)


# Registered before /history/{hours} so "week" is not parsed as an hour count.
@router.get("/history/week")
async def get_week_history(
    days: int = Query(7, description="Number of days to include"),
    service: WindDataService = Depends(get_wind_data_service),
):
    try:
        history = await service.week_history(days)
    except WindDataError as exc:
        _raise_http(exc)
    return _dump(week_history_adapter, history)


@router.get("/history/{hours}")
async def get_history(hours: int, service: WindDataService = Depends(get_wind_data_service)):
    try:
        samples = await service.history(hours)
    except WindDataError as exc:
        _raise_http(exc)
    return _dump(wind_history_adapter, samples)


@router.get("/waves")
async def get_waves(
    days: Optional[int] = Query(None, description="Forecast days; defaults to the configured horizon"),
    service: WindDataService = Depends(get_wind_data_service),
):
    try:
        waves = await service.waves(days)
    except WindDataError as exc:
        _raise_http(exc)
    return [
        {**wave.model_dump(mode="json"), "condition": wave.condition.value}
        for wave in waves
    ]


@router.get("/cache/{kind}")
async def get_cached(
    kind: CacheKind,
    max_age: Optional[float] = Query(None, ge=0.0, description="Staleness threshold; defaults to the background max age"),
    service: WindDataService = Depends(get_wind_data_service),
):
    entry = await service.cached(kind)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Nothing cached for {kind.value}")
    threshold = settings.background_max_age_seconds if max_age is None else max_age
    return {
        "kind": entry.kind.value,
        "fetchedAt": entry.fetched_at.isoformat(),
        "ageSeconds": round(entry.age(), 3),
        "maxAge": threshold,
        "stale": entry.is_stale(threshold),
        "data": entry.payload_json(),
    }


__all__ = ["get_wind_data_service", "router"]
