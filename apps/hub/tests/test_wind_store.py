import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from services.models import ForecastEntry, TrendDirection, TrendSummary, WindSample
from services.wind_store import CacheEntry, CacheKind, WindStore

FETCHED_AT = datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _sample(speed: float = 14.25) -> WindSample:
    return WindSample(
        timestamp=datetime(2025, 1, 15, 7, 59, 30, 250000, tzinfo=timezone.utc),
        speed=speed,
        gust=19.1,
        max_gust=23.4,
        direction=47,
        direction_avg=52,
        temperature=87.3,
        humidity=66.0,
        pressure=29.87,
    )


@pytest.mark.anyio
async def test_wind_sample_round_trip(tmp_path: Path) -> None:
    store = WindStore(db_path=tmp_path / "store.sqlite", clock=_Clock(FETCHED_AT))
    original = _sample()
    await store.write(CacheKind.CURRENT, original)

    entry = await store.read(CacheKind.CURRENT)

    assert entry is not None
    assert entry.payload == original
    assert entry.payload.speed == original.speed
    assert entry.payload.pressure == original.pressure
    assert entry.fetched_at == FETCHED_AT


@pytest.mark.anyio
async def test_entries_persist_across_store_instances(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.sqlite"
    writer = WindStore(db_path=db_path, clock=_Clock(FETCHED_AT))
    await writer.write(CacheKind.TREND, TrendSummary(trend=TrendDirection.INCREASING, change=1.5))

    reader = WindStore(db_path=db_path)
    entry = await reader.read(CacheKind.TREND)

    assert entry is not None
    assert entry.payload.trend is TrendDirection.INCREASING
    assert entry.payload.change == pytest.approx(1.5)


@pytest.mark.anyio
async def test_write_replaces_entry_wholesale(tmp_path: Path) -> None:
    clock = _Clock(FETCHED_AT)
    store = WindStore(db_path=tmp_path / "store.sqlite", clock=clock)
    first = [
        ForecastEntry(date=FETCHED_AT, hour=15, speed=10.0, direction=90, gust=14.0),
        ForecastEntry(date=FETCHED_AT + timedelta(hours=1), hour=16, speed=11.0, direction=95, gust=15.0),
    ]
    await store.write(CacheKind.FORECAST, first)

    clock.now = FETCHED_AT + timedelta(minutes=10)
    second = [ForecastEntry(date=FETCHED_AT, hour=15, speed=12.5, direction=80, gust=16.0)]
    await store.write(CacheKind.FORECAST, second)

    entry = await store.read(CacheKind.FORECAST)
    assert entry is not None
    assert entry.payload == second
    assert entry.fetched_at == clock.now


@pytest.mark.anyio
async def test_missing_entry_is_stale_for_any_threshold(store: WindStore) -> None:
    assert await store.read(CacheKind.TIMELINE) is None
    assert await store.is_stale(CacheKind.TIMELINE, 10_000_000.0) is True


@pytest.mark.anyio
async def test_staleness_boundary(tmp_path: Path) -> None:
    clock = _Clock(FETCHED_AT)
    store = WindStore(db_path=tmp_path / "store.sqlite", clock=clock)
    await store.write(CacheKind.CURRENT, _sample())

    clock.now = FETCHED_AT + timedelta(seconds=600)
    assert await store.is_stale(CacheKind.CURRENT, 600.0) is False
    assert await store.is_stale(CacheKind.CURRENT, 0.0) is True

    clock.now = FETCHED_AT + timedelta(seconds=600, microseconds=1)
    assert await store.is_stale(CacheKind.CURRENT, 600.0) is True


def test_cache_entry_staleness_is_pure() -> None:
    entry = CacheEntry(kind=CacheKind.CURRENT, payload=_sample(), fetched_at=FETCHED_AT)
    assert entry.age(FETCHED_AT + timedelta(seconds=30)) == pytest.approx(30.0)
    assert entry.is_stale(30.0, FETCHED_AT + timedelta(seconds=30)) is False
    assert entry.is_stale(29.9, FETCHED_AT + timedelta(seconds=30)) is True


@pytest.mark.anyio
async def test_concurrent_writes_resolve_to_one_complete_entry(store: WindStore) -> None:
    samples = [_sample(speed=float(n)) for n in range(10)]
    await asyncio.gather(*(store.write(CacheKind.CURRENT, sample) for sample in samples))

    entry = await store.read(CacheKind.CURRENT)
    assert entry is not None
    assert entry.payload in samples


@pytest.mark.anyio
async def test_clear_removes_every_kind(store: WindStore) -> None:
    await store.write(CacheKind.CURRENT, _sample())
    await store.write(CacheKind.TREND, TrendSummary(trend=TrendDirection.STABLE))
    await store.clear()
    assert await store.read(CacheKind.CURRENT) is None
    assert await store.read(CacheKind.TREND) is None


def test_cache_entry_payload_json_uses_wire_names() -> None:
    entry = CacheEntry(kind=CacheKind.CURRENT, payload=_sample(), fetched_at=FETCHED_AT)
    payload = entry.payload_json()
    assert payload["windSpeedKnots"] == pytest.approx(14.25)
    assert payload["windDir"] == 47
