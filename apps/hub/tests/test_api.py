import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from api.v1.wind_router import get_wind_data_service
from services.errors import HttpStatusError, InvalidRequestError, NoDataError, ProviderUnavailableError
from services.models import TrendDirection, TrendSummary, WaveSample, WindSample
from services.wind_data import WindDataService
from services.wind_store import CacheKind, WindStore

NOW = datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)


def _sample(speed: float = 14.0) -> WindSample:
    return WindSample(timestamp=NOW, speed=speed, gust=speed + 4.0, direction=45)


def _outcome(value):
    if isinstance(value, Exception):
        raise value
    return value


class _StubBackend:
    def __init__(self, **results) -> None:
        self.results = results
        self.calls: list[str] = []

    async def fetch_current_wind(self):
        self.calls.append("current")
        return _outcome(self.results.get("current", HttpStatusError(503)))

    async def fetch_forecast(self):
        self.calls.append("forecast")
        return _outcome(self.results.get("forecast", HttpStatusError(503)))

    async def fetch_trend(self):
        self.calls.append("trend")
        return _outcome(self.results.get("trend", HttpStatusError(503)))

    async def fetch_today_timeline(self):
        self.calls.append("timeline")
        return _outcome(self.results.get("timeline", HttpStatusError(503)))

    async def fetch_statistics(self, hours: int = 24):
        self.calls.append(f"statistics:{hours}")
        return _outcome(self.results.get("statistics", HttpStatusError(503)))

    async def fetch_history(self, hours: int = 24):
        self.calls.append(f"history:{hours}")
        return _outcome(self.results.get("history", []))

    async def fetch_week_history(self, days: int = 7):
        self.calls.append(f"week:{days}")
        return _outcome(self.results.get("week", []))

    async def close(self) -> None:
        pass


class _StubProvider:
    name = "stub"

    def __init__(self, current=None, forecast=None, waves=None) -> None:
        self.current = current if current is not None else ProviderUnavailableError("station offline")
        self.forecast = forecast if forecast is not None else ProviderUnavailableError("forecast offline")
        self.waves = waves if waves is not None else []

    async def fetch_current_wind(self):
        return _outcome(self.current)

    async def fetch_forecast(self, days=None):
        return _outcome(self.forecast)

    async def fetch_marine_forecast(self, days=None):
        return _outcome(self.waves)

    async def close(self) -> None:
        pass


@pytest.fixture
def api_store(tmp_path: Path) -> WindStore:
    return WindStore(db_path=tmp_path / "api.sqlite")


@pytest.fixture
def install_service(client: TestClient, api_store: WindStore):
    def _install(backend: _StubBackend, provider: _StubProvider | None = None) -> WindDataService:
        provider = provider or _StubProvider()
        service = WindDataService(api=backend, ambient=provider, open_meteo=provider, store=api_store)
        client.app.dependency_overrides[get_wind_data_service] = lambda: service
        return service

    yield _install
    client.app.dependency_overrides.clear()


def test_health_and_info(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/v1/health").json()["status"] == "ok"
    info = client.get("/api/v1/info").json()
    assert info["name"] == "Wind Hub"
    assert info["stream_relay_running"] is False


def test_current_wind_from_backend(client: TestClient, install_service) -> None:
    install_service(_StubBackend(current=_sample(14.0)))

    response = client.get("/api/v1/wind/current")

    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "current"
    assert body["stale"] is False
    assert body["fromCache"] is False
    assert body["data"]["windSpeedKnots"] == 14.0
    assert body["data"]["windDir"] == 45


def test_current_wind_served_from_station_fallback(client: TestClient, install_service) -> None:
    install_service(_StubBackend(), _StubProvider(current=_sample(7.5)))

    response = client.get("/api/v1/wind/current")

    assert response.status_code == 200
    assert response.json()["data"]["windSpeedKnots"] == 7.5


def test_current_wind_served_stale_from_cache(client: TestClient, install_service, api_store: WindStore) -> None:
    install_service(_StubBackend())
    asyncio.run(api_store.write(CacheKind.CURRENT, _sample(9.0)))

    response = client.get("/api/v1/wind/current")

    assert response.status_code == 200
    body = response.json()
    assert body["stale"] is True
    assert body["fromCache"] is True
    assert body["data"]["windSpeedKnots"] == 9.0


def test_max_age_reuses_cache_without_fetching(client: TestClient, install_service, api_store: WindStore) -> None:
    backend = _StubBackend(trend=TrendSummary(trend=TrendDirection.STABLE))
    install_service(backend)
    asyncio.run(api_store.write(CacheKind.TREND, TrendSummary(trend=TrendDirection.INCREASING)))

    response = client.get("/api/v1/wind/trend", params={"max_age": 600})

    assert response.status_code == 200
    assert response.json()["data"]["trend"] == "increasing"
    assert backend.calls == []


def test_unavailable_without_cache_is_503(client: TestClient, install_service) -> None:
    install_service(_StubBackend())

    response = client.get("/api/v1/wind/forecast")

    assert response.status_code == 503
    assert "forecast offline" in response.json()["detail"]


def test_no_data_maps_to_404(client: TestClient, install_service) -> None:
    install_service(_StubBackend(timeline=NoDataError("nothing recorded today")))

    response = client.get("/api/v1/wind/timeline")

    assert response.status_code == 404


def test_invalid_request_maps_to_400(client: TestClient, install_service) -> None:
    install_service(_StubBackend(statistics=InvalidRequestError("hours must be greater than zero")))

    response = client.get("/api/v1/wind/statistics/0")

    assert response.status_code == 400
    assert response.json()["detail"] == "hours must be greater than zero"


def test_week_history_is_not_mistaken_for_hours(client: TestClient, install_service) -> None:
    backend = _StubBackend(history=[_sample(11.0)])
    install_service(backend)

    week = client.get("/api/v1/wind/history/week", params={"days": 3})
    hours = client.get("/api/v1/wind/history/6")

    assert week.status_code == 200
    assert week.json() == []
    assert hours.json()[0]["windSpeedKnots"] == 11.0
    assert backend.calls == ["week:3", "history:6"]


def test_waves_include_condition(client: TestClient, install_service) -> None:
    install_service(_StubBackend(), _StubProvider(waves=[WaveSample(height=1.0, direction=120, period=5.0)]))

    response = client.get("/api/v1/wind/waves", params={"days": 2})

    assert response.status_code == 200
    assert response.json() == [{"height": 1.0, "direction": 120, "period": 5.0, "condition": "moderate"}]


def test_cache_endpoint(client: TestClient, install_service, api_store: WindStore) -> None:
    install_service(_StubBackend())

    assert client.get("/api/v1/wind/cache/current").status_code == 404
    assert client.get("/api/v1/wind/cache/unknown").status_code == 422

    asyncio.run(api_store.write(CacheKind.CURRENT, _sample(12.0)))
    fresh = client.get("/api/v1/wind/cache/current").json()
    assert fresh["stale"] is False
    assert fresh["maxAge"] == 600.0
    assert fresh["data"]["windSpeedKnots"] == 12.0

    strict = client.get("/api/v1/wind/cache/current", params={"max_age": 0}).json()
    assert strict["stale"] is True
