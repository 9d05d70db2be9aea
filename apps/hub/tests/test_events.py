import asyncio
import json
from datetime import datetime, timezone

import pytest
from fastapi.responses import StreamingResponse

from api.v1 import events_router
from api.v1.events_router import stream_events
from services.errors import StreamDisconnectedError
from services.event_bus import EventBus, EventMessage, event_bus
from services.models import StreamUpdate, WindSample
from services.wind_relay import WIND_UPDATE_EVENT, WindRelay
from services.wind_stream import WindStreamClient

NOW = datetime(2025, 1, 15, 8, 30, tzinfo=timezone.utc)


def _update(speed: float) -> StreamUpdate:
    return StreamUpdate(
        type="wind_update",
        data=WindSample(timestamp=NOW, speed=speed, gust=speed + 3.0, direction=50),
        timestamp=NOW,
    )


class _ScriptedStreamClient(WindStreamClient):
    def __init__(self, updates) -> None:
        super().__init__(base_url="https://wind.test/api")
        self._updates = list(updates)

    async def run_session(self, emit) -> None:
        updates, self._updates = self._updates, []
        for update in updates:
            await emit(update)
        if not updates:
            await asyncio.Event().wait()
        raise StreamDisconnectedError("dropped")

    async def pause(self, delay: float) -> None:
        await asyncio.sleep(0)


def test_event_message_to_sse_frames_json() -> None:
    frame = EventMessage(type="wind_update", data={"speed": 12.3}, id="4").to_sse().decode("utf-8")
    assert frame == 'id: 4\nevent: wind_update\ndata: {"speed":12.3}\n\n'


def test_event_message_serializes_models() -> None:
    frame = EventMessage(type="wind_update", data={"update": _update(9.0)}).to_sse().decode("utf-8")
    data_line = next(line for line in frame.splitlines() if line.startswith("data: "))
    payload = json.loads(data_line[len("data: "):])
    assert payload["update"]["data"]["windSpeedKnots"] == 9.0


@pytest.mark.anyio
async def test_event_bus_fans_out_to_every_subscriber() -> None:
    bus = EventBus()
    first = await bus.subscribe()
    second = await bus.subscribe()
    await bus.publish("wind_update", {"speed": 10})

    assert (await first.get()).data == {"speed": 10}
    assert (await second.get()).data == {"speed": 10}

    await first.close()
    await second.close()
    assert bus.subscriber_count == 0


@pytest.mark.anyio
async def test_event_stream_sends_init_then_relayed_updates() -> None:
    response = await stream_events()
    assert isinstance(response, StreamingResponse)
    body_iter = response.body_iterator

    init = (await anext(body_iter)).decode("utf-8")
    assert "event: init" in init
    assert '"relay"' in init

    await event_bus.publish(WIND_UPDATE_EVENT, {"speed": 15.5})
    update = (await anext(body_iter)).decode("utf-8")
    assert "event: wind_update" in update
    assert '"speed":15.5' in update

    await body_iter.aclose()  # type: ignore[attr-defined]


@pytest.mark.anyio
async def test_event_stream_sends_keep_alive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(events_router, "KEEPALIVE_SECONDS", 0.01)
    response = await stream_events()
    body_iter = response.body_iterator

    await anext(body_iter)
    assert await anext(body_iter) == b": keep-alive\n\n"

    await body_iter.aclose()  # type: ignore[attr-defined]


@pytest.mark.anyio
async def test_relay_republishes_stream_updates() -> None:
    bus = EventBus()
    listener = await bus.subscribe()
    relay = WindRelay(client=_ScriptedStreamClient([_update(11.0), _update(12.5)]), bus=bus)

    await relay.start()
    try:
        first = await asyncio.wait_for(listener.get(), timeout=1.0)
        second = await asyncio.wait_for(listener.get(), timeout=1.0)
    finally:
        await relay.stop()
        await listener.close()

    assert first.type == WIND_UPDATE_EVENT
    assert first.data["data"]["windSpeedKnots"] == 11.0
    assert second.data["data"]["windSpeedKnots"] == 12.5
    assert relay.relayed == 2
    assert not relay.running
    status = relay.status_snapshot()
    assert status["last_update_time"] == "2025-01-15T08:30:00Z"
