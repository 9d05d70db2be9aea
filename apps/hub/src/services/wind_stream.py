from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from config import settings
from services.errors import HttpStatusError, StreamDisconnectedError, WindDataError
from services.models import StreamUpdate, stream_update_adapter
from services.wind_api import SleepFunc

logger = logging.getLogger("windhub.hub.wind_stream")

T = TypeVar("T")
Decoder = Callable[[str], T]

DATA_FIELD = "data:"
CONNECT_TIMEOUT_SECONDS = 10.0
_END = object()


def decode_wind_update(payload: str) -> StreamUpdate:
    return stream_update_adapter.validate_json(payload)


def parse_sse_block(block: str) -> Optional[str]:
    """Return the joined ``data:`` payload of one SSE message, or None for comments and heartbeats."""
    data_lines: list[str] = []
    for line in block.split("\n"):
        if not line.startswith(DATA_FIELD):
            continue
        value = line[len(DATA_FIELD):]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    if not data_lines:
        return None
    return "\n".join(data_lines)


class SseFrameBuffer:
    """Accumulates stream text and splits it on the blank-line delimiter."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[str]:
        # A CRLF pair can straddle two chunks, so normalise after joining.
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        blocks: list[str] = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            blocks.append(block)
        return blocks

    @property
    def pending(self) -> str:
        return self._buffer


class WindStreamClient(Generic[T]):
    """Self-healing subscription to the backend's server-sent events stream."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        read_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        max_backoff: Optional[float] = None,
        queue_size: Optional[int] = None,
        decoder: Optional[Decoder[T]] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        base = base_url or settings.wind_api_base_url
        if not base.endswith("/"):
            base += "/"
        self._url = str(httpx.URL(base).join(path or settings.wind_stream_path))
        self._read_timeout = settings.wind_stream_read_timeout if read_timeout is None else read_timeout
        self._reconnect_delay = settings.wind_stream_reconnect_delay if reconnect_delay is None else reconnect_delay
        self._max_backoff = settings.wind_stream_max_backoff if max_backoff is None else max_backoff
        self._queue_size = settings.wind_stream_queue_size if queue_size is None else queue_size
        self._decoder: Decoder[T] = decoder or decode_wind_update  # type: ignore[assignment]
        self._sleep: SleepFunc = sleep or asyncio.sleep

    @property
    def url(self) -> str:
        return self._url

    @property
    def queue_size(self) -> int:
        return self._queue_size

    def backoff_delay(self, failures: int) -> float:
        exponent = max(failures, 1) - 1
        return min(self._reconnect_delay * (2.0 ** exponent), self._max_backoff)

    async def pause(self, delay: float) -> None:
        await self._sleep(delay)

    def subscribe(self) -> WindStreamSubscription[T]:
        """Open a fresh, lazily started subscription."""
        return WindStreamSubscription(self)

    async def run_session(self, emit: Callable[[T], Awaitable[None]]) -> None:
        """Relay one connection's messages through ``emit`` until it ends.

        Always raises: a clean close is reported as StreamDisconnectedError too.
        """
        timeout = httpx.Timeout(CONNECT_TIMEOUT_SECONDS, read=self._read_timeout)
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "User-Agent": settings.wind_user_agent,
        }
        buffer = SseFrameBuffer()
        try:
            async with httpx.AsyncClient(timeout=timeout, headers=headers) as client:
                async with client.stream("GET", self._url) as response:
                    if not response.is_success:
                        raise HttpStatusError(response.status_code)
                    logger.info("Wind stream connected to %s", self._url)
                    async for chunk in response.aiter_text():
                        for block in buffer.feed(chunk):
                            payload = parse_sse_block(block)
                            if payload is None:
                                continue
                            try:
                                update = self._decoder(payload)
                            except ValueError as exc:
                                logger.warning("Dropping undecodable stream message: %s", exc)
                                continue
                            await emit(update)
        except httpx.HTTPError as exc:
            raise StreamDisconnectedError(f"Stream connection lost: {exc!r}") from exc
        raise StreamDisconnectedError("Stream closed by server")


class WindStreamSubscription(Generic[T]):
    """Async iterator over stream updates backed by one reconnecting pump task.

    The pump task is the only owner of the connection and its buffer; updates
    reach the consumer through a queue. ``close()`` cancels the task, which
    aborts any in-flight read, releases the connection and stops reconnects.
    """

    def __init__(self, client: WindStreamClient[T]) -> None:
        self._client = client
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=client.queue_size)
        self._task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self._error: Optional[BaseException] = None
        self._session_relayed = 0
        self.reconnects = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_started(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._pump(), name="wind-stream")

    async def _deliver(self, update: T) -> None:
        if self._closed:
            return
        self._session_relayed += 1
        await self._queue.put(update)

    async def _pump(self) -> None:
        failures = 0
        try:
            while not self._closed:
                self._session_relayed = 0
                try:
                    await self._client.run_session(self._deliver)
                    reason = "stream ended"
                except WindDataError as exc:
                    reason = str(exc)
                # Any relayed message resets the counter, even if the session later failed.
                if self._session_relayed:
                    failures = 0
                failures += 1
                delay = self._client.backoff_delay(failures)
                logger.warning(
                    "Wind stream disconnected (%s); reconnecting in %.1fs (failure %s)",
                    reason,
                    delay,
                    failures,
                )
                await self._client.pause(delay)
                self.reconnects += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Wind stream pump stopped unexpectedly")
            self._error = exc
            await self._queue.put(_END)

    def __aiter__(self) -> WindStreamSubscription[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        self._ensure_started()
        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            # A cancelled consumer takes the pump down with it.
            await self.close()
            raise
        if item is _END or self._closed:
            self._closed = True
            if self._error is not None:
                error, self._error = self._error, None
                raise error
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def __aenter__(self) -> WindStreamSubscription[T]:
        self._ensure_started()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Wind stream subscription closed")


__all__ = [
    "SseFrameBuffer",
    "WindStreamClient",
    "WindStreamSubscription",
    "decode_wind_update",
    "parse_sse_block",
]
