from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from config import settings
from services.models import forecast_adapter, timeline_adapter, trend_adapter, wind_sample_adapter

logger = logging.getLogger("windhub.hub.wind_store")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheKind(str, Enum):
    CURRENT = "current"
    FORECAST = "forecast"
    TREND = "trend"
    TIMELINE = "timeline"


CACHE_ADAPTERS: Dict[CacheKind, TypeAdapter[Any]] = {
    CacheKind.CURRENT: wind_sample_adapter,
    CacheKind.FORECAST: forecast_adapter,
    CacheKind.TREND: trend_adapter,
    CacheKind.TIMELINE: timeline_adapter,
}


@dataclass(slots=True)
class CacheEntry:
    kind: CacheKind
    payload: Any
    fetched_at: datetime

    def age(self, now: Optional[datetime] = None) -> float:
        reference = now or _utc_now()
        return (reference - self.fetched_at).total_seconds()

    def is_stale(self, max_age: float, now: Optional[datetime] = None) -> bool:
        return self.age(now) > max_age

    def payload_json(self) -> Any:
        return CACHE_ADAPTERS[self.kind].dump_python(self.payload, mode="json", by_alias=True)


class WindStore:
    """Last-known-good payload per data kind, one SQLite row each.

    Every write replaces the row wholesale; nothing is ever merged or evicted.
    The file is opened in WAL mode so several hub processes can share it.
    """

    def __init__(self, *, db_path: Path, clock: Optional[Clock] = None) -> None:
        self._db_path = db_path
        self._clock: Clock = clock or _utc_now
        self._locks: Dict[CacheKind, asyncio.Lock] = {kind: asyncio.Lock() for kind in CacheKind}
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wind_cache (
                    kind TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    fetched_at TEXT NOT NULL
                );
                """
            )
            conn.commit()

    async def write(self, kind: CacheKind, payload: Any) -> CacheEntry:
        kind = CacheKind(kind)
        encoded = CACHE_ADAPTERS[kind].dump_json(payload, by_alias=True).decode("utf-8")
        async with self._locks[kind]:
            fetched_at = self._clock()
            await asyncio.to_thread(self._upsert, kind, encoded, fetched_at)
        logger.info("Cached %s at %s", kind.value, fetched_at.isoformat())
        return CacheEntry(kind=kind, payload=payload, fetched_at=fetched_at)

    def _upsert(self, kind: CacheKind, encoded: str, fetched_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO wind_cache (kind, payload, fetched_at)
                VALUES (:kind, :payload, :fetched_at)
                ON CONFLICT(kind) DO UPDATE SET
                    payload = excluded.payload,
                    fetched_at = excluded.fetched_at;
                """,
                {
                    "kind": kind.value,
                    "payload": encoded,
                    "fetched_at": fetched_at.astimezone(timezone.utc).isoformat(timespec="microseconds"),
                },
            )
            conn.commit()

    async def read(self, kind: CacheKind) -> Optional[CacheEntry]:
        kind = CacheKind(kind)
        async with self._locks[kind]:
            row = await asyncio.to_thread(self._select, kind)
        if row is None:
            return None
        try:
            payload = CACHE_ADAPTERS[kind].validate_json(row["payload"])
        except ValidationError as exc:
            logger.warning("Ignoring undecodable %s cache entry: %s", kind.value, exc)
            return None
        return CacheEntry(kind=kind, payload=payload, fetched_at=datetime.fromisoformat(row["fetched_at"]))

    def _select(self, kind: CacheKind) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT payload, fetched_at FROM wind_cache WHERE kind = ?;",
                (kind.value,),
            )
            return cursor.fetchone()

    async def is_stale(self, kind: CacheKind, max_age: float) -> bool:
        """True when nothing is cached for ``kind`` or the entry is older than ``max_age`` seconds."""
        entry = await self.read(kind)
        if entry is None:
            return True
        return entry.is_stale(max_age, self._clock())

    async def clear(self) -> None:
        for kind in CacheKind:
            async with self._locks[kind]:
                await asyncio.to_thread(self._delete, kind)

    def _delete(self, kind: CacheKind) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM wind_cache WHERE kind = ?;", (kind.value,))
            conn.commit()


def _resolve_db_path() -> Path:
    return Path(settings.wind_store_db)


wind_store = WindStore(db_path=_resolve_db_path())

__all__ = ["CACHE_ADAPTERS", "CacheEntry", "CacheKind", "WindStore", "wind_store"]
