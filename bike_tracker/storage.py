"""Append-only position log.

Two variants share one async interface:

  SQLitePositionStore  — durable, one row per fix in the ``positions`` table
  MemoryPositionStore  — process-lifetime only, for the non-persisted variant

Blocking sqlite3 calls run in a worker thread so the event loop (and with it
every viewer connection) keeps running during disk I/O.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Optional, Protocol

from bike_tracker.models import Position

log = logging.getLogger(__name__)


class StorageError(Exception):
    """A read or write against the position store failed."""


class PositionStore(Protocol):
    async def init(self) -> None: ...
    async def insert(self, position: Position) -> None: ...
    async def list_all(self) -> list[Position]: ...
    async def last_one(self) -> Optional[Position]: ...
    async def close(self) -> None: ...


# ── SQLite ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    timestamp INTEGER NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

# Insertion order is the id order; created_at only has one-second resolution.
_SELECT_ALL = "SELECT latitude, longitude, timestamp FROM positions ORDER BY id"
_SELECT_LAST = "SELECT latitude, longitude, timestamp FROM positions ORDER BY id DESC LIMIT 1"
_INSERT = "INSERT INTO positions (latitude, longitude, timestamp) VALUES (?, ?, ?)"


def _row_to_position(row: tuple) -> Position:
    lat, lng, ts = row
    return Position(latitude=lat, longitude=lng, timestamp=ts)


class SQLitePositionStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._write_lock = asyncio.Lock()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=5.0)

    # Blocking helpers, only ever run via asyncio.to_thread

    def _init_sync(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(_SCHEMA)

    def _insert_sync(self, position: Position) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(_INSERT, (position.latitude, position.longitude, position.timestamp))

    def _list_all_sync(self) -> list[Position]:
        with closing(self._connect()) as conn:
            return [_row_to_position(r) for r in conn.execute(_SELECT_ALL)]

    def _last_one_sync(self) -> Optional[Position]:
        with closing(self._connect()) as conn:
            row = conn.execute(_SELECT_LAST).fetchone()
        return _row_to_position(row) if row else None

    # Async interface

    async def init(self) -> None:
        try:
            await asyncio.to_thread(self._init_sync)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"cannot initialise {self.path}: {exc}") from exc
        log.info("Position store ready at %s", self.path)

    async def insert(self, position: Position) -> None:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._insert_sync, position)
            except (sqlite3.Error, OSError) as exc:
                raise StorageError(f"insert failed: {exc}") from exc

    async def list_all(self) -> list[Position]:
        try:
            return await asyncio.to_thread(self._list_all_sync)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"history query failed: {exc}") from exc

    async def last_one(self) -> Optional[Position]:
        try:
            return await asyncio.to_thread(self._last_one_sync)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"last position query failed: {exc}") from exc

    async def close(self) -> None:
        # Connections are per call; nothing is held open between requests.
        return None


# ── In-memory ─────────────────────────────────────────────────────────────────

class MemoryPositionStore:
    def __init__(self) -> None:
        self._positions: list[Position] = []

    async def init(self) -> None:
        log.info("Position store is in-memory; fixes are lost on restart")

    async def insert(self, position: Position) -> None:
        self._positions.append(position)

    async def list_all(self) -> list[Position]:
        return list(self._positions)

    async def last_one(self) -> Optional[Position]:
        return self._positions[-1] if self._positions else None

    async def close(self) -> None:
        self._positions.clear()


def make_store(backend: str, db_path: Path | str) -> PositionStore:
    if backend == "sqlite":
        return SQLitePositionStore(db_path)
    if backend == "memory":
        return MemoryPositionStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend!r} (expected 'sqlite' or 'memory')")
