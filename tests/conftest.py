"""Shared fixtures: fake viewer transports, registries and stores."""
from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Any

import pytest

# Keep module-level config away from the working directory during tests
os.environ.setdefault("DB_PATH", str(Path(__file__).parent / ".test_bike_tracker.db"))
os.environ.setdefault("STORE_BACKEND", "memory")

from bike_tracker.broadcast.dispatcher import PositionBroadcaster
from bike_tracker.broadcast.registry import ConnectionRegistry
from bike_tracker.storage import MemoryPositionStore, SQLitePositionStore


class FakeWebSocket:
    """Stands in for a Starlette WebSocket."""

    def __init__(self, name: str = "viewer", fail_with: Exception | None = None, delay: float = 0.0,
                 close_delay: float = 0.0, accept_error: Exception | None = None) -> None:
        self.client = (name, 0)
        self.close_delay = close_delay
        self.accept_error = accept_error
        self.accepted = False
        self.sent: list[dict] = []
        self.fail_with = fail_with
        self.delay = delay
        self.close_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_json(self, data: Any) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            self.sent.append(data)
        finally:
            self.in_flight -= 1

    async def accept(self) -> None:
        if self.accept_error is not None:
            raise self.accept_error
        self.accepted = True

    async def receive(self) -> dict:
        return {"type": "websocket.disconnect", "code": 1000}

    async def close(self, code: int = 1000) -> None:
        self.close_calls += 1
        if self.close_delay:
            await asyncio.sleep(self.close_delay)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry: ConnectionRegistry) -> PositionBroadcaster:
    return PositionBroadcaster(registry, send_timeout=1.0)


@pytest.fixture
def memory_store() -> MemoryPositionStore:
    return MemoryPositionStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> SQLitePositionStore:
    return SQLitePositionStore(tmp_path / "data" / "positions.db")


def _wait_for_viewers(app, count: int, timeout: float = 2.0) -> None:
    """Block until the app's registry holds ``count`` viewers (TestClient runs the app in a thread)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if len(app.state.registry) == count:
            return
        time.sleep(0.01)
    raise AssertionError(f"expected {count} viewers, have {len(app.state.registry)}")


@pytest.fixture
def wait_for_viewers():
    return _wait_for_viewers


@pytest.fixture
def make_ws():
    return FakeWebSocket
