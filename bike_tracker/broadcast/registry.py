"""
Registry of live viewer connections.

Each accepted WebSocket is wrapped in a Viewer and kept in one set owned by
the application. Dispatch works on a copy of that set taken under the lock;
failed viewers are collected during the fan-out and removed afterwards under
the lock again, so the set is never mutated while it is being iterated.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from fastapi import WebSocket

log = logging.getLogger(__name__)

_viewer_ids = itertools.count(1)


class TransportError(Exception):
    """Sending to a viewer failed; the viewer must be dropped."""


# ── Viewer ────────────────────────────────────────────────────────────────────

class Viewer:
    """One open WebSocket plus the state needed to write to it safely.

    ``send`` holds a per-viewer lock, so overlapping broadcasts never call
    ``send_json`` on the same socket at the same time.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.id = next(_viewer_ids)
        self.websocket = websocket
        self.closed = False
        self._released = False
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<Viewer #{self.id} {_peer(self.websocket)}>"

    async def send(self, message: dict, timeout: Optional[float] = None) -> bool:
        """Send one JSON message. Returns False if the viewer is already closed.

        Raises TransportError if the write fails or exceeds ``timeout``.
        """
        async with self._send_lock:
            if self.closed:
                return False
            try:
                if timeout:
                    await asyncio.wait_for(self.websocket.send_json(message), timeout=timeout)
                else:
                    await self.websocket.send_json(message)
            except asyncio.TimeoutError as exc:
                raise TransportError(f"send timed out after {timeout:g}s") from exc
            except Exception as exc:
                raise TransportError(str(exc) or type(exc).__name__) from exc
            return True

    async def close(self, code: int = 1000, timeout: Optional[float] = None) -> None:
        """Mark closed and release the transport. Safe to call more than once.

        With ``timeout`` set, a close handshake that hangs is abandoned after
        that many seconds.
        """
        self.closed = True
        if self._released:
            return
        self._released = True
        if _is_disconnected(self.websocket):
            return
        try:
            if timeout:
                await asyncio.wait_for(self.websocket.close(code=code), timeout=timeout)
            else:
                await self.websocket.close(code=code)
        except asyncio.TimeoutError:
            log.warning("Closing %r timed out after %gs", self, timeout)
        except Exception as exc:
            # Peer already gone; the transport is released either way.
            log.debug("Closing %r failed: %s", self, exc)


def _peer(websocket: WebSocket) -> str:
    client = getattr(websocket, "client", None)
    if client is None:
        return "unknown"
    return f"{client[0]}:{client[1]}"


def _is_disconnected(websocket: WebSocket) -> bool:
    # Starlette tracks both directions; either one closed means no close frame is needed.
    for attr in ("client_state", "application_state"):
        state = getattr(websocket, attr, None)
        if state is not None and getattr(state, "name", None) == "DISCONNECTED":
            return True
    return False


# ── Registry ──────────────────────────────────────────────────────────────────

@dataclass
class VisitOutcome:
    visited: int = 0
    succeeded: int = 0
    pruned: list[Viewer] = field(default_factory=list)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._viewers: dict[int, Viewer] = {}   # id(websocket) → Viewer
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._viewers)

    def __contains__(self, viewer: object) -> bool:
        return isinstance(viewer, Viewer) and self._viewers.get(id(viewer.websocket)) is viewer

    async def register(self, websocket: WebSocket) -> Viewer:
        """Add a connection. Registering the same websocket again returns its Viewer."""
        async with self._lock:
            existing = self._viewers.get(id(websocket))
            if existing is not None and existing.websocket is websocket:
                return existing
            viewer = Viewer(websocket)
            self._viewers[id(websocket)] = viewer
            count = len(self._viewers)
        log.info("Viewer connected: %r (%d live)", viewer, count)
        return viewer

    async def deregister(self, viewer: Viewer) -> bool:
        """Remove a viewer and mark it closed. No-op if it is not registered."""
        async with self._lock:
            removed = self._remove_locked(viewer)
            count = len(self._viewers)
        viewer.closed = True
        if removed:
            log.info("Viewer disconnected: %r (%d live)", viewer, count)
        return removed

    async def snapshot(self) -> list[Viewer]:
        async with self._lock:
            return list(self._viewers.values())

    async def visit(self, fn: Callable[[Viewer], Awaitable[bool]]) -> VisitOutcome:
        """Call ``fn`` for every live viewer and drop those it reports as failed.

        ``fn`` returning False or raising TransportError counts as failure.
        Viewers registered after the snapshot is taken are not visited.
        """
        viewers = await self.snapshot()
        outcome = VisitOutcome(visited=len(viewers))
        if not viewers:
            return outcome

        async def _run(viewer: Viewer) -> bool:
            try:
                return bool(await fn(viewer))
            except TransportError:
                return False

        results = await asyncio.gather(*(_run(v) for v in viewers))

        failed = [v for v, ok in zip(viewers, results) if not ok]
        outcome.succeeded = len(viewers) - len(failed)
        if failed:
            async with self._lock:
                for viewer in failed:
                    if self._remove_locked(viewer):
                        outcome.pruned.append(viewer)
            for viewer in failed:
                viewer.closed = True
        return outcome

    async def close_all(self, code: int = 1001) -> int:
        """Deregister and close every viewer (server shutdown)."""
        async with self._lock:
            viewers = list(self._viewers.values())
            self._viewers.clear()
        for viewer in viewers:
            await viewer.close(code=code)
        if viewers:
            log.info("Closed %d viewer(s) on shutdown", len(viewers))
        return len(viewers)

    def _remove_locked(self, viewer: Viewer) -> bool:
        key = id(viewer.websocket)
        if self._viewers.get(key) is viewer:
            del self._viewers[key]
            return True
        return False
