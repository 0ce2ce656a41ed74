"""
Position fan-out.

One call to ``broadcast`` pushes a fix to every viewer registered when the
call starts. A viewer whose send fails or times out is closed and pruned;
the others still get the message. Delivery is at-most-once with no retry.
"""
from __future__ import annotations

import logging

from bike_tracker.broadcast.registry import ConnectionRegistry, TransportError, Viewer
from bike_tracker.config import SEND_TIMEOUT_S
from bike_tracker.models import Position

log = logging.getLogger(__name__)


class PositionBroadcaster:
    def __init__(self, registry: ConnectionRegistry, send_timeout: float = SEND_TIMEOUT_S) -> None:
        self.registry = registry
        self.send_timeout = send_timeout

    async def broadcast(self, position: Position) -> int:
        """Send ``position`` to all live viewers. Returns how many received it."""
        message = position.model_dump()

        async def deliver(viewer: Viewer) -> bool:
            try:
                return await viewer.send(message, timeout=self.send_timeout)
            except TransportError as exc:
                log.warning("WebSocket write to %r failed: %s", viewer, exc)
                await viewer.close(timeout=self.send_timeout)
                return False

        outcome = await self.registry.visit(deliver)
        if outcome.pruned:
            log.info("Pruned %d dead viewer(s), %d live", len(outcome.pruned), len(self.registry))
        return outcome.succeeded
