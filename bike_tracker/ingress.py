"""Position ingress: validate, stamp, persist, then broadcast."""
from __future__ import annotations

import logging
import time
from typing import Callable

from pydantic import ValidationError

from bike_tracker.broadcast.dispatcher import PositionBroadcaster
from bike_tracker.models import Position, PositionIn
from bike_tracker.storage import PositionStore

log = logging.getLogger(__name__)


class ClientInputError(Exception):
    """The producer sent a payload that is not a valid position."""


def parse_position(body: bytes) -> PositionIn:
    try:
        return PositionIn.model_validate_json(body)
    except ValidationError as exc:
        raise ClientInputError(str(exc)) from exc


async def ingest_position(
    payload: PositionIn,
    store: PositionStore,
    broadcaster: PositionBroadcaster,
    clock: Callable[[], float] = time.time,
) -> Position:
    """Stamp the fix with server time, store it, and fan it out.

    A StorageError from the store propagates and nothing is broadcast:
    viewers only ever see fixes that were persisted.
    """
    position = payload.stamp(int(clock()))
    await store.insert(position)
    delivered = await broadcaster.broadcast(position)
    log.info(
        "Received position: lat=%.6f, lng=%.6f (sent to %d viewer(s))",
        position.latitude, position.longitude, delivered,
    )
    return position
