"""Pydantic models for GPS fixes and the map configuration payload."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ── Position ──────────────────────────────────────────────────────────────────

class Position(BaseModel):
    """A single GPS fix as stored and broadcast. Never mutated once created."""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    timestamp: int  # unix seconds, UTC, assigned by the server


class PositionIn(BaseModel):
    """Inbound payload from a position producer.

    Only the coordinates are read; a client-supplied timestamp is ignored.
    """
    model_config = ConfigDict(extra="ignore")

    latitude: float = Field(strict=True, allow_inf_nan=False)
    longitude: float = Field(strict=True, allow_inf_nan=False)

    def stamp(self, timestamp: int) -> Position:
        return Position(latitude=self.latitude, longitude=self.longitude, timestamp=timestamp)


# ── Config ────────────────────────────────────────────────────────────────────

class MapConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    map_style: str = Field(alias="mapStyle")
