"""Central configuration: paths, server binding and broadcast tuning."""
from pathlib import Path
import os

# ── Filesystem paths ──────────────────────────────────────────────────────────
ROOT = Path(__file__).parent
STATIC_DIR = ROOT / "static"
DB_PATH = Path(os.environ.get("DB_PATH", "bike_tracker.db"))

# "sqlite" persists every fix; "memory" keeps them only for the process lifetime
STORE_BACKEND = os.environ.get("STORE_BACKEND", "sqlite")

# ── Server ────────────────────────────────────────────────────────────────────
ADDR = os.environ.get("ADDR") or "localhost"
PORT = int(os.environ.get("PORT") or 8080)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")

CORS_ORIGINS = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()
]

# ── Map ───────────────────────────────────────────────────────────────────────
DEFAULT_MAP_STYLE = "https://vector.openstreetmap.org/shortbread_v1/tilejson.json"
MAP_STYLE = os.environ.get("MAP_STYLE") or DEFAULT_MAP_STYLE

# ── Viewer broadcast ──────────────────────────────────────────────────────────
SEND_TIMEOUT_S = float(os.environ.get("SEND_TIMEOUT_S", "5.0"))   # 0 → no limit

# 0 disables the idle timeout: a silent viewer keeps its slot until the
# transport itself reports a close or error.
VIEWER_IDLE_TIMEOUT_S = float(os.environ.get("VIEWER_IDLE_TIMEOUT_S", "0"))
