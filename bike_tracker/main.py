"""
FastAPI application entry point.

Routes:
  POST /position              ingest a GPS fix, persist it, push it to viewers

  GET  /api/history           every stored fix, oldest first
  GET  /api/last-position     most recent fix, or null
  GET  /api/config            {"mapStyle": ...}

  WS   /ws                    viewer channel — server pushes each new fix

Static:
  /                           map viewer (static/index.html)
  /static/...                 viewer assets
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from bike_tracker import config
from bike_tracker.broadcast.dispatcher import PositionBroadcaster
from bike_tracker.broadcast.registry import ConnectionRegistry
from bike_tracker.ingress import ClientInputError, ingest_position, parse_position
from bike_tracker.models import MapConfig, Position
from bike_tracker.storage import PositionStore, StorageError, make_store
from bike_tracker.viewers import serve_viewer

log = logging.getLogger("uvicorn.error")


def create_app(
    store: Optional[PositionStore] = None,
    *,
    map_style: Optional[str] = None,
    send_timeout: Optional[float] = None,
    idle_timeout: Optional[float] = None,
    static_dir: Optional[Path] = None,
) -> FastAPI:
    """Build the application. Arguments left as None fall back to bike_tracker.config."""

    # ── Lifespan ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store if store is not None else make_store(config.STORE_BACKEND, config.DB_PATH)
        # A store that cannot initialise is fatal: startup fails and the server exits.
        await app.state.store.init()
        app.state.registry = ConnectionRegistry()
        app.state.broadcaster = PositionBroadcaster(
            app.state.registry,
            send_timeout=config.SEND_TIMEOUT_S if send_timeout is None else send_timeout,
        )
        app.state.idle_timeout = config.VIEWER_IDLE_TIMEOUT_S if idle_timeout is None else idle_timeout
        yield
        await app.state.registry.close_all()
        await app.state.store.close()

    app = FastAPI(title="BikeTracker", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ── Ingress ───────────────────────────────────────────────────────────────

    @app.post("/position")
    async def post_position(request: Request):
        try:
            payload = parse_position(await request.body())
        except ClientInputError:
            raise HTTPException(400, "Invalid JSON")
        try:
            await ingest_position(payload, request.app.state.store, request.app.state.broadcaster)
        except StorageError:
            log.exception("Failed to save position")
            raise HTTPException(500, "Failed to save position")
        return {"status": "ok"}

    # ── History & config ──────────────────────────────────────────────────────

    @app.get("/api/history", response_model=list[Position])
    async def get_history(request: Request):
        try:
            return await request.app.state.store.list_all()
        except StorageError:
            log.exception("Failed to query history")
            raise HTTPException(500, "Failed to fetch history")

    @app.get("/api/last-position", response_model=Optional[Position])
    async def get_last_position(request: Request):
        try:
            return await request.app.state.store.last_one()
        except StorageError:
            log.exception("Failed to query last position")
            raise HTTPException(500, "Failed to fetch last position")

    @app.get("/api/config")
    async def get_config():
        return MapConfig(map_style=map_style or config.MAP_STYLE).model_dump(by_alias=True)

    # ── WebSocket viewers ─────────────────────────────────────────────────────

    @app.websocket("/ws")
    async def ws_viewer(websocket: WebSocket):
        state = websocket.app.state
        await serve_viewer(websocket, state.registry, idle_timeout=state.idle_timeout)

    # ── Static viewer ─────────────────────────────────────────────────────────

    assets = Path(static_dir or config.STATIC_DIR)
    app.mount("/static", StaticFiles(directory=str(assets), check_dir=False), name="static")

    @app.get("/")
    async def serve_index():
        index = assets / "index.html"
        if not index.exists():
            raise HTTPException(404, "index.html not found")
        return FileResponse(str(index), media_type="text/html")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    log.info("Server starting on http://%s:%d", config.ADDR, config.PORT)
    uvicorn.run(app, host=config.ADDR, port=config.PORT, log_level=config.LOG_LEVEL)


if __name__ == "__main__":
    run()
