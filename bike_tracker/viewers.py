"""
Viewer connection lifecycle.

  accept → register → read until close/error → deregister → close

Inbound messages are read and discarded; the loop only exists to notice
when the peer goes away. With ``idle_timeout`` left at 0 a viewer that
never sends and never disconnects keeps its slot for as long as the
transport stays up.
"""
from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from bike_tracker.broadcast.registry import ConnectionRegistry

log = logging.getLogger(__name__)


async def serve_viewer(websocket: WebSocket, registry: ConnectionRegistry, idle_timeout: float = 0.0) -> None:
    try:
        await websocket.accept()
    except Exception:
        log.exception("WebSocket upgrade failed")
        return

    viewer = await registry.register(websocket)
    try:
        while True:
            if idle_timeout > 0:
                message = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout)
            else:
                message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                log.info("WebSocket closed by peer %r (code %s)", viewer, message.get("code"))
                break
    except asyncio.TimeoutError:
        log.info("Closing idle viewer %r after %gs without traffic", viewer, idle_timeout)
    except WebSocketDisconnect as exc:
        log.info("WebSocket closed by peer %r (code %s)", viewer, exc.code)
    except Exception as exc:
        log.warning("WebSocket read from %r failed: %s", viewer, exc)
    finally:
        await registry.deregister(viewer)
        await viewer.close()
