import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dashboard.auth import secrets_match
from dashboard.config import settings
from dashboard.services.broadcast import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter()

AUTH_FAILED_CLOSE_CODE = 4001


def _decode(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


async def _receive_text(websocket: WebSocket) -> str | None:
    """Next frame's text; ``None`` for a binary frame."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    return message.get("text")


def _is_auth_frame(message: Any) -> bool:
    return isinstance(message, dict) and message.get("type") == "auth"


async def _authenticate(websocket: WebSocket) -> bool:
    """Wait for the auth frame and acknowledge it."""
    try:
        text = await asyncio.wait_for(
            _receive_text(websocket), timeout=settings.ws_auth_timeout
        )
        message = _decode(text)
    except asyncio.TimeoutError:
        message = None

    success = (
        _is_auth_frame(message)
        and isinstance(message.get("password"), str)
        and secrets_match(message["password"], settings.frontend_password)
    )
    await websocket.send_json({"type": "auth", "success": success})
    return success


@router.websocket("/ws")
async def dashboard_feed(websocket: WebSocket):
    """Live notification feed for dashboard tabs."""
    hub: BroadcastHub = websocket.app.state.hub
    await websocket.accept()

    try:
        if settings.frontend_password and not await _authenticate(websocket):
            logger.warning("WS client failed authentication")
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
            return
    except WebSocketDisconnect:
        return

    hub.register(websocket)
    try:
        while True:
            message = _decode(await _receive_text(websocket))
            # A client holding a password may still send its auth frame to an
            # open server; it waits for the ack. Pings need no reply.
            if _is_auth_frame(message):
                await websocket.send_json({"type": "auth", "success": True})
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
