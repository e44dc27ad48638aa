"""WebSocket endpoint for alert streaming.

Clients connect to ``/ws/alerts`` with an optional ``parcel_id`` filter.
Each connection gets its own polling session from the ``StreamManager``;
every tick pushes the matching active alerts as JSON messages::

    {"type": "alert", "data": {...alert fields...}}

A failed session sends ``{"type": "error", ...}`` and closes the socket.
Disconnecting cancels the session.

Auth is via ``api_key`` query parameter since browsers cannot set
custom headers on WebSocket upgrade requests.
"""

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from smartagri.alerts.errors import StreamRejectedError
from smartagri.alerts.schemas import Alert
from smartagri.alerts.streams import AlertObserver, StreamFilter, StreamManager
from smartagri.api.auth import api_key_allowed
from smartagri.api.dependencies import get_stream_manager
from smartagri.config.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()

# Close code for "try again later" (server overloaded or shutting down)
WS_CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketAlertObserver(AlertObserver):
    """Forwards a session's alerts to one WebSocket connection."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws

    async def on_next(self, alert: Alert) -> None:
        await self._ws.send_text(json.dumps({
            "type": "alert",
            "data": alert.to_dict(),
        }))

    async def on_error(self, error: Exception) -> None:
        try:
            await self._ws.send_text(json.dumps({
                "type": "error",
                "detail": "Alert stream failed",
            }))
            await self._ws.close(code=1011, reason="Alert stream failed")
        except Exception as e:
            logger.debug("Could not close failed alert stream socket: %s", e)


@router.websocket("/ws/alerts")
async def ws_alerts(
    ws: WebSocket,
    parcel_id: int | None = Query(default=None),
    client_id: str | None = Query(default=None),
    api_key: str | None = Query(default=None),
    streams: StreamManager = Depends(get_stream_manager),
) -> None:
    """WebSocket endpoint for alert streaming.

    Query parameters:
        parcel_id: Only stream active alerts for this parcel.
        client_id: Optional client label shown in diagnostics.
        api_key: API key for authentication.
    """
    settings = get_settings()

    if not settings.ws_alerts_enabled:
        await ws.close(code=1008, reason="WebSocket alerts not enabled")
        return

    if not api_key_allowed(settings.api_keys, api_key):
        await ws.close(code=1008, reason="Invalid or missing API key")
        return

    await ws.accept()

    try:
        session_id = streams.start_stream(
            StreamFilter(parcel_id=parcel_id),
            WebSocketAlertObserver(ws),
            client_id=client_id,
        )
    except StreamRejectedError as e:
        await ws.close(code=WS_CLOSE_TRY_AGAIN_LATER, reason=str(e))
        return

    try:
        # Keep connection alive; listen for client messages
        while True:
            try:
                raw = await ws.receive_text()
                try:
                    msg = json.loads(raw)
                    if msg.get("type") == "ping":
                        await ws.send_text(json.dumps({"type": "pong"}))
                except (json.JSONDecodeError, TypeError, AttributeError):
                    pass
            except WebSocketDisconnect:
                break
    finally:
        streams.cancel(session_id)
