from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from rds_ssm_connect.websocket.manager import EVENTS_CHANNEL, websocket_manager
from rds_ssm_connect.core.logging import api_logger
import json

router = APIRouter(prefix="/ws", tags=["websockets"])


@router.websocket("/events")
async def tunnel_events_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for tunnel session events.

    Clients will receive JSON messages of the form
    ``{"type": "event", "event": ..., "connectionId": ..., ...}`` where
    ``event`` is one of status, credentials, disconnected or error.
    Clients may send ``{"type": "ping"}`` and get a pong back.
    """
    connected = await websocket_manager.connect(websocket, EVENTS_CHANNEL)
    if not connected:
        await websocket.close(code=1011, reason="Connection failed")
        return

    try:
        await websocket.send_text(json.dumps({
            "type": "connection_established",
            "channel": EVENTS_CHANNEL,
            "message": "Connected to tunnel events"
        }))

        while True:
            message = await websocket.receive_text()
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({
                    "type": "error",
                    "message": "Invalid JSON message"
                }))
                continue

            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_text(json.dumps({
                    "type": "pong",
                    "timestamp": data.get("timestamp")
                }))

    except WebSocketDisconnect as e:
        api_logger.info(f"Event stream client disconnected (code={e.code})")
    finally:
        websocket_manager.disconnect(websocket)
