from fastapi import WebSocket
from typing import Any, Dict, List
import json
from datetime import datetime
from rds_ssm_connect.core.logging import api_logger

EVENTS_CHANNEL = "events"


class ConnectionManager:
    """
    WebSocket Connection Manager for the tunnel event stream.

    Manages WebSocket connections organized by channels. Tunnel session
    events (status, credentials, disconnected, error) are broadcast on
    the ``events`` channel.
    """

    def __init__(self):
        # Store connections by channel: {channel_name: [websockets]}
        self.active_connections: Dict[str, List[WebSocket]] = {}
        # Connection metadata
        self.connection_metadata: Dict[WebSocket, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, channel: str) -> bool:
        """Accept a WebSocket and add it to a channel."""
        try:
            await websocket.accept()
        except Exception as e:
            api_logger.error(f"Error connecting WebSocket to channel '{channel}': {e}")
            return False

        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[websocket] = {
            "channel": channel,
            "connected_at": datetime.utcnow(),
        }
        api_logger.info(
            f"WebSocket connected to channel '{channel}' "
            f"({len(self.active_connections[channel])} listeners)"
        )
        return True

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket from its channel."""
        metadata = self.connection_metadata.pop(websocket, None)
        if not metadata:
            return

        channel = metadata["channel"]
        connections = self.active_connections.get(channel, [])
        if websocket in connections:
            connections.remove(websocket)

        # Clean up empty channels
        if channel in self.active_connections and not self.active_connections[channel]:
            del self.active_connections[channel]

        api_logger.info(f"WebSocket disconnected from channel '{channel}'")

    async def broadcast_to_channel(self, channel: str, data: dict) -> int:
        """Broadcast message to all connections in a channel."""
        if channel not in self.active_connections:
            return 0

        message = json.dumps({
            **data,
            "channel": channel
        })

        sent_count = 0
        broken_connections = []

        for connection in list(self.active_connections[channel]):
            try:
                await connection.send_text(message)
                sent_count += 1
            except Exception as e:
                api_logger.warning(f"Failed to send message to WebSocket: {e}")
                broken_connections.append(connection)

        # Clean up broken connections
        for broken_connection in broken_connections:
            self.disconnect(broken_connection)

        if sent_count > 0:
            api_logger.debug(f"Broadcasted to {sent_count} connections in channel '{channel}'")

        return sent_count

    async def broadcast_event(self, event: dict) -> int:
        """Registry subscriber: forward a session event to every listener."""
        return await self.broadcast_to_channel(EVENTS_CHANNEL, event)

    def get_channel_stats(self) -> Dict[str, int]:
        """Get statistics about active connections per channel."""
        return {
            channel: len(connections)
            for channel, connections in self.active_connections.items()
        }


# Global connection manager instance
websocket_manager = ConnectionManager()
