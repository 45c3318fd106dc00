"""
WebSocket module for real-time communication.

This module provides the tunnel event stream: session status changes,
refreshed credentials, disconnects and errors for every connection.
"""

from .manager import websocket_manager
from .routes import router

__all__ = ["websocket_manager", "router"]
