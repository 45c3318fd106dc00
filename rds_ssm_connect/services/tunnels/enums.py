"""
Enums for Tunnel Session Management

Defines session states and event types used throughout the tunnel system.
"""

from enum import Enum


class SessionState(Enum):
    """State of a tunnel session."""
    RESOLVING = "RESOLVING"
    FORWARDING = "FORWARDING"
    RECOVERING = "RECOVERING"
    RECONNECTING = "RECONNECTING"
    TERMINATED = "TERMINATED"
    FAILED = "FAILED"

    @property
    def is_final(self) -> bool:
        return self in (SessionState.TERMINATED, SessionState.FAILED)


class EventType(Enum):
    """Events a session reports to the control surface."""
    STATUS = "status"
    CREDENTIALS = "credentials"
    DISCONNECTED = "disconnected"
    ERROR = "error"
