"""
Tunnel Session Management Package

Provides resilient SSM port forwarding sessions: process tree supervision,
the session state machine, keepalive traffic and the connection registry.
"""

from .enums import EventType, SessionState
from .keepalive import KeepaliveTask, start_keepalive
from .process_manager import ForwardingProcess, ProcessManager, sweep_process_registry
from .registry import ConnectionRegistry
from .schemas import RetryPolicy, SessionContext, SessionOutcome
from .session import TunnelSession, classify_exit

__all__ = [
    'ConnectionRegistry',
    'TunnelSession',
    'ProcessManager',
    'ForwardingProcess',
    'KeepaliveTask',
    'SessionState',
    'EventType',
    'RetryPolicy',
    'SessionContext',
    'SessionOutcome',
    'classify_exit',
    'start_keepalive',
    'sweep_process_registry',
]
