"""
Connection Registry

Owns every running TunnelSession of the process, keyed by connection id.
Enforces exclusive ownership of local ports at connect time and fans
session events out to subscribers (the WebSocket event stream).
"""

import asyncio
import inspect
import signal
import socket
import uuid
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from rds_ssm_connect.core.exceptions import PortConflictError
from rds_ssm_connect.core.logging import tunnel_logger
from rds_ssm_connect.core.security import validate_port, validate_profile
from rds_ssm_connect.schemas.connection import ActiveConnection, ConnectionInfo
from rds_ssm_connect.services.aws.resolver import InfrastructureResolver
from rds_ssm_connect.services.projects import get_local_port, get_project
from .enums import EventType
from .process_manager import ProcessManager
from .schemas import RetryPolicy
from .session import TunnelSession

EventSubscriber = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check that nothing is listening on ``host:port`` by binding to it."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((host, port))
        return True
    except OSError:
        return False


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:8]}"


class ConnectionRegistry:
    """
    Registry of active tunnel sessions.

    This class is responsible for:
    1. Rejecting local ports that are claimed or not free (never renumbering)
    2. Starting one TunnelSession per connection
    3. Disconnecting one or all sessions
    4. Publishing session events to subscribers
    """

    def __init__(
        self,
        resolver: Optional[InfrastructureResolver] = None,
        process_manager: Optional[ProcessManager] = None,
        config_path: Optional[str] = None,
        session_factory: Callable[..., TunnelSession] = TunnelSession,
    ):
        self.resolver = resolver or InfrastructureResolver()
        self.process_manager = process_manager or ProcessManager()
        self.config_path = config_path
        self.session_factory = session_factory

        self._sessions: Dict[str, TunnelSession] = {}
        self._claimed_ports: Set[int] = set()
        self._lock = asyncio.Semaphore(1)
        self._subscribers: List[EventSubscriber] = []
        self._pending_deliveries: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """Register an event subscriber; returns the function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def _publish(self, connection_id: str, event: str, data: Dict[str, Any]) -> None:
        payload = {
            "type": "event",
            "event": event,
            "connectionId": connection_id,
            "timestamp": datetime.utcnow().isoformat(),
            **data,
        }
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(payload)
            except Exception as e:
                tunnel_logger.warning(f"Event subscriber failed for {connection_id}: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending_deliveries.add(task)
                task.add_done_callback(self._pending_deliveries.discard)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def _claim_port(self, port: int) -> None:
        async with self._lock:
            if port in self._claimed_ports:
                raise PortConflictError(port, "already used by another connection")
            if not is_port_free(port):
                raise PortConflictError(port, "in use by another process")
            self._claimed_ports.add(port)

    def _release_port(self, port: int) -> None:
        self._claimed_ports.discard(port)
        tunnel_logger.debug(f"Released local port {port}")

    async def connect(
        self,
        project_key: str,
        profile: str,
        local_port: Optional[Union[int, str]] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> Tuple[str, ConnectionInfo]:
        """
        Open a tunnel for a project and profile.

        Args:
            project_key: Key of the project definition
            profile: Identity profile to run commands under
            local_port: Explicit local port; derived from the profile's
                environment suffix when omitted
            policy: Retry policy override

        Returns:
            Tuple of (connection_id, connection_info)

        Raises:
            UnknownProjectError: No such project
            ValidationError: Malformed profile or port
            PortConflictError: Port claimed by another connection or not free
            ResolutionError: Infrastructure could not be resolved
            SessionClosedError: Disconnected before resolution finished
        """
        project = get_project(project_key, self.config_path)
        validate_profile(profile)
        if local_port is None:
            local_port = get_local_port(profile, project)
        port = validate_port(local_port, "localPort")

        await self._claim_port(port)

        connection_id = new_connection_id()
        tunnel_logger.info(
            f"Connecting {connection_id}: project {project_key}, "
            f"profile {profile}, local port {port}"
        )
        session = self.session_factory(
            connection_id,
            project_key,
            project,
            profile,
            port,
            resolver=self.resolver,
            process_manager=self.process_manager,
            policy=policy,
            on_event=partial(self._publish, connection_id),
        )

        # Registered before resolving so disconnect_all() can reach it
        self._sessions[connection_id] = session
        try:
            connection_info = await session.start()
        except BaseException:
            self._sessions.pop(connection_id, None)
            self._release_port(port)
            raise

        session.task.add_done_callback(partial(self._on_session_done, connection_id))
        return connection_id, connection_info

    def _on_session_done(self, connection_id: str, task: asyncio.Task) -> None:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        self._release_port(session.local_port)

        if task.cancelled():
            reason = "cancelled"
        elif task.exception() is not None:
            reason = str(task.exception())
            tunnel_logger.error(f"Connection {connection_id} failed: {reason}")
        else:
            reason = "disconnected"
            tunnel_logger.info(f"Connection {connection_id} closed")

        self._publish(
            connection_id,
            EventType.DISCONNECTED.value,
            {"state": session.state.value, "reason": reason},
        )

    async def disconnect(self, connection_id: str) -> bool:
        """
        Disconnect one connection.

        Returns:
            False if no such connection exists
        """
        session = self.get(connection_id)
        if session is None:
            tunnel_logger.warning(f"Disconnect requested for unknown connection {connection_id}")
            return False

        tunnel_logger.info(f"Disconnecting {connection_id}")
        await session.disconnect()
        return True

    async def disconnect_all(self) -> int:
        """
        Disconnect every connection concurrently.

        Returns:
            Number of connections that were disconnected
        """
        sessions = list(self._sessions.values())
        if not sessions:
            return 0

        tunnel_logger.info(f"Disconnecting all {len(sessions)} connections")
        results = await asyncio.gather(
            *(session.disconnect() for session in sessions), return_exceptions=True
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                tunnel_logger.error(
                    f"Error disconnecting {session.connection_id}: {result}"
                )
        return len(sessions)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get(self, connection_id: str) -> Optional[TunnelSession]:
        return self._sessions.get(connection_id)

    def _describe(self, session: TunnelSession) -> ActiveConnection:
        return ActiveConnection(
            connection_id=session.connection_id,
            project_key=session.context.project_key,
            profile=session.context.profile,
            state=session.state.value,
            connection_info=session.connection_info,
        )

    def describe(self, connection_id: str) -> Optional[ActiveConnection]:
        """Snapshot of one connection, or None if it does not exist."""
        session = self.get(connection_id)
        return self._describe(session) if session is not None else None

    def status(self) -> List[ActiveConnection]:
        """Snapshot of every connection, including those still resolving."""
        return [self._describe(session) for session in self._sessions.values()]

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    @property
    def claimed_ports(self) -> Set[int]:
        return set(self._claimed_ports)

    # ------------------------------------------------------------------
    # Process-wide shutdown
    # ------------------------------------------------------------------

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Disconnect everything on SIGINT/SIGTERM before the loop stops."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig, lambda s=sig: asyncio.ensure_future(self._graceful_shutdown(s, loop))
                )
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support signal handlers
                tunnel_logger.debug(f"Signal handler for {sig} not supported on this platform")

    async def _graceful_shutdown(self, sig: signal.Signals, loop: asyncio.AbstractEventLoop) -> None:
        tunnel_logger.info(f"Received signal {sig.name}, closing all connections")
        try:
            await self.disconnect_all()
        finally:
            loop.stop()
