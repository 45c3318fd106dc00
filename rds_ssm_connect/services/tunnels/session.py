"""
Tunnel Session

One session owns one tunnel: it resolves the jump host and database,
keeps a port forwarding subprocess running on a fixed local port, and
decides after every exit whether to recover (replace a dead jump host),
reconnect (re-resolve and retry), stop, or give up.

    RESOLVING -> FORWARDING -> {RECOVERING, RECONNECTING} -> FORWARDING -> ... -> TERMINATED
    FAILED is reachable from every state.

The local port is chosen before the session starts and never changes;
only the jump host and the database endpoint are re-resolved.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from rds_ssm_connect.core.exceptions import (
    BudgetExhaustedError,
    ResolutionError,
    SessionClosedError,
    SessionEndedError,
    TargetUnreachableError,
    TunnelError,
)
from rds_ssm_connect.core.logging import log_session_transition, tunnel_logger
from rds_ssm_connect.core.utils import StopSignal
from rds_ssm_connect.schemas.connection import ConnectionInfo
from rds_ssm_connect.schemas.project import ProjectDefinition
from rds_ssm_connect.services.aws.command_runner import CommandRunner
from rds_ssm_connect.services.aws.resolver import InfrastructureResolver
from .enums import EventType, SessionState
from .keepalive import start_keepalive
from .process_manager import ProcessManager
from .schemas import RetryPolicy, SessionContext, SessionOutcome

EventCallback = Callable[[str, Dict[str, Any]], None]
KeepaliveFactory = Callable[[int], Callable[[], None]]


def classify_exit(outcome: SessionOutcome, manual_disconnect: bool) -> SessionState:
    """
    Map a forwarding exit to the next state, before retry budgets are applied.

    A manual disconnect always wins. A target-unreachable exit goes to
    RECOVERING. Any other exit, including a clean zero exit, means the
    remote session ended on its own and goes to RECONNECTING.
    """
    if manual_disconnect:
        return SessionState.TERMINATED
    if outcome.target_unreachable:
        return SessionState.RECOVERING
    return SessionState.RECONNECTING


class TunnelSession:
    """
    Supervises the port forwarding tunnel of one connection.

    ``start()`` resolves everything the tunnel needs and returns the
    connection info; forwarding then continues in a background task until
    ``disconnect()`` is called or a retry budget runs out.
    """

    def __init__(
        self,
        connection_id: str,
        project_key: str,
        project: ProjectDefinition,
        profile: str,
        local_port: int,
        resolver: Optional[InfrastructureResolver] = None,
        process_manager: Optional[ProcessManager] = None,
        runner: Optional[CommandRunner] = None,
        policy: Optional[RetryPolicy] = None,
        on_event: Optional[EventCallback] = None,
        keepalive_factory: Optional[KeepaliveFactory] = None,
    ):
        self.project = project
        self.resolver = resolver or InfrastructureResolver(runner)
        self.runner = runner or self.resolver.runner
        self.process_manager = process_manager or ProcessManager()
        self.policy = policy or RetryPolicy()
        self.on_event = on_event
        self.keepalive_factory = keepalive_factory or start_keepalive

        self.context = SessionContext(
            connection_id=connection_id,
            project_key=project_key,
            profile=profile,
            local_port=int(local_port),
        )
        self.state = SessionState.RESOLVING
        self.error: Optional[TunnelError] = None

        self._stop = StopSignal()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def connection_id(self) -> str:
        return self.context.connection_id

    @property
    def local_port(self) -> int:
        return self.context.local_port

    @property
    def connection_info(self) -> Optional[ConnectionInfo]:
        ctx = self.context
        if ctx.username is None:
            return None
        return ConnectionInfo(
            host="127.0.0.1",
            port=str(ctx.local_port),
            username=ctx.username,
            password=ctx.password,
            database=self.project.database,
            rds_endpoint=ctx.rds_endpoint,
            instance_id=ctx.instance_id,
        )

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def start(self) -> ConnectionInfo:
        """
        Resolve credentials and infrastructure, then start forwarding in
        the background.

        Raises:
            ResolutionError: If anything could not be resolved
            ValidationError: If a resolved value is malformed
            SessionClosedError: If disconnect() was called while resolving
        """
        await self._resolve()
        if self.context.manual_disconnect:
            raise SessionClosedError(self.connection_id)
        self._task = asyncio.create_task(
            self._supervise(), name=f"tunnel-{self.connection_id}"
        )
        return self.connection_info

    async def wait_closed(self) -> None:
        """
        Wait until the session reaches TERMINATED or FAILED.

        Raises:
            TunnelError: The error that made the session fail
        """
        if self._task is not None:
            await self._task

    async def disconnect(self) -> None:
        """Stop the session and tear down its subprocess tree."""
        ctx = self.context
        ctx.manual_disconnect = True
        self._stop.set()

        if ctx.process is not None:
            await self.process_manager.kill_tree(ctx.process)

        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        elif not self.state.is_final:
            self._set_state(SessionState.TERMINATED)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _emit(self, event: EventType, **data: Any) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event.value, data)
        except Exception as e:
            tunnel_logger.warning(
                f"Event handler failed for {event.value} on {self.connection_id}: {e}"
            )

    def _emit_credentials(self) -> None:
        info = self.connection_info
        if info is not None:
            self._emit(EventType.CREDENTIALS, connectionInfo=info.model_dump(by_alias=True))

    def _set_state(self, new_state: SessionState, **details: Any) -> None:
        old_state = self.state
        self.state = new_state
        log_session_transition(self.connection_id, old_state.value, new_state.value, details)
        self._emit(EventType.STATUS, state=new_state.value, **details)

    def _fail(self, error: TunnelError) -> None:
        self.error = error
        self._set_state(SessionState.FAILED, error=str(error))
        self._emit(EventType.ERROR, message=str(error))

    async def _resolve(self) -> None:
        ctx = self.context
        project = self.project
        self._emit(EventType.STATUS, state=SessionState.RESOLVING.value)
        try:
            ctx.username, ctx.password = await self.resolver.get_credentials(ctx.profile, project)
            ctx.instance_id = await self.resolver.find_jump_host(
                ctx.profile, project.region, project.bastion_pattern
            )
            ctx.rds_endpoint = await self.resolver.get_database_endpoint(ctx.profile, project)
            ctx.remote_port = await self.resolver.get_database_port(ctx.profile, project)
        except TunnelError as e:
            if not ctx.manual_disconnect:
                self._fail(e)
            raise

        tunnel_logger.info(
            f"Resolved {self.connection_id}: jump host {ctx.instance_id}, "
            f"endpoint {ctx.rds_endpoint}:{ctx.remote_port}, "
            f"local port {ctx.local_port}"
        )
        self._emit_credentials()

    async def _supervise(self) -> None:
        try:
            await self._forward_loop()
        except TunnelError as e:
            self._fail(e)
            raise
        finally:
            if self.context.process is not None:
                await self.process_manager.kill_tree(self.context.process)
                self.context.process = None

    async def _forward_loop(self) -> None:
        ctx = self.context
        while True:
            if ctx.manual_disconnect:
                self._set_state(SessionState.TERMINATED)
                return

            outcome = await self._forward_once()
            next_state = classify_exit(outcome, ctx.manual_disconnect)

            if next_state is SessionState.TERMINATED:
                self._set_state(SessionState.TERMINATED)
                return

            if outcome.established and outcome.duration >= self.policy.stable_session_seconds:
                ctx.reconnect_count = 0
                ctx.recovery_count = 0

            if next_state is SessionState.RECOVERING:
                await self._recover(outcome)
            else:
                await self._reconnect(outcome)

    async def _forward_once(self) -> SessionOutcome:
        """Run one forwarding subprocess until it exits."""
        ctx = self.context
        self._set_state(
            SessionState.FORWARDING,
            instanceId=ctx.instance_id,
            rdsEndpoint=ctx.rds_endpoint,
            localPort=ctx.local_port,
        )
        argv = self.runner.build_forwarding_argv(
            ctx.profile,
            ctx.instance_id,
            ctx.rds_endpoint,
            ctx.remote_port,
            ctx.local_port,
            self.project.region,
        )
        try:
            handle = await self.process_manager.spawn(argv)
        except OSError as e:
            raise ResolutionError("port forwarding command", ctx.profile, str(e))

        ctx.process = handle
        if ctx.manual_disconnect:
            # Disconnect arrived while the process was being spawned
            await self.process_manager.kill_tree(handle)

        stop_keepalive = self.keepalive_factory(ctx.local_port)
        try:
            return await self.process_manager.monitor(handle)
        finally:
            stop_keepalive()
            await self.process_manager.kill_tree(handle)
            ctx.process = None

    async def _recover(self, outcome: SessionOutcome) -> None:
        """Replace the dead jump host and wait for its successor."""
        ctx = self.context
        policy = self.policy
        unreachable = TargetUnreachableError(ctx.instance_id, outcome.stderr)

        if ctx.recovery_count >= policy.max_recovery_attempts:
            raise BudgetExhaustedError("recovery", policy.max_recovery_attempts, unreachable)
        ctx.recovery_count += 1

        old_instance_id = ctx.instance_id
        self._set_state(
            SessionState.RECOVERING,
            attempt=ctx.recovery_count,
            maxAttempts=policy.max_recovery_attempts,
            instanceId=old_instance_id,
        )

        await self.resolver.terminate_jump_host(ctx.profile, old_instance_id, self.project.region)
        if ctx.manual_disconnect:
            return

        new_instance_id = await self.resolver.wait_for_replacement_jump_host(
            ctx.profile,
            old_instance_id,
            self.project.region,
            policy.replacement_max_attempts,
            policy.replacement_poll_interval,
            pattern=self.project.bastion_pattern,
            agent_max_attempts=policy.agent_max_attempts,
            agent_poll_interval=policy.agent_poll_interval,
            stop=self._stop,
        )
        if ctx.manual_disconnect:
            return
        if new_instance_id is None:
            raise BudgetExhaustedError(
                "jump host replacement", policy.replacement_max_attempts, unreachable
            )

        tunnel_logger.info(
            f"Jump host for {self.connection_id} replaced: "
            f"{old_instance_id} -> {new_instance_id}"
        )
        ctx.instance_id = new_instance_id
        self._emit_credentials()

    async def _reconnect(self, outcome: SessionOutcome) -> None:
        """Re-resolve infrastructure and back off before forwarding again."""
        ctx = self.context
        policy = self.policy

        if ctx.reconnect_count >= policy.max_reconnect_attempts:
            raise BudgetExhaustedError(
                "reconnect",
                policy.max_reconnect_attempts,
                SessionEndedError(outcome.returncode, outcome.stderr),
            )
        ctx.reconnect_count += 1

        self._set_state(
            SessionState.RECONNECTING,
            attempt=ctx.reconnect_count,
            maxAttempts=policy.max_reconnect_attempts,
            returncode=outcome.returncode,
        )

        await self._refresh_infrastructure()
        if ctx.manual_disconnect:
            return
        await self._stop.wait(policy.reconnect_backoff)

    async def _refresh_infrastructure(self) -> None:
        """
        Look up jump host and endpoint again; either may have changed
        without a detected crash. A lookup that finds nothing keeps the
        previous value and leaves the decision to the next forwarding attempt.
        """
        ctx = self.context
        project = self.project
        before = (ctx.instance_id, ctx.rds_endpoint)

        try:
            ctx.instance_id = await self.resolver.find_jump_host(
                ctx.profile, project.region, project.bastion_pattern
            )
        except ResolutionError as e:
            tunnel_logger.warning(f"Keeping jump host {ctx.instance_id}: {e}")

        if ctx.manual_disconnect:
            return

        try:
            ctx.rds_endpoint = await self.resolver.get_database_endpoint(ctx.profile, project)
        except ResolutionError as e:
            tunnel_logger.warning(f"Keeping endpoint {ctx.rds_endpoint}: {e}")

        if (ctx.instance_id, ctx.rds_endpoint) != before:
            self._emit_credentials()
