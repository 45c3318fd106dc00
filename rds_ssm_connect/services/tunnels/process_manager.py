"""
Process Manager for Port Forwarding Sessions

Handles creation, monitoring, and termination of the forwarding subprocess
tree (identity wrapper -> AWS CLI -> session-manager-plugin).
Operates independently of session state for better separation of concerns.
"""

import asyncio
import os
import signal
import subprocess
import time
import weakref
from collections import deque
from typing import Callable, Deque, List, Optional, Sequence

import psutil

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.logging import tunnel_logger
from .schemas import SessionOutcome

# stdout line printed by session-manager-plugin once the local listener is up
SESSION_STARTED_MARKERS = ("Waiting for connections",)

# stderr text reported when the target instance is gone or its agent is down
TARGET_UNREACHABLE_MARKERS = ("TargetNotConnected", "is not connected")

# stderr lines kept per process for marker matching and error messages
STDERR_TAIL_LINES = 200

SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)

# Weak references only; the spawning session owns each process.
_process_registry: "weakref.WeakSet[ForwardingProcess]" = weakref.WeakSet()


def is_target_unreachable(returncode: Optional[int], stderr: str) -> bool:
    """True when a non-zero exit carries one of the target-unreachable markers."""
    if not returncode:
        return False
    return any(marker in stderr for marker in TARGET_UNREACHABLE_MARKERS)


class ForwardingProcess:
    """Handle of one running forwarding subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self.process = process
        self.pid = process.pid
        self.established = False
        self.torn_down = False
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr_tail)

    def __repr__(self) -> str:
        return f"<ForwardingProcess pid={self.pid} alive={self.is_alive}>"


class ProcessManager:
    """
    Manages the port forwarding subprocess of a session.

    This class is responsible for:
    - Spawning the forwarding command in its own process group
    - Watching its output for the session-started and target-unreachable markers
    - Tearing down the whole process tree
    """

    def __init__(self, kill_grace_seconds: Optional[float] = None):
        self.kill_grace_seconds = (
            kill_grace_seconds
            if kill_grace_seconds is not None
            else settings.KILL_GRACE_SECONDS
        )

    async def spawn(self, argv: Sequence[str]) -> ForwardingProcess:
        """
        Start the forwarding command detached into a new process group.

        Raises:
            OSError: If the command cannot be started
        """
        tunnel_logger.debug(f"Forwarding command: {' '.join(argv)}")

        kwargs = {}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
        handle = ForwardingProcess(process)
        _process_registry.add(handle)

        tunnel_logger.info(f"Forwarding process started with PID: {process.pid}")
        return handle

    async def _pump(self, stream: Optional[asyncio.StreamReader], on_line: Callable[[str], None]):
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; skip it
                continue
            if not line:
                break
            on_line(line.decode(errors="replace"))

    async def monitor(self, handle: ForwardingProcess) -> SessionOutcome:
        """
        Follow the process output until it exits and classify the result.

        Returns:
            SessionOutcome with the exit code, the stderr tail, whether the
            session was established and whether the target was unreachable
        """
        started = time.monotonic()

        def on_stdout(line: str) -> None:
            text = line.strip()
            if text:
                tunnel_logger.debug(f"[{handle.pid}] {text}")
            if not handle.established and any(m in line for m in SESSION_STARTED_MARKERS):
                handle.established = True
                tunnel_logger.info(f"Port forwarding session established (PID: {handle.pid})")

        def on_stderr(line: str) -> None:
            handle._stderr_tail.append(line)
            text = line.strip()
            if text:
                tunnel_logger.warning(f"[{handle.pid}] {text}")

        await asyncio.gather(
            self._pump(handle.process.stdout, on_stdout),
            self._pump(handle.process.stderr, on_stderr),
        )
        returncode = await handle.process.wait()

        stderr = handle.stderr_text
        outcome = SessionOutcome(
            returncode=returncode,
            stderr=stderr,
            established=handle.established,
            target_unreachable=is_target_unreachable(returncode, stderr),
            duration=time.monotonic() - started,
        )
        tunnel_logger.info(
            f"Forwarding process {handle.pid} exited: returncode={returncode}, "
            f"established={outcome.established}, "
            f"target_unreachable={outcome.target_unreachable}"
        )
        return outcome

    def _snapshot_descendants(self, pid: int) -> List[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []

    def _signal_group(self, pid: int, sig: int) -> None:
        if not hasattr(os, "killpg"):
            return
        try:
            os.killpg(pid, sig)
            tunnel_logger.debug(f"Sent {signal.Signals(sig).name} to process group {pid}")
        except (ProcessLookupError, PermissionError):
            pass

    def _signal_root(self, handle: ForwardingProcess, sig: int) -> None:
        if not handle.is_alive:
            return
        try:
            handle.process.send_signal(sig)
        except ProcessLookupError:
            pass

    async def kill_tree(self, handle: ForwardingProcess) -> None:
        """
        Tear down the forwarding process and every descendant.

        The identity wrapper, the AWS CLI and session-manager-plugin do not
        always stay in the spawned process group, so three strategies are
        applied in order:

        1. SIGTERM the whole process group of the root process.
        2. SIGTERM every descendant individually. Descendants are
           enumerated before step 1, while the root is still alive to
           link them.
        3. After a grace period, SIGKILL whatever is still alive.

        Idempotent, and never raises for processes that are already gone.
        """
        if handle.torn_down:
            return
        handle.torn_down = True

        pid = handle.pid
        grace = self.kill_grace_seconds
        descendants = self._snapshot_descendants(pid) if handle.is_alive else []

        # Strategy 1: process group
        self._signal_group(pid, signal.SIGTERM)
        self._signal_root(handle, signal.SIGTERM)

        # Strategy 2: individual descendants
        for proc in descendants:
            try:
                proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        # Strategy 3: escalate after the grace period
        async def reap_root() -> None:
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                tunnel_logger.warning(f"Process {pid} ignored SIGTERM, killing")
                self._signal_group(pid, SIGKILL)
                self._signal_root(handle, SIGKILL)
                try:
                    await asyncio.wait_for(handle.process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    tunnel_logger.error(f"Process {pid} survived SIGKILL")

        async def reap_descendants() -> None:
            if not descendants:
                return
            _, alive = await asyncio.to_thread(psutil.wait_procs, descendants, timeout=grace)
            for proc in alive:
                try:
                    proc.kill()
                    tunnel_logger.warning(f"Descendant {proc.pid} of {pid} force killed")
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    pass

        await asyncio.gather(reap_root(), reap_descendants())

        _process_registry.discard(handle)
        tunnel_logger.info(
            f"Process tree of {pid} torn down ({len(descendants)} descendants)"
        )

    def get_tracked_processes(self) -> List[ForwardingProcess]:
        """Get list of all live registered forwarding processes."""
        return [h for h in list(_process_registry) if h.is_alive]


def sweep_process_registry() -> int:
    """
    Last-resort synchronous sweep for interpreter exit: SIGKILL every
    registered process tree that is still alive.
    """
    swept = 0
    for handle in list(_process_registry):
        if handle.torn_down or not handle.is_alive:
            continue
        try:
            targets = psutil.Process(handle.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            targets = []
        if hasattr(os, "killpg"):
            try:
                os.killpg(handle.pid, SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        for proc in targets:
            try:
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        try:
            os.kill(handle.pid, SIGKILL)
        except (ProcessLookupError, PermissionError, OSError):
            pass
        handle.torn_down = True
        swept += 1
    return swept
