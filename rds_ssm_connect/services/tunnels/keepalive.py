import asyncio
from typing import Callable, Optional

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.logging import tunnel_logger


class KeepaliveTask:
    """Background task that pokes the local forwarded port so SSM never sees it idle."""

    def __init__(
        self,
        local_port: int,
        interval_seconds: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        host: str = "127.0.0.1",
    ):
        self.local_port = local_port
        self.host = host
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.KEEPALIVE_INTERVAL_SECONDS
        )
        self.connect_timeout = (
            connect_timeout
            if connect_timeout is not None
            else settings.KEEPALIVE_CONNECT_TIMEOUT
        )
        self.probe_count = 0
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def start(self) -> Callable[[], None]:
        """Start the keepalive loop and return the function that stops it."""
        if self._running:
            tunnel_logger.warning(f"Keepalive for port {self.local_port} is already running")
            return self.stop

        self._running = True
        self._task = asyncio.create_task(self._keepalive_loop())
        tunnel_logger.debug(
            f"Started keepalive on port {self.local_port} "
            f"every {self.interval_seconds}s"
        )
        return self.stop

    def stop(self) -> None:
        """Stop the keepalive loop. Safe to call more than once."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        tunnel_logger.debug(f"Stopped keepalive on port {self.local_port}")

    @property
    def running(self) -> bool:
        return self._running

    async def probe(self) -> None:
        """Open and immediately close a connection to the forwarded port."""
        self.probe_count += 1
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.local_port),
                timeout=self.connect_timeout,
            )
            writer.close()
            await writer.wait_closed()
        except (asyncio.TimeoutError, OSError) as e:
            # Traffic is the point, not connectivity
            tunnel_logger.debug(f"Keepalive probe on port {self.local_port} failed: {e}")

    async def _keepalive_loop(self):
        """Main keepalive loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.probe()
            except asyncio.CancelledError:
                break


def start_keepalive(
    local_port: int, interval_seconds: Optional[float] = None
) -> Callable[[], None]:
    """Start a keepalive for ``local_port``; call the returned function to stop it."""
    return KeepaliveTask(local_port, interval_seconds).start()
