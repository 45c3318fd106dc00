import asyncio


class StopSignal:
    """
    Interruptible sleep shared by a session and every poll it starts.

    Setting the signal wakes all pending waits at once, so a manual
    disconnect takes effect even while a session is waiting for a
    replacement jump host or backing off before a reconnect.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if the signal fired."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(timeout, 0))
            return True
        except asyncio.TimeoutError:
            return False
