import asyncio
from typing import Callable, Optional

DEFAULT_DEBOUNCE_MS = 500


class Debouncer:
    """Runs ``callback`` once ``delay_ms`` have passed since the last ``trigger``.

    Every trigger restarts the timer. Must be triggered from inside a running
    event loop.
    """

    def __init__(self, callback: Callable[[], None], delay_ms: int = DEFAULT_DEBOUNCE_MS):
        self._callback = callback
        self._delay_ms = delay_ms
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.ensure_future(self._delayed())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def flush(self) -> None:
        """Run a pending callback now instead of waiting for the timer."""
        if self.pending:
            self.cancel()
            self._callback()

    async def _delayed(self) -> None:
        await asyncio.sleep(self._delay_ms / 1000)
        self._task = None
        self._callback()
