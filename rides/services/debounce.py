"""
Asyncio debouncing for keystroke-driven lookups.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs only the last of a burst of calls, after a quiet period.

    A new call supersedes the previous one: a pending call is cancelled,
    never queued behind the new one.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def call(self, func: Callable[[], Awaitable[None]]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.ensure_future(self._run(func))
        return self._task

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def _run(self, func: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)
        try:
            await func()
        except Exception:
            logger.exception("Debounced call failed")
