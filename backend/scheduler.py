"""Deadline timers keyed by session/poll id."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class DeadlineScheduler:
    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def arm(self, key: str, delay: float, callback: Callback):
        """Run ``callback`` after ``delay`` seconds, replacing any pending timer for ``key``."""
        self.cancel(key)
        self._tasks[key] = asyncio.create_task(self._fire(key, delay, callback))
        logger.debug("Timer armed: %s (%.1fs)", key, delay)

    async def _fire(self, key: str, delay: float, callback: Callback):
        try:
            await asyncio.sleep(max(0.0, delay))
        except asyncio.CancelledError:
            return
        # Unregister before running so the callback can cancel its own key safely
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        logger.info("Timer fired: %s", key)
        try:
            await callback()
        except Exception:
            logger.exception("Timer callback failed for %s", key)

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("Timer cancelled: %s", key)
        return True

    def is_armed(self, key: str) -> bool:
        return key in self._tasks

    def pending(self) -> list:
        return list(self._tasks)

    def shutdown(self):
        for key in list(self._tasks):
            self.cancel(key)
