"""Registry of the single live timer task owned by each schedule."""

import asyncio
import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class TimerRegistry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._handles: Dict[int, asyncio.Task] = {}

    def install(self, schedule_id: int, task: asyncio.Task) -> None:
        """Make ``task`` the timer for ``schedule_id``, cancelling whatever it replaces."""
        with self._lock:
            previous = self._handles.get(schedule_id)
            self._handles[schedule_id] = task
        if previous is not None and previous is not task:
            self._cancel_task(previous)

    def cancel(self, schedule_id: int) -> bool:
        """Cancel the timer for ``schedule_id``; returns False if there was none."""
        with self._lock:
            task = self._handles.pop(schedule_id, None)
        if task is None:
            return False
        self._cancel_task(task)
        logger.info("Timer cancelled for schedule %s", schedule_id)
        return True

    def release(self, schedule_id: int, task: asyncio.Task) -> bool:
        """Drop ``task`` from the registry only if it is still the current timer."""
        with self._lock:
            if self._handles.get(schedule_id) is task:
                del self._handles[schedule_id]
                return True
        return False

    def get(self, schedule_id: int) -> Optional[asyncio.Task]:
        with self._lock:
            return self._handles.get(schedule_id)

    def is_armed(self, schedule_id: int) -> bool:
        task = self.get(schedule_id)
        return task is not None and not task.done()

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for task in self._handles.values() if not task.done())

    def cancel_all(self) -> int:
        with self._lock:
            tasks = list(self._handles.values())
            self._handles.clear()
        for task in tasks:
            self._cancel_task(task)
        return len(tasks)

    def _cancel_task(self, task: asyncio.Task) -> None:
        # A timer re-arming its own schedule must not cancel itself mid-flight
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current and not task.done():
            task.cancel()
