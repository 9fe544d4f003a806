import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional

from hookscheduler.core.config import get_settings

logger = logging.getLogger(__name__)


class Subscription:
    """One live viewer of an owner's schedule events."""

    def __init__(self, owner_id: str, max_queue_size: int) -> None:
        self.owner_id = owner_id
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Wait for the next message; returns None when ``timeout`` expires first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class NotificationBroadcaster:
    """Owner-scoped, best-effort fan-out of schedule events to live subscribers."""

    def __init__(self, max_queue_size: Optional[int] = None) -> None:
        self.max_queue_size = max_queue_size or get_settings().sse_queue_size
        self._lock = threading.RLock()
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, owner_id: str) -> Subscription:
        subscription = Subscription(owner_id, self.max_queue_size)
        with self._lock:
            self._subscribers[owner_id].append(subscription)
            total = len(self._subscribers[owner_id])
        logger.info("Subscriber connected for owner %s (%d total)", owner_id, total)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        with self._lock:
            subscribers = self._subscribers.get(subscription.owner_id)
            if subscribers and subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.owner_id, None)
        logger.info("Subscriber disconnected for owner %s", subscription.owner_id)

    def subscriber_count(self, owner_id: Optional[str] = None) -> int:
        with self._lock:
            if owner_id is not None:
                return len(self._subscribers.get(owner_id, []))
            return sum(len(subs) for subs in self._subscribers.values())

    async def publish(self, owner_id: str, message: Dict[str, Any]) -> int:
        """Deliver ``message`` to the owner's live subscribers; returns how many got it."""
        with self._lock:
            subscribers = list(self._subscribers.get(owner_id, []))
        if not subscribers:
            return 0

        delivered = 0
        dead: List[Subscription] = []
        for subscription in subscribers:
            if subscription.closed:
                dead.append(subscription)
                continue
            try:
                subscription.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping event for slow subscriber of owner %s", owner_id)

        if dead:
            with self._lock:
                remaining = [s for s in self._subscribers.get(owner_id, []) if s not in dead]
                if remaining:
                    self._subscribers[owner_id] = remaining
                else:
                    self._subscribers.pop(owner_id, None)
        return delivered

    def close_all(self) -> None:
        with self._lock:
            for subscribers in self._subscribers.values():
                for subscription in subscribers:
                    subscription.close()
            self._subscribers.clear()


broadcaster = NotificationBroadcaster()
