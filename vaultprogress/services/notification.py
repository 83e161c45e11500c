"""
Change Notification Service

Push delivery of row changes to interested listeners:
1. Subscribers register for (table, record_id)
2. The store publishes a ChangeEvent after every insert/update
3. Every matching, still-open subscription receives the full new row

Subscriptions are handle objects. Callers must close them (or use them
as context managers) when the owning view goes away; the feed enforces
a maximum number of concurrent subscriptions.
"""

import logging
import threading
from typing import Optional, Dict, List, Callable, Tuple

from vaultprogress.core.config import get_settings
from vaultprogress.core.errors import SubscriptionLimitError
from vaultprogress.core.schemas import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for one registered listener. Release it with close()."""

    def __init__(self, feed: "ChangeFeed", table: str, record_id: str,
                 callback: ChangeCallback):
        self.id: Optional[int] = None
        self.table = table
        self.record_id = record_id
        self._feed = feed
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.record_id)

    def deliver(self, event: ChangeEvent):
        """Invoke the callback unless the handle was closed meanwhile."""
        if not self._active:
            return
        self._callback(event)

    def close(self):
        """Unregister from the feed. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ChangeFeed:
    """
    In-process pub/sub keyed by (table, record_id).

    Thread-safe: publishers run in job threads, subscribers may be
    registered from the API event loop or a client thread.
    """

    def __init__(self, max_subscriptions: Optional[int] = None):
        """
        Initialize the feed.

        Args:
            max_subscriptions: Concurrent subscription cap. Defaults to
                PROGRESS_MAX_SUBSCRIPTIONS.
        """
        if max_subscriptions is None:
            max_subscriptions = get_settings().progress.max_subscriptions
        self.max_subscriptions = max_subscriptions

        self._lock = threading.Lock()
        self._subscriptions: Dict[Tuple[str, str], List[Subscription]] = {}
        self._next_id = 1
        self._active_count = 0

    @property
    def active_count(self) -> int:
        """Number of open subscriptions."""
        with self._lock:
            return self._active_count

    def subscribe(self, table: str, record_id: str,
                  callback: ChangeCallback) -> Subscription:
        """
        Register interest in changes to one record.

        Raises:
            SubscriptionLimitError: if the feed is at capacity.
        """
        subscription = Subscription(self, table, record_id, callback)

        with self._lock:
            if self._active_count >= self.max_subscriptions:
                raise SubscriptionLimitError(self.max_subscriptions)

            subscription.id = self._next_id
            self._next_id += 1
            self._subscriptions.setdefault(subscription.key, []).append(subscription)
            self._active_count += 1

        logger.debug(f"Subscribed #{subscription.id} to {table}/{record_id}")
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every open subscription for its record.

        A failing listener is logged and skipped so it cannot break the
        writer or the other listeners.

        Returns:
            Number of listeners the event was handed to
        """
        with self._lock:
            targets = list(self._subscriptions.get((event.table, event.record_id), []))

        delivered = 0
        for subscription in targets:
            try:
                subscription.deliver(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Listener #{subscription.id} failed on "
                    f"{event.table}/{event.record_id}: {e}"
                )

        return delivered

    def _remove(self, subscription: Subscription):
        with self._lock:
            listeners = self._subscriptions.get(subscription.key, [])
            if subscription in listeners:
                listeners.remove(subscription)
                self._active_count -= 1
            if not listeners:
                self._subscriptions.pop(subscription.key, None)

        logger.debug(f"Closed subscription #{subscription.id}")
