"""
Progress Subscriber

Client-side live view of one job's progress row:
1. open() subscribes to the job's change events and reads the current row once
2. Every pushed event overwrites the local state
3. close() tears the subscription down; nothing changes state afterwards

Rows carry a write sequence. An event older than the last one applied is
dropped, so late delivery cannot move the bar backwards. A newer write with
a lower percentage is still applied (last written wins).
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional, List, Dict, Any, Callable

from vaultprogress.core.config import get_settings
from vaultprogress.core.schemas import ChangeEvent, PROGRESS_TABLE
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.notification import ChangeFeed, Subscription
from vaultprogress.services.reporting import report

logger = logging.getLogger(__name__)


@dataclass
class ProgressState:
    """What the progress view renders."""

    vault_id: Optional[str] = None
    phase: str = "initializing"
    progress: int = 0
    message: str = "Initializing extraction..."
    items_extracted: int = 0
    duration_ms: int = 0
    is_complete: bool = False
    error_message: Optional[str] = None
    sequence: Optional[int] = None


class ProgressSubscriber:
    """
    Live, closeable view of one job's ProgressRecord.

    A subscriber without a vault_id is inert. Use it as a context manager
    so the subscription is always released:

        with ProgressSubscriber(store, feed, "vault-123") as sub:
            ...
    """

    def __init__(
        self,
        store: ProgressStore,
        feed: ChangeFeed,
        vault_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        progress_settings = get_settings().progress

        self.store = store
        self.feed = feed
        self._clock = clock
        self._initial_phase = progress_settings.initial_phase
        self._initial_message = progress_settings.initial_message

        self._lock = threading.RLock()
        self._vault_id = vault_id
        self._subscription: Optional[Subscription] = None
        self._listeners: List[Callable[[ProgressState], None]] = []
        self._state = self._initial_state(vault_id)
        self._last_change_at = clock()

    def _initial_state(self, vault_id: Optional[str]) -> ProgressState:
        return ProgressState(
            vault_id=vault_id,
            phase=self._initial_phase,
            message=self._initial_message
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def vault_id(self) -> Optional[str]:
        return self._vault_id

    @property
    def state(self) -> ProgressState:
        """Snapshot of the current state."""
        with self._lock:
            return replace(self._state)

    @property
    def progress(self) -> int:
        return self._state.progress

    @property
    def phase(self) -> str:
        return self._state.phase

    @property
    def message(self) -> str:
        return self._state.message

    @property
    def items_extracted(self) -> int:
        return self._state.items_extracted

    @property
    def is_complete(self) -> bool:
        return self._state.is_complete

    @property
    def error_message(self) -> Optional[str]:
        return self._state.error_message

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    def add_listener(self, callback: Callable[[ProgressState], None]):
        """Call back with a state snapshot after every applied change."""
        self._listeners.append(callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> "ProgressSubscriber":
        """
        Start listening. No-op when inert or already open.

        The subscription is registered before the point read so an update
        written in between is not lost; the sequence check discards the
        read if it turns out older.
        """
        with self._lock:
            if self._vault_id is None or self._subscription is not None:
                return self

            vault_id = self._vault_id
            self._last_change_at = self._clock()
            self._subscription = self.feed.subscribe(
                PROGRESS_TABLE, vault_id, self._on_event
            )

        current = report("initial progress read", self.store.get_progress, vault_id)

        with self._lock:
            if current is not None and self._subscription is not None and self._vault_id == vault_id:
                self._apply(current.dict())

        logger.debug(f"Subscriber opened for {vault_id}")
        return self

    def close(self):
        """Release the subscription. Safe to call more than once."""
        with self._lock:
            subscription = self._subscription
            self._subscription = None

        if subscription is not None:
            subscription.close()
            logger.debug(f"Subscriber closed for {self._vault_id}")

    def set_vault_id(self, vault_id: Optional[str]):
        """Switch to another job: close, reset, and reopen for the new id."""
        if vault_id == self._vault_id and self.is_open:
            return

        self.close()
        with self._lock:
            self._vault_id = vault_id
            self._state = self._initial_state(vault_id)
        self.open()

    def __enter__(self) -> "ProgressSubscriber":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # =========================================================================
    # Updates
    # =========================================================================

    def _on_event(self, event: ChangeEvent):
        with self._lock:
            if self._subscription is None or event.record_id != self._vault_id:
                return
            self._apply(event.record)

    def _apply(self, record: Dict[str, Any]):
        sequence = record.get("sequence")
        last = self._state.sequence
        if sequence is not None and last is not None and sequence < last:
            logger.debug(
                f"Dropping stale update for {self._vault_id}: "
                f"sequence {sequence} < {last}"
            )
            return

        state = self._state
        for field_name, key in (("phase", "phase"), ("progress", "percentage"),
                                ("message", "message"),
                                ("items_extracted", "items_extracted"),
                                ("duration_ms", "duration_ms")):
            if record.get(key) is not None:
                setattr(state, field_name, record[key])
        state.is_complete = state.progress >= 100
        if sequence is not None:
            state.sequence = sequence

        self._last_change_at = self._clock()

        snapshot = replace(state)
        for listener in self._listeners:
            listener(snapshot)

    def report_error(self, message: str):
        """Surface a free-text error (e.g. the job trigger failed)."""
        with self._lock:
            self._state.error_message = message
        logger.warning(f"Progress error for {self._vault_id}: {message}")

    def clear_error(self):
        with self._lock:
            self._state.error_message = None

    # =========================================================================
    # Stall Detection
    # =========================================================================

    def seconds_since_change(self) -> float:
        """Seconds since the last applied update (or since open)."""
        return max(0.0, self._clock() - self._last_change_at)

    def is_stalled(self, timeout_seconds: float) -> bool:
        """True when not complete and nothing has changed for timeout_seconds."""
        if self._vault_id is None or self._state.is_complete:
            return False
        return self.seconds_since_change() >= timeout_seconds

    def touch(self):
        """Restart the stall timer (after a resume was requested)."""
        with self._lock:
            self._last_change_at = self._clock()
