"""
Progress Publisher

Lets a long-running extraction job report its own progress without knowing
who is watching. Every write is best-effort: a failed progress, checkpoint
or error write is logged and dropped, never raised into the job.
"""

import logging
import time
import traceback
from typing import Optional, Dict, Any, Callable, Union

from vaultprogress.core.schemas import ProgressRecord, Checkpoint, ExtractionErrorRecord
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.cancellation import CancellationRegistry
from vaultprogress.services.reporting import report

logger = logging.getLogger(__name__)

COMPLETE_PHASE = "complete"


def clamp_percentage(value: Union[int, float]) -> int:
    """Round and clamp a percentage into [0, 100]."""
    return max(0, min(100, int(round(value))))


class ProgressPublisher:
    """
    Server-side progress reporting for one job.

    The job's vault_id doubles as the progress row key.
    """

    def __init__(
        self,
        vault_id: str,
        store: ProgressStore,
        clock: Callable[[], float] = time.monotonic,
        session_id: Optional[str] = None,
        cancellations: Optional[CancellationRegistry] = None
    ):
        """
        Initialize the publisher and start the job clock.

        Args:
            vault_id: Job identifier
            store: Record store that also notifies subscribers
            clock: Seconds source used for duration_ms
            session_id: Extraction session to tag checkpoints and errors with
            cancellations: Registry consulted by the cancelled property
        """
        self.vault_id = vault_id
        self.store = store
        self.session_id = session_id
        self.cancellations = cancellations
        self._clock = clock
        self._started_at = clock()

    @property
    def elapsed_ms(self) -> int:
        return max(0, int((self._clock() - self._started_at) * 1000))

    @property
    def cancelled(self) -> bool:
        """True once someone has asked this job to stop."""
        if self.cancellations is None:
            return False
        return self.cancellations.is_cancelled(self.vault_id)

    # =========================================================================
    # Progress
    # =========================================================================

    def update_progress(self, phase: str, percentage: Union[int, float], message: str,
                        items_extracted: Optional[int] = None) -> Optional[ProgressRecord]:
        """
        Upsert the job's progress row.

        Returns:
            The stored record, or None if the write failed
        """
        return report(
            "update progress", self._write_progress,
            phase, percentage, message, items_extracted
        )

    def _write_progress(self, phase, percentage, message, items_extracted):
        record = self.store.upsert_progress(
            vault_id=self.vault_id,
            phase=phase,
            percentage=clamp_percentage(percentage),
            message=message,
            items_extracted=items_extracted,
            duration_ms=self.elapsed_ms
        )
        logger.info(f"[{self.vault_id}] {phase} {record.percentage}%: {message}")
        return record

    def complete(self, total_items: int) -> Optional[ProgressRecord]:
        """Terminal success: 100% in the "complete" phase."""
        return self.update_progress(
            COMPLETE_PHASE, 100,
            f"Extraction complete: {total_items} items extracted",
            total_items
        )

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def save_checkpoint(self, phase: str, data: Any,
                        name: Optional[str] = None) -> Optional[Checkpoint]:
        return report(
            "save checkpoint", self.store.insert_checkpoint,
            self.vault_id, phase, data, name=name, session_id=self.session_id
        )

    def load_checkpoint(self, phase: str) -> Any:
        """
        Data of the newest checkpoint for a phase.

        Returns:
            The checkpoint data, or None when the phase has none (or the
            read failed, in which case the phase simply runs again)
        """
        checkpoint = report(
            "load checkpoint", self.store.latest_checkpoint, self.vault_id, phase
        )
        if checkpoint is None:
            return None
        return checkpoint.checkpoint_data

    # =========================================================================
    # Errors
    # =========================================================================

    def log_error(self, phase: str, error: Union[BaseException, str],
                  metadata: Optional[Dict[str, Any]] = None) -> Optional[ExtractionErrorRecord]:
        """Record a phase failure. Does not change the progress row."""
        if isinstance(error, BaseException):
            error_code = type(error).__name__
            error_message = str(error)
            error_stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        else:
            error_code = "error"
            error_message = str(error)
            error_stack = None

        logger.error(f"[{self.vault_id}] Phase '{phase}' failed: {error_message}")

        return report(
            "log error", self.store.insert_error,
            self.vault_id, phase,
            error_code=error_code,
            error_message=error_message,
            error_stack=error_stack,
            metadata=metadata,
            session_id=self.session_id
        )
