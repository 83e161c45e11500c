"""
Cancellation requests for running extraction jobs.

Skipping a stalled job only stops the client from listening. Stopping the
work itself is opt-in: something calls cancel(job_id), and the job checks
is_cancelled() between phases.
"""

import logging
import threading
from typing import Set

logger = logging.getLogger(__name__)


class CancellationRegistry:
    """Thread-safe set of job ids that have been asked to stop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled: Set[str] = set()

    def cancel(self, job_id: str):
        """Ask a job to stop at its next phase boundary."""
        with self._lock:
            self._cancelled.add(job_id)
        logger.info(f"Cancellation requested for job {job_id}")

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._cancelled

    def clear(self, job_id: str):
        """Forget a cancellation, e.g. before the job is started again."""
        with self._lock:
            self._cancelled.discard(job_id)
