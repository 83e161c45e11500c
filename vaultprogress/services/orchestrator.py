"""
Extraction Orchestrator

Runs a vault extraction as an ordered list of weighted phases and reports
along the way:
1. initializing (0%)
2. each phase: start/end progress by weight, checkpoint when it finishes
3. complete (100%)

Implements:
- Resume: a phase with a finished checkpoint is skipped when the run resumes
- Partial checkpoints inside a phase, handed back on resume
- Cooperative cancellation between phases
- Fire-and-forget execution in a background thread

The progress row is never set to a failed state; a failed phase is logged
and the row keeps its last value.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable, Tuple

from vaultprogress.core.schemas import SessionStatus
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.cancellation import CancellationRegistry
from vaultprogress.services.observability import ExtractionObservability
from vaultprogress.services.publisher import ProgressPublisher

logger = logging.getLogger(__name__)


# ============================================================================
# Phase Definitions
# ============================================================================

@dataclass
class PhaseContext:
    """Handed to each phase function."""

    publisher: ProgressPublisher
    phase: str
    start_percent: float
    end_percent: float
    items_so_far: int = 0
    resume_data: Any = None

    def report(self, fraction: float, message: str, items: Optional[int] = None):
        """Intra-phase progress; fraction is 0..1 of this phase."""
        fraction = max(0.0, min(1.0, fraction))
        percent = self.start_percent + (self.end_percent - self.start_percent) * fraction
        total = None if items is None else self.items_so_far + items
        self.publisher.update_progress(self.phase, percent, message, total)

    def save_partial(self, data: Any):
        """Checkpoint unfinished work; it comes back as resume_data next run."""
        self.publisher.save_checkpoint(
            self.phase, {'completed': False, 'partial': data}, name="partial"
        )


# phase function: (ctx) -> (items_extracted, checkpoint_data)
PhaseFn = Callable[[PhaseContext], Tuple[int, Any]]


@dataclass
class ExtractionPhase:
    """One named step of an extraction job."""

    name: str
    run: PhaseFn
    weight: float = 1.0
    message: Optional[str] = None


@dataclass
class JobResult:
    """Outcome of one ExtractionJob.run()."""

    vault_id: str
    status: str  # completed, cancelled
    total_items: int = 0
    completed_phases: List[str] = field(default_factory=list)
    skipped_phases: List[str] = field(default_factory=list)
    session_id: Optional[str] = None


# ============================================================================
# Job
# ============================================================================

class ExtractionJob:
    """
    A long-running extraction for one vault.

    The vault_id is the job id: progress, checkpoints and errors are all
    keyed by it, so a second run picks up where the first stopped.
    """

    def __init__(
        self,
        vault_id: str,
        phases: List[ExtractionPhase],
        store: ProgressStore,
        clock: Callable[[], float] = time.monotonic,
        cancellations: Optional[CancellationRegistry] = None,
        observability: Optional[ExtractionObservability] = None,
        user_id: Optional[str] = None
    ):
        if not phases:
            raise ValueError("An extraction job needs at least one phase")

        self.vault_id = vault_id
        self.phases = phases
        self.store = store
        self.clock = clock
        self.cancellations = cancellations
        self.observability = observability
        self.user_id = user_id

    def run(self, resume: bool = False) -> JobResult:
        """
        Run every phase in order.

        Args:
            resume: Pick up from checkpoints: finished phases are skipped and
                partial data is handed back. A fresh run (False) redoes every
                phase and ignores checkpoints left by earlier runs.

        Raises:
            Whatever a phase raises, after logging it to the error log
        """
        session_id = None
        if self.observability is not None:
            session = self.observability.start_session(
                self.vault_id, user_id=self.user_id,
                metadata={'resume': resume, 'phases': [p.name for p in self.phases]}
            )
            session_id = session.id
            if resume:
                self.observability.log_event(session_id, "recovery_attempted", {'vault_id': self.vault_id})

        publisher = ProgressPublisher(
            self.vault_id, self.store,
            clock=self.clock,
            session_id=session_id,
            cancellations=self.cancellations
        )
        result = JobResult(vault_id=self.vault_id, status="completed", session_id=session_id)
        item_counts: Dict[str, int] = {}

        publisher.update_progress("initializing", 0, "Starting extraction...")

        total_weight = sum(p.weight for p in self.phases)
        done_weight = 0.0

        for phase in self.phases:
            if publisher.cancelled:
                logger.info(f"Extraction {self.vault_id} cancelled before '{phase.name}'")
                result.status = "cancelled"
                self._end_session(session_id, SessionStatus.FAILED,
                                  {'cancelled': True, 'itemCounts': item_counts})
                return result

            start_percent = done_weight / total_weight * 100
            end_percent = (done_weight + phase.weight) / total_weight * 100
            checkpoint = publisher.load_checkpoint(phase.name) if resume else None

            if isinstance(checkpoint, dict) and checkpoint.get('completed'):
                items = int(checkpoint.get('items', 0))
                result.total_items += items
                item_counts[phase.name] = items
                result.skipped_phases.append(phase.name)
                done_weight += phase.weight
                publisher.update_progress(
                    phase.name, end_percent,
                    f"Already done: {phase.name}", result.total_items
                )
                self._log_event(session_id, "phase_skipped", {'phase': phase.name, 'items': items})
                continue

            ctx = PhaseContext(
                publisher=publisher,
                phase=phase.name,
                start_percent=start_percent,
                end_percent=end_percent,
                items_so_far=result.total_items,
                resume_data=checkpoint.get('partial') if isinstance(checkpoint, dict) else None
            )
            publisher.update_progress(
                phase.name, start_percent,
                phase.message or f"Running {phase.name}...",
                result.total_items
            )

            try:
                items, data = phase.run(ctx)
            except Exception as e:
                publisher.log_error(phase.name, e, {'percent': round(start_percent)})
                self._end_session(session_id, SessionStatus.FAILED, {'itemCounts': item_counts})
                raise

            result.total_items += items
            item_counts[phase.name] = items
            result.completed_phases.append(phase.name)
            done_weight += phase.weight

            publisher.save_checkpoint(
                phase.name, {'completed': True, 'items': items, 'result': data}, name="completed"
            )
            publisher.update_progress(
                phase.name, end_percent,
                f"Finished {phase.name}: {items} items",
                result.total_items
            )
            self._log_event(session_id, "phase_completed", {'phase': phase.name, 'items': items})

        publisher.complete(result.total_items)
        self._end_session(session_id, SessionStatus.COMPLETED,
                          {'itemCounts': item_counts, 'totalItems': result.total_items})
        return result

    def _log_event(self, session_id, event_type, data):
        if self.observability is not None and session_id:
            self.observability.log_event(session_id, event_type, data)

    def _end_session(self, session_id, status, final_data):
        if self.observability is not None and session_id:
            self.observability.end_session(session_id, status, final_data)


# ============================================================================
# Background Runner
# ============================================================================

class ExtractionJobRunner:
    """
    Starts jobs in background threads and returns immediately.

    Instances are callables with the trigger signature (vault_id, resume),
    so one can be handed straight to the recovery controller.
    """

    def __init__(self, job_factory: Callable[[str], ExtractionJob]):
        """
        Args:
            job_factory: Builds the job for a vault_id
        """
        self.job_factory = job_factory
        self._threads: Dict[str, threading.Thread] = {}
        self._results: Dict[str, JobResult] = {}
        self._lock = threading.Lock()

    def __call__(self, vault_id: str, resume: bool = False) -> threading.Thread:
        return self.start(vault_id, resume=resume)

    def start(self, vault_id: str, resume: bool = False) -> threading.Thread:
        """Run the vault's job in a daemon thread (fire-and-forget)."""
        job = self.job_factory(vault_id)
        thread = threading.Thread(
            target=self._run, args=(job, resume),
            name=f"extraction-{vault_id}", daemon=True
        )
        with self._lock:
            self._threads[vault_id] = thread
            self._results.pop(vault_id, None)
        thread.start()
        logger.info(f"Started extraction job for {vault_id} (resume={resume})")
        return thread

    def _run(self, job: ExtractionJob, resume: bool):
        try:
            result = job.run(resume=resume)
        except Exception as e:
            # Already in the error log; nothing above this thread to raise into
            logger.error(f"Extraction job {job.vault_id} stopped: {e}")
            return
        with self._lock:
            self._results[job.vault_id] = result

    @property
    def tracked_count(self) -> int:
        """Jobs started but not yet collected by join()."""
        with self._lock:
            return len(self._threads)

    def join(self, vault_id: str, timeout: Optional[float] = None) -> Optional[JobResult]:
        """
        Wait for a started job; returns its result if it finished cleanly.

        A finished job is forgotten once joined. On timeout it stays tracked
        and None is returned.
        """
        with self._lock:
            thread = self._threads.get(vault_id)
        if thread is None:
            return None

        thread.join(timeout)
        if thread.is_alive():
            return None

        with self._lock:
            if self._threads.get(vault_id) is thread:
                del self._threads[vault_id]
            return self._results.pop(vault_id, None)
