"""
Recovery

When a job's progress stops moving (or an error surfaces) the client gets
exactly two choices:

- Resume: re-invoke the job. It reloads its checkpoints and skips the
  phases that already finished.
- Skip: stop listening and go to the fallback view. The progress row keeps
  its last state; the job keeps running unless cancel_on_skip is set.

Nothing here retries on its own. Both actions are user-initiated.
"""

import logging
from typing import Optional, Callable, Any

from vaultprogress.core.config import get_settings
from vaultprogress.core.schemas import RecoveryAction, RecoveryPrompt
from vaultprogress.services.cancellation import CancellationRegistry
from vaultprogress.services.subscriber import ProgressSubscriber

logger = logging.getLogger(__name__)

# trigger(vault_id, resume=True)
JobTrigger = Callable[..., Any]


class RecoveryController:
    """Decides when to offer Resume/Skip for one subscriber and carries them out."""

    def __init__(
        self,
        subscriber: ProgressSubscriber,
        trigger: JobTrigger,
        stall_timeout: Optional[float] = None,
        fallback_route: Optional[str] = None,
        cancellations: Optional[CancellationRegistry] = None,
        cancel_on_skip: bool = False
    ):
        """
        Initialize the controller.

        Args:
            subscriber: The open progress view being watched
            trigger: Callable that re-invokes the job
            stall_timeout: Seconds without change before offering recovery
            fallback_route: Where Skip sends the user
            cancellations: Registry used when cancel_on_skip is set, and
                cleared before a resume
            cancel_on_skip: Also ask the job to stop when the user skips
        """
        progress_settings = get_settings().progress

        self.subscriber = subscriber
        self.trigger = trigger
        self.stall_timeout = (
            stall_timeout if stall_timeout is not None
            else progress_settings.stall_timeout_seconds
        )
        self.fallback_route = fallback_route or progress_settings.fallback_route
        self.cancellations = cancellations
        self.cancel_on_skip = cancel_on_skip
        self.resume_count = 0

    def check(self) -> Optional[RecoveryPrompt]:
        """
        Prompt to show, or None while the job looks healthy.

        An explicit error wins over a stall.
        """
        vault_id = self.subscriber.vault_id
        if vault_id is None or self.subscriber.is_complete:
            return None

        state = self.subscriber.state

        if state.error_message:
            return RecoveryPrompt(
                vault_id=vault_id,
                reason="error",
                error_message=state.error_message,
                stalled_for_seconds=self.subscriber.seconds_since_change(),
                last_phase=state.phase,
                last_progress=state.progress
            )

        if self.subscriber.is_stalled(self.stall_timeout):
            return RecoveryPrompt(
                vault_id=vault_id,
                reason="stalled",
                stalled_for_seconds=self.subscriber.seconds_since_change(),
                last_phase=state.phase,
                last_progress=state.progress
            )

        return None

    def choose(self, action: RecoveryAction):
        """Carry out the user's choice."""
        if action == RecoveryAction.RESUME:
            return self.resume()
        if action == RecoveryAction.SKIP:
            return self.skip()
        raise ValueError(f"Unknown recovery action: {action}")

    def resume(self) -> bool:
        """
        Re-invoke the job for the watched vault_id.

        Returns:
            True if the trigger call went through. On failure the error is
            shown through the subscriber's error_message.
        """
        vault_id = self.subscriber.vault_id
        if vault_id is None:
            return False

        if self.cancellations is not None:
            self.cancellations.clear(vault_id)

        self.subscriber.clear_error()
        self.subscriber.touch()
        self.resume_count += 1
        logger.info(f"Resuming extraction for {vault_id} (attempt {self.resume_count})")

        try:
            self.trigger(vault_id, resume=True)
        except Exception as e:
            logger.error(f"Resume failed for {vault_id}: {e}")
            self.subscriber.report_error(str(e))
            return False

        return True

    def skip(self) -> str:
        """
        Stop waiting on the job.

        Returns:
            The fallback route to send the user to
        """
        vault_id = self.subscriber.vault_id
        self.subscriber.close()

        if self.cancel_on_skip and self.cancellations is not None and vault_id:
            self.cancellations.cancel(vault_id)

        logger.info(f"Skipped waiting on extraction {vault_id}")
        return self.fallback_route
