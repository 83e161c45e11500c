"""
Extraction Observability

Session-level tracking for vault extraction runs:
1. Sessions (one per run: running -> completed | failed)
2. Events logged during the run (progress_update, retry_attempt, ...)
3. A report summarizing a session for operators

Starting a session must succeed; everything after that is best-effort.
"""

import logging
from collections import Counter
from typing import Optional, Dict, Any, List

from vaultprogress.core.errors import SessionNotFoundError
from vaultprogress.core.schemas import (
    utcnow, ExtractionSession, ExtractionEvent, ExtractionReport, SessionStatus
)
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.reporting import report

logger = logging.getLogger(__name__)

RETRY_EVENT_TYPES = ("retry_attempt", "recovery_attempted")
MIN_POWER_PHRASES = 5


class ExtractionObservability:
    """Session, event and report operations over the record store."""

    def __init__(self, store: ProgressStore):
        self.store = store

    def start_session(self, vault_id: str, user_id: Optional[str] = None,
                      extraction_version: str = "v3",
                      metadata: Optional[Dict[str, Any]] = None) -> ExtractionSession:
        """
        Open a running session.

        Raises whatever the store raises: without a session the run cannot
        be tracked.
        """
        session = self.store.create_session(
            vault_id=vault_id,
            user_id=user_id,
            extraction_version=extraction_version,
            metadata=metadata
        )
        logger.info(f"Started extraction session {session.id} for {vault_id}")
        return session

    def log_event(self, session_id: str, event_type: str,
                  event_data: Optional[Dict[str, Any]] = None) -> Optional[ExtractionEvent]:
        event = report(
            f"log event {event_type}", self.store.insert_event,
            session_id, event_type, event_data
        )
        if event is not None:
            logger.debug(f"Event logged: {event_type} {event_data or {}}")
        return event

    def log_progress(self, session_id: str, pass_name: str, stage: str,
                     percent: int, message: str) -> Optional[ExtractionEvent]:
        return self.log_event(session_id, "progress_update", {
            'pass': pass_name,
            'stage': stage,
            'percent': percent,
            'message': message,
        })

    def end_session(self, session_id: str,
                    status: SessionStatus = SessionStatus.COMPLETED,
                    final_data: Optional[Dict[str, Any]] = None) -> Optional[ExtractionSession]:
        session = report(
            "end session", self.store.finish_session,
            session_id, status, final_data
        )
        if session is None:
            logger.warning(f"Could not end session {session_id}")
        else:
            logger.info(f"Extraction session {session_id} ended: {status.value}")
        return session

    # =========================================================================
    # Reporting
    # =========================================================================

    def generate_report(self, session_id: str) -> ExtractionReport:
        """
        Summarize a session.

        Raises:
            SessionNotFoundError: if no such session exists
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        events = self.store.list_events(session_id)
        errors = self.store.list_errors(session.vault_id, limit=1000)
        session_errors = [e for e in errors if e.session_id in (None, session_id)]

        ended_at = session.ended_at or utcnow()
        duration_ms = max(0, int((ended_at - session.started_at).total_seconds() * 1000))

        event_counts = dict(Counter(e.event_type for e in events))
        retry_count = sum(event_counts.get(t, 0) for t in RETRY_EVENT_TYPES)
        item_counts = session.final_data.get('itemCounts', {}) or {}

        return ExtractionReport(
            session_id=session_id,
            vault_id=session.vault_id,
            status=session.status,
            duration_ms=duration_ms,
            event_counts=event_counts,
            retry_count=retry_count,
            error_count=len(session_errors),
            checkpoint_count=self.store.count_checkpoints(session.vault_id, session_id=session_id),
            item_counts=item_counts,
            recommendations=self._recommendations(session, session_errors, retry_count, item_counts)
        )

    def _recommendations(self, session: ExtractionSession, errors: List,
                         retry_count: int, item_counts: Dict[str, int]) -> List[str]:
        recommendations = []

        if session.status == SessionStatus.FAILED:
            recommendations.append(
                "Extraction failed. Resume from the last checkpoint or re-run the extraction."
            )

        if errors:
            phases = sorted({e.phase for e in errors})
            recommendations.append(
                f"Found {len(errors)} phase errors ({', '.join(phases)}). Check the error log."
            )

        if retry_count > 0:
            recommendations.append(
                f"Extraction needed {retry_count} retries. Consider reviewing the input resume."
            )

        power_phrases = item_counts.get('powerPhrases')
        if power_phrases is not None and power_phrases < MIN_POWER_PHRASES:
            recommendations.append(
                "Low number of power phrases extracted. Resume may need more quantified achievements."
            )

        return recommendations
