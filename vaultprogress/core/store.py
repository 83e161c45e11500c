"""
Record store for extraction tracking.

Wraps a SQLAlchemy session factory and offers the handful of operations the
progress subsystem needs: upsert/point-read of progress rows, append-only
checkpoints and errors, and session/event bookkeeping. Every progress,
checkpoint and error write is published to the injected change feed after
the transaction commits.

Usage:
    from vaultprogress.core.store import ProgressStore
    from vaultprogress.services.notification import ChangeFeed

    feed = ChangeFeed()
    store = ProgressStore.from_url("sqlite://", feed=feed)
"""

import logging
import threading
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from .config import get_settings
from .database import (
    ExtractionProgress, ExtractionCheckpoint, ExtractionErrorLog,
    ExtractionSessionRow, ExtractionEventRow,
    create_db_engine, create_session_factory
)
from .schemas import (
    utcnow, ProgressRecord, Checkpoint, ExtractionErrorRecord,
    ExtractionSession, ExtractionEvent, ChangeEvent, ChangeType,
    SessionStatus, PROGRESS_TABLE, CHECKPOINTS_TABLE, ERRORS_TABLE
)

logger = logging.getLogger(__name__)


class ProgressStore:
    """
    Persistence for progress records, checkpoints, errors and sessions.

    The feed is any object with a publish(ChangeEvent) method; pass None
    to store without notifying anyone.
    """

    def __init__(self, session_factory: sessionmaker, feed=None,
                 now: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self.feed = feed
        self._now = now
        # Serializes read-modify-write on progress rows within this process
        self._write_lock = threading.Lock()

    @classmethod
    def from_url(cls, url: Optional[str] = None, feed=None,
                 now: Callable[[], datetime] = utcnow) -> "ProgressStore":
        """Build a store (and its tables) from a database URL."""
        db_settings = get_settings().database
        engine = create_db_engine(url or db_settings.url, echo=db_settings.echo)
        return cls(create_session_factory(engine), feed=feed, now=now)

    def _publish(self, table: str, change_type: ChangeType, record_id: str,
                 record: Dict[str, Any]):
        if self.feed is None:
            return
        self.feed.publish(ChangeEvent(
            table=table,
            change_type=change_type,
            record_id=record_id,
            record=record
        ))

    # =========================================================================
    # Progress
    # =========================================================================

    def upsert_progress(self, vault_id: str, phase: str, percentage: int,
                        message: str, items_extracted: Optional[int] = None,
                        duration_ms: int = 0) -> ProgressRecord:
        """
        Insert or update the progress row for a job.

        items_extracted=None keeps the stored count (0 for a new row).
        The row's sequence is bumped on every call.
        """
        with self._write_lock:
            with self._session_factory() as session:
                row = session.query(ExtractionProgress).filter_by(vault_id=vault_id).one_or_none()
                now = self._now()

                if row is None:
                    change_type = ChangeType.INSERT
                    row = ExtractionProgress(
                        vault_id=vault_id,
                        items_extracted=0,
                        sequence=0,
                        created_at=now
                    )
                    session.add(row)
                else:
                    change_type = ChangeType.UPDATE

                row.phase = phase
                row.percentage = percentage
                row.message = message
                if items_extracted is not None:
                    row.items_extracted = items_extracted
                row.duration_ms = duration_ms
                row.sequence = (row.sequence or 0) + 1
                row.updated_at = now

                session.commit()
                data = row.to_dict()

        self._publish(PROGRESS_TABLE, change_type, vault_id, data)
        return ProgressRecord(**data)

    def get_progress(self, vault_id: str) -> Optional[ProgressRecord]:
        """Point read of a job's current progress. None if never written."""
        with self._session_factory() as session:
            row = session.query(ExtractionProgress).filter_by(vault_id=vault_id).one_or_none()
            if row is None:
                return None
            return ProgressRecord(**row.to_dict())

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def insert_checkpoint(self, vault_id: str, phase: str, data: Any,
                          name: Optional[str] = None,
                          session_id: Optional[str] = None) -> Checkpoint:
        """Append a checkpoint row."""
        with self._session_factory() as session:
            row = ExtractionCheckpoint(
                vault_id=vault_id,
                phase=phase,
                checkpoint_name=name,
                checkpoint_data=data,
                session_id=session_id,
                created_at=self._now()
            )
            session.add(row)
            session.commit()
            record = row.to_dict()

        self._publish(CHECKPOINTS_TABLE, ChangeType.INSERT, vault_id, record)
        return Checkpoint(**record)

    def latest_checkpoint(self, vault_id: str, phase: str) -> Optional[Checkpoint]:
        """Most recently created checkpoint for (vault_id, phase)."""
        with self._session_factory() as session:
            row = (
                session.query(ExtractionCheckpoint)
                .filter_by(vault_id=vault_id, phase=phase)
                .order_by(ExtractionCheckpoint.created_at.desc())
                .first()
            )
            if row is None:
                return None
            return Checkpoint(**row.to_dict())

    def count_checkpoints(self, vault_id: str, session_id: Optional[str] = None) -> int:
        """Checkpoints for a job, only those tagged with session_id when given."""
        with self._session_factory() as session:
            query = (
                session.query(func.count(ExtractionCheckpoint.id))
                .filter(ExtractionCheckpoint.vault_id == vault_id)
            )
            if session_id is not None:
                query = query.filter(ExtractionCheckpoint.session_id == session_id)
            return query.scalar() or 0

    # =========================================================================
    # Errors
    # =========================================================================

    def insert_error(self, vault_id: str, phase: str,
                     error_code: Optional[str] = None,
                     error_message: Optional[str] = None,
                     error_stack: Optional[str] = None,
                     metadata: Optional[Dict[str, Any]] = None,
                     session_id: Optional[str] = None) -> ExtractionErrorRecord:
        """Append an error row."""
        with self._session_factory() as session:
            row = ExtractionErrorLog(
                vault_id=vault_id,
                phase=phase,
                error_code=error_code,
                error_message=error_message,
                error_stack=error_stack,
                error_metadata=metadata or {},
                session_id=session_id,
                created_at=self._now()
            )
            session.add(row)
            session.commit()
            record = row.to_dict()

        self._publish(ERRORS_TABLE, ChangeType.INSERT, vault_id, record)
        return ExtractionErrorRecord(**record)

    def list_errors(self, vault_id: str, limit: int = 50) -> List[ExtractionErrorRecord]:
        """Errors for a job, newest first."""
        with self._session_factory() as session:
            rows = (
                session.query(ExtractionErrorLog)
                .filter_by(vault_id=vault_id)
                .order_by(ExtractionErrorLog.created_at.desc())
                .limit(limit)
                .all()
            )
            return [ExtractionErrorRecord(**row.to_dict()) for row in rows]

    # =========================================================================
    # Sessions & Events
    # =========================================================================

    def create_session(self, vault_id: str, user_id: Optional[str] = None,
                       extraction_version: str = "v3",
                       metadata: Optional[Dict[str, Any]] = None) -> ExtractionSession:
        with self._session_factory() as session:
            row = ExtractionSessionRow(
                vault_id=vault_id,
                user_id=user_id,
                extraction_version=extraction_version,
                status=SessionStatus.RUNNING.value,
                session_metadata=metadata or {},
                final_data={},
                started_at=self._now()
            )
            session.add(row)
            session.commit()
            return ExtractionSession(**row.to_dict())

    def get_session(self, session_id: str) -> Optional[ExtractionSession]:
        with self._session_factory() as session:
            row = session.get(ExtractionSessionRow, session_id)
            if row is None:
                return None
            return ExtractionSession(**row.to_dict())

    def finish_session(self, session_id: str, status: SessionStatus,
                       final_data: Optional[Dict[str, Any]] = None) -> Optional[ExtractionSession]:
        """Mark a session ended. Returns None if the session does not exist."""
        with self._session_factory() as session:
            row = session.get(ExtractionSessionRow, session_id)
            if row is None:
                return None
            row.status = status.value
            row.final_data = final_data or {}
            row.ended_at = self._now()
            session.commit()
            return ExtractionSession(**row.to_dict())

    def insert_event(self, session_id: str, event_type: str,
                     event_data: Optional[Dict[str, Any]] = None) -> ExtractionEvent:
        with self._session_factory() as session:
            row = ExtractionEventRow(
                session_id=session_id,
                event_type=event_type,
                event_data=event_data or {},
                timestamp=self._now()
            )
            session.add(row)
            session.commit()
            return ExtractionEvent(**row.to_dict())

    def list_events(self, session_id: str) -> List[ExtractionEvent]:
        """Events for a session in the order they happened."""
        with self._session_factory() as session:
            rows = (
                session.query(ExtractionEventRow)
                .filter_by(session_id=session_id)
                .order_by(ExtractionEventRow.timestamp.asc())
                .all()
            )
            return [ExtractionEvent(**row.to_dict()) for row in rows]
