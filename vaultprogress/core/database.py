"""
Database models for VaultProgress.

Uses SQLAlchemy for ORM. Works against PostgreSQL in production and
SQLite (file or in-memory) for local runs and tests.
"""

from typing import Dict, Any
import uuid
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, Index, create_engine
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .schemas import (
    utcnow, PROGRESS_TABLE, CHECKPOINTS_TABLE, ERRORS_TABLE,
    SESSIONS_TABLE, EVENTS_TABLE
)


Base = declarative_base()


def generate_uuid():
    """Generate a new UUID string."""
    return str(uuid.uuid4())


# ============================================================================
# Progress (one row per job, upserted)
# ============================================================================

class ExtractionProgress(Base):
    """Current-state progress row for one extraction job."""

    __tablename__ = PROGRESS_TABLE

    id = Column(String(36), primary_key=True, default=generate_uuid)
    vault_id = Column(String(255), unique=True, nullable=False, index=True)

    phase = Column(String(100), nullable=False)
    percentage = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=False, default="")
    items_extracted = Column(Integer, default=0)
    duration_ms = Column(Integer, default=0)
    sequence = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vault_id': self.vault_id,
            'phase': self.phase,
            'percentage': self.percentage,
            'message': self.message,
            'items_extracted': self.items_extracted or 0,
            'duration_ms': self.duration_ms or 0,
            'sequence': self.sequence,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


# ============================================================================
# Checkpoints & Errors (append-only)
# ============================================================================

class ExtractionCheckpoint(Base):
    """Recovery checkpoint. Many per job, never updated."""

    __tablename__ = CHECKPOINTS_TABLE

    id = Column(String(36), primary_key=True, default=generate_uuid)
    vault_id = Column(String(255), nullable=False)
    session_id = Column(String(36))
    phase = Column(String(100), nullable=False)
    checkpoint_name = Column(String(255))
    checkpoint_data = Column(JSON)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_checkpoints_vault_phase", "vault_id", "phase", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'vault_id': self.vault_id,
            'session_id': self.session_id,
            'phase': self.phase,
            'checkpoint_name': self.checkpoint_name,
            'checkpoint_data': self.checkpoint_data,
            'created_at': self.created_at,
        }


class ExtractionErrorLog(Base):
    """Phase-level failure with stack and metadata."""

    __tablename__ = ERRORS_TABLE

    id = Column(String(36), primary_key=True, default=generate_uuid)
    vault_id = Column(String(255), nullable=False)
    session_id = Column(String(36))
    phase = Column(String(100), nullable=False)

    error_code = Column(String(100))
    error_message = Column(Text)
    error_stack = Column(Text)
    # "metadata" is reserved on declarative classes
    error_metadata = Column("metadata", JSON)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_errors_vault", "vault_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'vault_id': self.vault_id,
            'session_id': self.session_id,
            'phase': self.phase,
            'error_code': self.error_code,
            'error_message': self.error_message,
            'error_stack': self.error_stack,
            'metadata': self.error_metadata or {},
            'created_at': self.created_at,
        }


# ============================================================================
# Sessions & Events (observability)
# ============================================================================

class ExtractionSessionRow(Base):
    """One extraction run."""

    __tablename__ = SESSIONS_TABLE

    id = Column(String(36), primary_key=True, default=generate_uuid)
    vault_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255))
    extraction_version = Column(String(20), default="v3")

    status = Column(String(20), default="running")  # running, completed, failed
    session_metadata = Column("metadata", JSON)
    final_data = Column(JSON)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'vault_id': self.vault_id,
            'user_id': self.user_id,
            'extraction_version': self.extraction_version,
            'status': self.status,
            'metadata': self.session_metadata or {},
            'final_data': self.final_data or {},
            'started_at': self.started_at,
            'ended_at': self.ended_at,
        }


class ExtractionEventRow(Base):
    """Event logged during a session (progress_update, retry_attempt, ...)."""

    __tablename__ = EVENTS_TABLE

    id = Column(String(36), primary_key=True, default=generate_uuid)
    session_id = Column(String(36), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_data = Column(JSON)

    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_events_session", "session_id", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'session_id': self.session_id,
            'event_type': self.event_type,
            'event_data': self.event_data or {},
            'timestamp': self.timestamp,
        }


# ============================================================================
# Engine Setup
# ============================================================================

def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine and make sure all tables exist.

    In-memory SQLite gets a single shared connection so every thread
    (background jobs, the API test client) sees the same database.
    """
    kwargs: Dict[str, Any] = {'echo': echo}

    if url.startswith("sqlite"):
        kwargs['connect_args'] = {'check_same_thread': False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs['poolclass'] = StaticPool

    engine = create_engine(url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)
