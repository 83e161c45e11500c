"""
Pydantic schemas for progress tracking records and change events.

These schemas ensure:
1. Rows read from the store have a stable, validated shape
2. Change events carry the full new row to subscribers
3. API responses are consistent
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Enums
# ============================================================================

class ChangeType(str, Enum):
    """Kind of row change delivered by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"


class SessionStatus(str, Enum):
    """Lifecycle of an extraction session."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RecoveryAction(str, Enum):
    """The two choices offered when a job stalls."""

    RESUME = "resume"
    SKIP = "skip"


# Table names shared by the store and the change feed
PROGRESS_TABLE = "extraction_progress"
CHECKPOINTS_TABLE = "extraction_checkpoints"
ERRORS_TABLE = "extraction_errors"
SESSIONS_TABLE = "extraction_sessions"
EVENTS_TABLE = "extraction_events"


# ============================================================================
# Persisted Records
# ============================================================================

class ProgressRecord(BaseModel):
    """Current progress of one job. One row per vault_id."""

    vault_id: str
    phase: str
    percentage: int = Field(ge=0, le=100)
    message: str
    items_extracted: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)

    # Bumped by the store on every upsert; lets readers drop stale events
    sequence: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Checkpoint(BaseModel):
    """Snapshot written during a phase so a retry can skip finished work."""

    id: Optional[str] = None
    vault_id: str
    phase: str
    checkpoint_data: Any = None
    checkpoint_name: Optional[str] = None
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ExtractionErrorRecord(BaseModel):
    """Phase-level failure kept as an audit trail."""

    id: Optional[str] = None
    vault_id: str
    phase: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ExtractionSession(BaseModel):
    """One extraction run, used for reporting."""

    id: str
    vault_id: str
    user_id: Optional[str] = None
    extraction_version: str = "v3"
    status: SessionStatus = SessionStatus.RUNNING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    final_data: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    ended_at: Optional[datetime] = None


class ExtractionEvent(BaseModel):
    """Free-form event logged during a session."""

    id: Optional[str] = None
    session_id: str
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


# ============================================================================
# Change Feed
# ============================================================================

class ChangeEvent(BaseModel):
    """A row change pushed to subscribers of (table, record_id)."""

    table: str
    change_type: ChangeType
    record_id: str
    record: Dict[str, Any]

    @property
    def sequence(self) -> Optional[int]:
        """Write sequence of the row, when the table carries one."""
        return self.record.get("sequence")


# ============================================================================
# Recovery & Reporting
# ============================================================================

class RecoveryPrompt(BaseModel):
    """What the client shows when a job needs a Resume/Skip decision."""

    vault_id: str
    reason: str  # "stalled" or "error"
    choices: List[RecoveryAction] = Field(
        default_factory=lambda: [RecoveryAction.RESUME, RecoveryAction.SKIP]
    )
    error_message: Optional[str] = None
    stalled_for_seconds: float = 0.0
    last_phase: Optional[str] = None
    last_progress: int = 0


class ExtractionReport(BaseModel):
    """Summary of one extraction session for operators."""

    session_id: str
    vault_id: str
    status: SessionStatus
    duration_ms: int
    event_counts: Dict[str, int] = Field(default_factory=dict)
    retry_count: int = 0
    error_count: int = 0
    checkpoint_count: int = 0
    item_counts: Dict[str, int] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
