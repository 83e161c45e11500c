"""
Test the progress publisher.

Run with: python -m pytest vaultprogress/tests/test_publisher.py -v
"""

import logging
from datetime import datetime

from vaultprogress.core.store import ProgressStore
from vaultprogress.services.publisher import ProgressPublisher, clamp_percentage
from vaultprogress.services.cancellation import CancellationRegistry

logger = logging.getLogger(__name__)


class BrokenStore:
    """Store whose every write fails."""

    def upsert_progress(self, **kwargs):
        raise ConnectionError("database unavailable")

    def insert_checkpoint(self, *args, **kwargs):
        raise ConnectionError("database unavailable")

    def latest_checkpoint(self, *args, **kwargs):
        raise ConnectionError("database unavailable")

    def insert_error(self, *args, **kwargs):
        raise ConnectionError("database unavailable")


def test_percentage_is_clamped(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    publisher.update_progress("extracting", -5, "Below range")
    assert store.get_progress("vault-1").percentage == 0

    publisher.update_progress("extracting", 150, "Above range")
    assert store.get_progress("vault-1").percentage == 100


def test_clamp_percentage_rounds_floats():
    assert clamp_percentage(40.6) == 41
    assert clamp_percentage(99.2) == 99
    assert clamp_percentage(-0.4) == 0


def test_duration_is_measured_from_job_start(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    clock.advance(2.5)
    record = publisher.update_progress("extracting", 10, "Working")

    assert record.duration_ms == 2500


def test_upsert_keeps_one_row_and_bumps_sequence(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    first = publisher.update_progress("initializing", 0, "Starting", 0)
    second = publisher.update_progress("extracting", 30, "Extracting", 9)

    assert first.sequence == 1
    assert second.sequence == 2
    assert store.get_progress("vault-1").phase == "extracting"


def test_items_extracted_kept_when_not_given(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    publisher.update_progress("extracting", 30, "Extracting", 9)
    publisher.update_progress("extracting", 35, "Still extracting")

    assert store.get_progress("vault-1").items_extracted == 9


def test_complete_writes_terminal_row(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    publisher.complete(87)
    record = store.get_progress("vault-1")

    assert record.phase == "complete"
    assert record.percentage == 100
    assert record.items_extracted == 87
    assert "87" in record.message


def test_load_checkpoint_returns_newest(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    assert publisher.load_checkpoint("skills") is None

    publisher.save_checkpoint("skills", {"done": 5})
    assert publisher.load_checkpoint("skills") == {"done": 5}

    publisher.save_checkpoint("skills", {"done": 10})
    assert publisher.load_checkpoint("skills") == {"done": 10}

    # Other phases and other jobs are separate
    assert publisher.load_checkpoint("achievements") is None
    assert ProgressPublisher("vault-2", store).load_checkpoint("skills") is None


def test_load_checkpoint_orders_by_creation_time():
    """A checkpoint stamped later wins even when it was inserted first."""
    stamps = iter([
        datetime(2026, 1, 1, 12, 5, 0),
        datetime(2026, 1, 1, 12, 0, 0),
    ])
    store = ProgressStore.from_url("sqlite://", now=lambda: next(stamps))
    publisher = ProgressPublisher("vault-1", store)

    publisher.save_checkpoint("skills", {"done": 10})
    publisher.save_checkpoint("skills", {"done": 5})

    assert publisher.load_checkpoint("skills") == {"done": 10}
    assert store.latest_checkpoint("vault-1", "skills").created_at == datetime(2026, 1, 1, 12, 5, 0)


def test_log_error_records_exception_details(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    try:
        raise TimeoutError("AI provider timed out")
    except TimeoutError as e:
        publisher.log_error("competencies", e, {"attempt": 1})

    publisher.log_error("skills", "Malformed JSON")

    errors = store.list_errors("vault-1")
    assert len(errors) == 2

    newest, oldest = errors
    assert newest.phase == "skills"
    assert newest.error_code == "error"
    assert oldest.error_code == "TimeoutError"
    assert oldest.error_message == "AI provider timed out"
    assert "TimeoutError" in oldest.error_stack
    assert oldest.metadata == {"attempt": 1}


def test_log_error_leaves_progress_untouched(store, clock):
    publisher = ProgressPublisher("vault-1", store, clock=clock)

    publisher.update_progress("extracting", 40, "Extracting", 12)
    publisher.log_error("extracting", RuntimeError("boom"))

    record = store.get_progress("vault-1")
    assert record.percentage == 40
    assert record.phase == "extracting"


def test_telemetry_failures_never_raise(clock):
    publisher = ProgressPublisher("vault-1", BrokenStore(), clock=clock)

    assert publisher.update_progress("extracting", 50, "Working") is None
    assert publisher.complete(3) is None
    assert publisher.save_checkpoint("skills", {"done": 1}) is None
    assert publisher.load_checkpoint("skills") is None
    assert publisher.log_error("skills", ValueError("bad")) is None

    logger.info("Broken store: all telemetry calls swallowed")


def test_cancelled_follows_registry(store):
    cancellations = CancellationRegistry()
    publisher = ProgressPublisher("vault-1", store, cancellations=cancellations)

    assert publisher.cancelled is False
    cancellations.cancel("vault-1")
    assert publisher.cancelled is True
    cancellations.clear("vault-1")
    assert publisher.cancelled is False

    assert ProgressPublisher("vault-1", store).cancelled is False
