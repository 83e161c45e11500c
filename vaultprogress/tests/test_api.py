"""
Test the REST and WebSocket endpoints.

Run with: python -m pytest vaultprogress/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from vaultprogress.api.routes import create_app
from vaultprogress.core.schemas import ChangeEvent, ChangeType, PROGRESS_TABLE, SessionStatus
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.cancellation import CancellationRegistry
from vaultprogress.services.notification import ChangeFeed
from vaultprogress.services.observability import ExtractionObservability
from vaultprogress.services.publisher import ProgressPublisher


@pytest.fixture
def cancellations():
    return CancellationRegistry()


@pytest.fixture
def client(store, feed, cancellations):
    return TestClient(create_app(store=store, feed=feed, cancellations=cancellations))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_subscriptions"] == 0


def test_progress_point_read(store, client):
    assert client.get("/progress/vault-1").status_code == 404

    ProgressPublisher("vault-1", store).update_progress("extracting", 40, "Extracting skills...", 12)
    response = client.get("/progress/vault-1")

    assert response.status_code == 200
    body = response.json()
    assert body["phase"] == "extracting"
    assert body["percentage"] == 40
    assert body["items_extracted"] == 12


def test_latest_checkpoint(store, client):
    assert client.get("/jobs/vault-1/checkpoints/skills").status_code == 404

    publisher = ProgressPublisher("vault-1", store)
    publisher.save_checkpoint("skills", {"done": 5})
    publisher.save_checkpoint("skills", {"done": 10})

    response = client.get("/jobs/vault-1/checkpoints/skills")
    assert response.status_code == 200
    assert response.json()["checkpoint_data"] == {"done": 10}


def test_error_log(store, client):
    publisher = ProgressPublisher("vault-1", store)
    publisher.log_error("skills", "first")
    publisher.log_error("competencies", "second")

    body = client.get("/jobs/vault-1/errors").json()

    assert body["total"] == 2
    assert [e["error_message"] for e in body["errors"]] == ["second", "first"]

    assert client.get("/jobs/vault-1/errors", params={"limit": 1}).json()["total"] == 1


def test_cancel_marks_job(client, cancellations):
    response = client.post("/jobs/vault-1/cancel")

    assert response.status_code == 200
    assert response.json() == {"status": "cancel_requested", "vault_id": "vault-1"}
    assert cancellations.is_cancelled("vault-1")


def test_session_report(store, client):
    observability = ExtractionObservability(store)
    session = observability.start_session("vault-1")
    observability.end_session(session.id, SessionStatus.COMPLETED, {'itemCounts': {'skills': 3}})

    response = client.get(f"/sessions/{session.id}/report")
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["item_counts"] == {'skills': 3}

    assert client.get("/sessions/missing/report").status_code == 404


def test_websocket_streams_progress(store, client):
    publisher = ProgressPublisher("vault-1", store)

    with client.websocket_connect("/ws/progress/vault-1") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot == {"type": "snapshot", "data": None}

        publisher.update_progress("extracting", 40, "Extracting skills...", 12)
        message = websocket.receive_json()
        assert message["type"] == "progress"
        assert message["data"]["percentage"] == 40
        assert message["data"]["sequence"] == 1

        publisher.complete(87)
        message = websocket.receive_json()
        assert message["data"]["phase"] == "complete"
        assert message["data"]["percentage"] == 100

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}


def test_websocket_snapshot_has_current_row(store, client):
    ProgressPublisher("vault-1", store).update_progress("enhancing", 70, "Enhancing...")

    with client.websocket_connect("/ws/progress/vault-1") as websocket:
        snapshot = websocket.receive_json()

    assert snapshot["type"] == "snapshot"
    assert snapshot["data"]["percentage"] == 70


def test_websocket_refused_at_subscription_limit():
    feed = ChangeFeed(max_subscriptions=1)
    feed.subscribe(PROGRESS_TABLE, "someone-else", lambda event: None)
    store = ProgressStore.from_url("sqlite://", feed=feed)
    client = TestClient(create_app(store=store, feed=feed))

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/progress/vault-1") as websocket:
            websocket.receive_json()

    assert excinfo.value.code == 1013


def test_websocket_skips_changes_older_than_snapshot(store, feed, client, monkeypatch):
    publisher = ProgressPublisher("vault-1", store)
    publisher.update_progress("extracting", 10, "Starting")
    publisher.update_progress("extracting", 40, "Extracting skills...")
    read_progress = store.get_progress

    def read_with_late_delivery(vault_id):
        current = read_progress(vault_id)
        # Earlier writes still in flight when the snapshot is taken
        for sequence, percentage in ((1, 10), (2, 40)):
            feed.publish(ChangeEvent(
                table=PROGRESS_TABLE,
                change_type=ChangeType.UPDATE,
                record_id=vault_id,
                record={'vault_id': vault_id, 'percentage': percentage, 'sequence': sequence}
            ))
        return current

    monkeypatch.setattr(store, "get_progress", read_with_late_delivery)

    with client.websocket_connect("/ws/progress/vault-1") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["data"]["sequence"] == 2

        publisher.update_progress("extracting", 60, "Still extracting")
        message = websocket.receive_json()

    assert message["type"] == "progress"
    assert message["data"]["sequence"] == 3
    assert message["data"]["percentage"] == 60


def test_create_app_rejects_mismatched_feed(store):
    with pytest.raises(ValueError):
        create_app(store=store, feed=ChangeFeed())


def test_create_app_wires_feed_into_bare_store(feed):
    bare_store = ProgressStore.from_url("sqlite://")
    client = TestClient(create_app(store=bare_store, feed=feed))

    assert bare_store.feed is feed

    with client.websocket_connect("/ws/progress/vault-1") as websocket:
        websocket.receive_json()
        ProgressPublisher("vault-1", bare_store).update_progress("extracting", 25, "Working")
        message = websocket.receive_json()

    assert message["data"]["percentage"] == 25
