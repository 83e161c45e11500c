"""
FastAPI Routes for VaultProgress

REST and WebSocket endpoints for reading extraction progress.

Run with: uvicorn vaultprogress.api.routes:create_app --factory --reload
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware

from vaultprogress import __version__
from vaultprogress.core.config import get_settings
from vaultprogress.core.errors import SessionNotFoundError, SubscriptionLimitError
from vaultprogress.core.schemas import utcnow, ChangeEvent, PROGRESS_TABLE
from vaultprogress.core.store import ProgressStore
from vaultprogress.services.cancellation import CancellationRegistry
from vaultprogress.services.notification import ChangeFeed
from vaultprogress.services.observability import ExtractionObservability

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, built once per app."""

    store: ProgressStore
    feed: ChangeFeed
    cancellations: CancellationRegistry
    observability: ExtractionObservability


router = APIRouter()


def _services(request: Request) -> Services:
    return request.app.state.services


# ============================================================================
# Health Check
# ============================================================================

@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": __version__,
        "active_subscriptions": _services(request).feed.active_count
    }


# ============================================================================
# Progress Endpoints
# ============================================================================

@router.get("/progress/{vault_id}")
async def get_progress(vault_id: str, request: Request):
    """Point read of a job's current progress."""
    record = _services(request).store.get_progress(vault_id)

    if not record:
        raise HTTPException(status_code=404, detail="No progress recorded for this job")

    return jsonable_encoder(record)


@router.get("/jobs/{vault_id}/checkpoints/{phase}")
async def get_latest_checkpoint(vault_id: str, phase: str, request: Request):
    """Newest checkpoint written for a phase."""
    checkpoint = _services(request).store.latest_checkpoint(vault_id, phase)

    if not checkpoint:
        raise HTTPException(status_code=404, detail="No checkpoint for this phase")

    return jsonable_encoder(checkpoint)


@router.get("/jobs/{vault_id}/errors")
async def get_errors(vault_id: str, request: Request, limit: int = 50):
    """Error log for a job, newest first."""
    errors = _services(request).store.list_errors(vault_id, limit=limit)
    return {
        "errors": jsonable_encoder(errors),
        "total": len(errors)
    }


@router.post("/jobs/{vault_id}/cancel")
async def cancel_job(vault_id: str, request: Request):
    """Ask a running job to stop at its next phase boundary."""
    _services(request).cancellations.cancel(vault_id)
    return {"status": "cancel_requested", "vault_id": vault_id}


@router.get("/sessions/{session_id}/report")
async def get_session_report(session_id: str, request: Request):
    """Extraction report for a session."""
    try:
        report = _services(request).observability.generate_report(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    return jsonable_encoder(report)


# ============================================================================
# WebSocket for Live Progress
# ============================================================================

@router.websocket("/ws/progress/{vault_id}")
async def progress_websocket(websocket: WebSocket, vault_id: str):
    """
    Live progress for one job.

    Messages sent:
    - {"type": "snapshot", "data": {...} | null}  once, right after connect
    - {"type": "progress", "data": {...}}         on every change
    - {"type": "pong"}                            in reply to {"type": "ping"}

    The change-feed subscription lives exactly as long as the socket.
    """
    services: Services = websocket.app.state.services
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(event: ChangeEvent):
        # Called from whichever thread wrote the row
        loop.call_soon_threadsafe(queue.put_nowait, event.record)

    await websocket.accept()

    try:
        subscription = services.feed.subscribe(PROGRESS_TABLE, vault_id, on_change)
    except SubscriptionLimitError as e:
        logger.warning(f"Refusing progress socket for {vault_id}: {e}")
        await websocket.close(code=1013)
        return

    async def forward_changes(last_sequence: Optional[int]):
        while True:
            record = await queue.get()
            sequence = record.get("sequence")
            if sequence is not None and last_sequence is not None:
                # Queued before the snapshot was read
                if sequence <= last_sequence:
                    continue
            if sequence is not None:
                last_sequence = sequence
            await websocket.send_json({"type": "progress", "data": jsonable_encoder(record)})

    sender = None
    try:
        current = services.store.get_progress(vault_id)
        await websocket.send_json({
            "type": "snapshot",
            "data": jsonable_encoder(current) if current else None
        })

        sender = asyncio.create_task(
            forward_changes(current.sequence if current else None)
        )

        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        logger.debug(f"Progress socket for {vault_id} disconnected")

    finally:
        subscription.close()
        if sender is not None:
            sender.cancel()


# ============================================================================
# App Factory
# ============================================================================

def create_app(
    store: Optional[ProgressStore] = None,
    feed: Optional[ChangeFeed] = None,
    cancellations: Optional[CancellationRegistry] = None
) -> FastAPI:
    """
    Build the API around injected services.

    With no arguments, a feed and a store are created from settings.

    Raises:
        ValueError: if the store already publishes to a different feed
    """
    settings = get_settings()

    if store is not None and store.feed is not None and feed is not None and feed is not store.feed:
        raise ValueError("The store already publishes to a different change feed")

    if feed is None:
        feed = store.feed if store is not None and store.feed is not None else ChangeFeed()
    if store is None:
        store = ProgressStore.from_url(feed=feed)
    elif store.feed is None:
        store.feed = feed

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Progress tracking for long-running vault extraction jobs",
        version=__version__
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = Services(
        store=store,
        feed=feed,
        cancellations=cancellations or CancellationRegistry(),
        observability=ExtractionObservability(store)
    )
    app.include_router(router)

    logger.info(f"{settings.app_name} API ready")
    return app
