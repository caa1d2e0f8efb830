"""
AI Jury API Routes.

Session lifecycle, layer execution, progress and results for the layered
AI jury. JuryException subclasses raised by the services are rendered by the
application's exception handler.
"""
import asyncio
import json
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.config import feature_flags
from ai_jury.database import get_db
from ai_jury.errors import ErrorCode, error_content
from ai_jury.exceptions import LayerInProgressError
from ai_jury.schemas.jury import (
    CreateSessionRequest, ExecuteLayerRequest, ResetRequest,
    JurySessionResponse, JurySessionDetailResponse, LayerExecutionResponse,
    SessionProgressResponse, FinalResultsResponse, ResetResponse
)
from ai_jury.services import jury_session_service
from ai_jury.services.jury_session_service import ResetMode
from ai_jury.services.layer_executor import LayerExecutor
from ai_jury.services.progress_tracker import ProgressTracker, progress_tracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai-jury", tags=["ai-jury"])

# One layer at a time per session within this process
_session_locks: Dict[int, asyncio.Lock] = {}
_executor: Optional[LayerExecutor] = None


# =============================================================================
# Dependencies
# =============================================================================

def get_layer_executor() -> LayerExecutor:
    global _executor
    if _executor is None:
        _executor = LayerExecutor()
    return _executor


def get_progress_tracker() -> ProgressTracker:
    return progress_tracker


def _require_flag(flag_name: str, message: str):
    if not feature_flags.is_enabled(flag_name):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_content("FeatureDisabled", message, ErrorCode.FEATURE_DISABLED)
        )


def check_ai_jury_enabled():
    """Check if the AI jury is enabled."""
    _require_flag("FEATURE_AI_JURY", "AI jury is disabled")


def _session_lock(session_id: int) -> asyncio.Lock:
    return _session_locks.setdefault(session_id, asyncio.Lock())


def _is_busy(session_id: int) -> bool:
    lock = _session_locks.get(session_id)
    return lock is not None and lock.locked()


def _sse(event_type: str, payload: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(payload, default=str)}\n\n"


# =============================================================================
# Session Routes
# =============================================================================

@router.post("/sessions", response_model=JurySessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a PENDING jury session for an event.

    Fails with 409 while another session of the event is still running.
    """
    check_ai_jury_enabled()
    session = await jury_session_service.create_session(
        db,
        event_id=request.event_id,
        eligibility_criteria=request.eligibility_criteria.model_dump()
    )
    return session.to_dict()


@router.get("/sessions", response_model=JurySessionDetailResponse)
async def get_session(
    event_id: int = Query(..., ge=1),
    db: AsyncSession = Depends(get_db)
):
    """Latest session of an event with its results grouped by layer."""
    check_ai_jury_enabled()
    return await jury_session_service.get_session(db, event_id)


@router.get("/sessions/{session_id}/progress", response_model=SessionProgressResponse)
async def get_progress(
    session_id: int,
    db: AsyncSession = Depends(get_db)
):
    check_ai_jury_enabled()
    return await jury_session_service.get_progress(db, session_id)


@router.get("/sessions/{session_id}/live-progress")
async def get_live_progress(
    session_id: int,
    tracker: ProgressTracker = Depends(get_progress_tracker)
):
    """
    In-memory progress of a running session.

    Only the worker process executing the session has it; other workers and
    restarted processes answer with status "not_found".
    """
    check_ai_jury_enabled()
    progress = tracker.get_progress(session_id)
    if progress is None:
        return {
            "session_id": session_id,
            "status": "not_found",
            "message": "No active progress tracking for this session",
        }
    return {
        **progress,
        "recent_events": tracker.get_recent_events(session_id),
    }


@router.get("/sessions/{session_id}/live-progress/stream")
async def stream_live_progress(
    session_id: int,
    tracker: ProgressTracker = Depends(get_progress_tracker)
):
    """
    Server-Sent Events stream of progress events.

    Starts with a "snapshot" event (current progress and recent events) and
    ends after session_completed or session_failed.
    """
    check_ai_jury_enabled()
    _require_flag("FEATURE_LIVE_PROGRESS_STREAM", "Live progress streaming is disabled")

    async def event_stream():
        progress = tracker.get_progress(session_id)
        snapshot = {
            "type": "snapshot",
            "session_id": session_id,
            "progress": progress,
            "recent_events": tracker.get_recent_events(session_id),
        }
        if progress is not None and progress["status"] in ("completed", "failed"):
            yield _sse("snapshot", snapshot)
            return

        events = tracker.subscribe(session_id)
        yield _sse("snapshot", snapshot)
        async for event in events:
            yield _sse(event["type"], event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


@router.get("/sessions/{session_id}/results", response_model=FinalResultsResponse)
async def get_results(
    session_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Final per-category winners; 409 until the session is COMPLETED."""
    check_ai_jury_enabled()
    return await jury_session_service.get_final_results(db, session_id)


@router.post("/sessions/{session_id}/execute-layer", response_model=LayerExecutionResponse)
async def execute_layer(
    session_id: int,
    request: ExecuteLayerRequest,
    db: AsyncSession = Depends(get_db),
    executor: LayerExecutor = Depends(get_layer_executor)
):
    """
    Execute one layer of a session.

    Layers run in order 1-4; the most recently completed layer may be
    executed again to replace its results.
    """
    check_ai_jury_enabled()
    if _is_busy(session_id):
        raise LayerInProgressError(session_id)

    lock = _session_lock(session_id)
    try:
        async with lock:
            result = await executor.execute_layer(db, session_id, request.layer)
    finally:
        # Entries only live while a layer runs
        if not lock.locked():
            _session_locks.pop(session_id, None)

    return result.to_dict()


@router.post("/sessions/{session_id}/reset", response_model=ResetResponse)
async def reset_session(
    session_id: int,
    request: Optional[ResetRequest] = None,
    db: AsyncSession = Depends(get_db),
    tracker: ProgressTracker = Depends(get_progress_tracker)
):
    """
    Soft reset: wipe all layer results and return the session to PENDING.

    A body of {"mode": "hard"} behaves like DELETE.
    """
    check_ai_jury_enabled()
    mode = request.mode if request else ResetMode.SOFT
    if mode == ResetMode.HARD:
        _require_flag("FEATURE_HARD_RESET", "Hard reset is disabled")

    if _is_busy(session_id):
        raise LayerInProgressError(session_id)

    return await jury_session_service.reset_session(db, session_id, mode=mode, tracker=tracker)


@router.delete("/sessions/{session_id}", response_model=ResetResponse)
async def delete_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    tracker: ProgressTracker = Depends(get_progress_tracker)
):
    """Hard reset: delete the session and every layer result."""
    check_ai_jury_enabled()
    _require_flag("FEATURE_HARD_RESET", "Hard reset is disabled")

    if _is_busy(session_id):
        raise LayerInProgressError(session_id)

    return await jury_session_service.reset_session(db, session_id, mode=ResetMode.HARD, tracker=tracker)
