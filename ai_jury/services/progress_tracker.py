"""
Progress Tracker

In-memory, best-effort progress for running jury sessions.

Keeps one SessionProgress snapshot per session, a bounded list of recent
events for late joiners, and a set of subscriber queues for live streaming.
Progress is observability only: it is lost on restart and no tracker call
ever raises into layer execution.

Retention:
- terminal sessions (completed / failed) are evicted retention_seconds
  after they finish
- at most max_sessions are kept; the least recently updated goes first
"""
import asyncio
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Set

from ai_jury.config import jury_config

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class ProgressEventType:
    SESSION_INITIALIZED = "session_initialized"
    LAYER_STARTED = "layer_started"
    PROJECT_STARTED = "project_started"
    PROJECT_COMPLETED = "project_completed"
    LAYER_COMPLETED = "layer_completed"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"

    TERMINAL = (SESSION_COMPLETED, SESSION_FAILED)


@dataclass
class ProgressEvent:
    type: str
    session_id: int
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }


@dataclass
class LayerProgress:
    layer: int
    total_projects: int = 0
    processed_projects: int = 0
    eliminated_projects: int = 0
    advanced_projects: int = 0
    current_project_id: Optional[int] = None
    status: str = "in_progress"
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()
        return {
            "layer": self.layer,
            "total_projects": self.total_projects,
            "processed_projects": self.processed_projects,
            "eliminated_projects": self.eliminated_projects,
            "advanced_projects": self.advanced_projects,
            "current_project_id": self.current_project_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": duration,
        }


@dataclass
class SessionProgress:
    session_id: int
    total_projects: int = 0
    status: str = "in_progress"
    current_layer: Optional[int] = None
    layers: Dict[int, LayerProgress] = field(default_factory=dict)
    final_results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    recent_events: Deque[ProgressEvent] = field(default_factory=deque)
    subscribers: Set[asyncio.Queue] = field(default_factory=set)
    # Monotonic clock reading of the terminal event (or of a waiting
    # subscription), used for retention
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    @property
    def is_waiting(self) -> bool:
        return self.status == "waiting"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "total_projects": self.total_projects,
            "status": self.status,
            "current_layer": self.current_layer,
            "layers": {str(n): lp.to_dict() for n, lp in sorted(self.layers.items())},
            "final_results": self.final_results,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ProgressTracker:
    """
    Tracks live progress of jury sessions in this process.

    Args:
        retention_seconds: How long terminal sessions are kept
        max_sessions: Upper bound on tracked sessions
        recent_events: Events kept per session for replay
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        retention_seconds: Optional[float] = None,
        max_sessions: Optional[int] = None,
        recent_events: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else jury_config.progress_retention_seconds
        )
        self.max_sessions = max_sessions if max_sessions is not None else jury_config.progress_max_sessions
        self.recent_events = recent_events if recent_events is not None else jury_config.progress_recent_events
        self._clock = clock
        self._sessions: "OrderedDict[int, SessionProgress]" = OrderedDict()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def session_initialized(self, session_id: int, total_projects: int) -> None:
        def apply():
            old = self._sessions.pop(session_id, None)
            progress = SessionProgress(
                session_id=session_id,
                total_projects=total_projects,
                recent_events=deque(maxlen=self.recent_events),
            )
            if old is not None:
                progress.subscribers = old.subscribers
            self._sessions[session_id] = progress
            logger.info(f"Jury session {session_id} initialized with {total_projects} projects")
            return progress

        self._record(session_id, ProgressEventType.SESSION_INITIALIZED, {"total_projects": total_projects}, apply)

    def layer_started(self, session_id: int, layer: int, project_count: int) -> None:
        def apply():
            progress = self._get_or_create(session_id)
            if progress.is_terminal or progress.is_waiting:
                progress.status = "in_progress"
                progress.completed_at = None
                progress.finished_at = None
                progress.error = None
            progress.current_layer = layer
            progress.layers[layer] = LayerProgress(layer=layer, total_projects=project_count)
            logger.info(f"Layer {layer} started for session {session_id} with {project_count} projects")
            return progress

        self._record(
            session_id,
            ProgressEventType.LAYER_STARTED,
            {"layer": layer, "project_count": project_count},
            apply
        )

    def project_started(self, session_id: int, layer: int, project_id: int) -> None:
        def apply():
            progress = self._sessions.get(session_id)
            if progress is None or layer not in progress.layers:
                return None
            progress.layers[layer].current_project_id = project_id
            logger.debug(f"Session {session_id} layer {layer}: processing project {project_id}")
            return progress

        self._record(
            session_id,
            ProgressEventType.PROJECT_STARTED,
            {"layer": layer, "project_id": project_id},
            apply
        )

    def project_completed(
        self,
        session_id: int,
        layer: int,
        project_id: int,
        eliminated: bool,
        score: Optional[float]
    ) -> None:
        def apply():
            progress = self._sessions.get(session_id)
            if progress is None or layer not in progress.layers:
                return None
            lp = progress.layers[layer]
            lp.processed_projects += 1
            if eliminated:
                lp.eliminated_projects += 1
            else:
                lp.advanced_projects += 1
            logger.debug(
                f"Session {session_id} layer {layer}: project {project_id} "
                f"{'eliminated' if eliminated else 'advanced'} (score: {score})"
            )
            return progress

        self._record(
            session_id,
            ProgressEventType.PROJECT_COMPLETED,
            {"layer": layer, "project_id": project_id, "eliminated": eliminated, "score": score},
            apply
        )

    def layer_completed(self, session_id: int, layer: int, eliminated: int, advanced: int) -> None:
        def apply():
            progress = self._sessions.get(session_id)
            if progress is None or layer not in progress.layers:
                return None
            lp = progress.layers[layer]
            lp.status = "completed"
            lp.completed_at = datetime.utcnow()
            lp.current_project_id = None
            lp.eliminated_projects = eliminated
            lp.advanced_projects = advanced
            duration = (lp.completed_at - lp.started_at).total_seconds()
            logger.info(
                f"Layer {layer} completed for session {session_id} in {duration:.1f}s - "
                f"{eliminated} eliminated, {advanced} advanced"
            )
            return progress

        self._record(
            session_id,
            ProgressEventType.LAYER_COMPLETED,
            {"layer": layer, "eliminated": eliminated, "advanced": advanced},
            apply
        )

    def session_completed(self, session_id: int, final_results: Optional[Dict[str, Any]]) -> None:
        def apply():
            progress = self._get_or_create(session_id)
            progress.status = "completed"
            progress.final_results = final_results
            progress.completed_at = datetime.utcnow()
            progress.finished_at = self._clock()
            logger.info(f"Jury session {session_id} completed")
            return progress

        self._record(
            session_id,
            ProgressEventType.SESSION_COMPLETED,
            {"final_results": final_results},
            apply
        )

    def session_failed(self, session_id: int, error: str) -> None:
        def apply():
            progress = self._get_or_create(session_id)
            progress.status = "failed"
            progress.error = error
            progress.completed_at = datetime.utcnow()
            progress.finished_at = self._clock()
            logger.info(f"Jury session {session_id} marked failed in progress tracker")
            return progress

        self._record(session_id, ProgressEventType.SESSION_FAILED, {"error": error}, apply)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_progress(self, session_id: int) -> Optional[Dict[str, Any]]:
        """Snapshot of a session's progress, or None if not tracked."""
        self._evict()
        progress = self._sessions.get(session_id)
        if progress is None or progress.is_waiting:
            return None
        return progress.to_dict()

    def get_recent_events(self, session_id: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent events of a session, oldest first."""
        self._evict()
        progress = self._sessions.get(session_id)
        if progress is None:
            return []
        events = [event.to_dict() for event in progress.recent_events]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def tracked_sessions(self) -> List[int]:
        self._evict()
        return list(self._sessions.keys())

    def clear_session(self, session_id: int) -> None:
        """Forget a session and close its live streams."""
        progress = self._sessions.pop(session_id, None)
        if progress is None:
            return
        self._close_subscribers(progress)
        logger.info(f"Session {session_id} cleared from progress tracker")

    def subscribe(self, session_id: int) -> AsyncIterator[Dict[str, Any]]:
        """
        Register a live listener and return an async iterator of its events.

        Events recorded after this call are delivered. The iterator ends after
        a terminal event or when the session is cleared or evicted. A slow
        consumer loses events rather than blocking execution.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        progress = self._sessions.get(session_id)
        if progress is None:
            # Placeholder for a session not started yet; expires like a finished one
            progress = self._get_or_create(session_id)
            progress.status = "waiting"
            progress.finished_at = self._clock()
            self._evict()
        progress.subscribers.add(queue)
        return self._listen(session_id, queue)

    async def _listen(self, session_id: int, queue: asyncio.Queue) -> AsyncIterator[Dict[str, Any]]:
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
                if event.get("type") in ProgressEventType.TERMINAL:
                    break
        finally:
            current = self._sessions.get(session_id)
            if current is not None:
                current.subscribers.discard(queue)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_or_create(self, session_id: int) -> SessionProgress:
        progress = self._sessions.get(session_id)
        if progress is None:
            progress = SessionProgress(session_id=session_id, recent_events=deque(maxlen=self.recent_events))
            self._sessions[session_id] = progress
        return progress

    def _record(
        self,
        session_id: int,
        event_type: str,
        data: Dict[str, Any],
        apply: Callable[[], Optional[SessionProgress]]
    ) -> None:
        try:
            progress = apply()
            if progress is None:
                logger.debug(f"Ignoring {event_type} for untracked session {session_id}")
                return

            event = ProgressEvent(type=event_type, session_id=session_id, data=data)
            progress.recent_events.append(event)
            self._sessions.move_to_end(session_id)

            payload = event.to_dict()
            for queue in list(progress.subscribers):
                try:
                    queue.put_nowait(payload)
                except asyncio.QueueFull:
                    # Slow subscriber
                    pass

            self._evict()
        except Exception:
            logger.exception(f"Progress tracking failed for {event_type} on session {session_id}")

    def _evict(self) -> None:
        now = self._clock()
        expired = [
            sid for sid, progress in self._sessions.items()
            if progress.finished_at is not None and now - progress.finished_at >= self.retention_seconds
        ]
        for sid in expired:
            self._close_subscribers(self._sessions.pop(sid))
            logger.debug(f"Evicted finished session {sid} from progress tracker")

        while len(self._sessions) > self.max_sessions:
            sid, progress = self._sessions.popitem(last=False)
            self._close_subscribers(progress)
            logger.debug(f"Evicted session {sid} from progress tracker (capacity {self.max_sessions})")

    @staticmethod
    def _close_subscribers(progress: SessionProgress) -> None:
        for queue in list(progress.subscribers):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                # Make room for the close signal
                queue.get_nowait()
                queue.put_nowait(None)
        progress.subscribers.clear()


progress_tracker = ProgressTracker()
