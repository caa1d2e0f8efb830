"""
ai_jury/exceptions.py
Typed exceptions raised by the jury engine.

Configuration errors (bad layer, out-of-turn execution) are raised before
any work starts. Per-project evaluation errors never surface here; they are
converted into layer decisions.
"""
from typing import Optional, Dict, Any

from ai_jury.errors import ErrorCode


class JuryException(Exception):
    """Base exception for the AI jury engine"""
    status_code: int = 500
    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, status_code: int = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if status_code:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class InvalidLayerError(JuryException):
    """Raised when a layer number outside 1-4 is requested."""
    status_code = 400
    code = ErrorCode.INVALID_LAYER

    def __init__(self, layer: Any):
        self.layer = layer
        super().__init__(f"Invalid layer {layer!r}. Must be between 1 and 4")


class LayerOutOfTurnError(JuryException):
    """
    Raised when a layer is executed while the session points at another one.

    Skipped or out-of-order layers are rejected, never silently corrected.
    """
    status_code = 409
    code = ErrorCode.LAYER_OUT_OF_TURN

    def __init__(self, session_id: int, layer: int, current_layer: int):
        self.session_id = session_id
        self.layer = layer
        self.current_layer = current_layer
        super().__init__(
            f"Cannot execute layer {layer} for session {session_id}: "
            f"session is at layer {current_layer}",
            details={"requested_layer": layer, "current_layer": current_layer},
        )


class SessionNotFoundError(JuryException):
    status_code = 404
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, message: str = "AI jury session not found"):
        super().__init__(message)


class EventNotFoundError(JuryException):
    status_code = 404
    code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, event_id: int):
        super().__init__(f"Competition event {event_id} not found")


class SessionClosedError(JuryException):
    """Raised when work is requested on a COMPLETED or FAILED session."""
    status_code = 409
    code = ErrorCode.SESSION_CLOSED

    def __init__(self, session_id: int, status: str):
        self.status = status
        super().__init__(
            f"AI jury session {session_id} is already {status.lower()}; reset it to run again",
            details={"status": status},
        )


class ActiveSessionExistsError(JuryException):
    status_code = 409
    code = ErrorCode.ACTIVE_SESSION_EXISTS

    def __init__(self, event_id: int, session_id: int):
        super().__init__(
            f"An AI jury session ({session_id}) is already active for event {event_id}",
            details={"session_id": session_id},
        )


class SessionNotCompletedError(JuryException):
    status_code = 409
    code = ErrorCode.SESSION_NOT_COMPLETED

    def __init__(self, session_id: int, status: str):
        super().__init__(
            f"AI jury session {session_id} is not yet completed (status: {status})",
            details={"status": status},
        )


class LayerInProgressError(JuryException):
    """Raised when a layer is already running for the same session in this process."""
    status_code = 409
    code = ErrorCode.LAYER_IN_PROGRESS

    def __init__(self, session_id: int):
        super().__init__(f"A layer is already executing for AI jury session {session_id}")


class InvalidTransitionError(JuryException):
    status_code = 409
    code = ErrorCode.STATE_TRANSITION_INVALID

    def __init__(self, from_status: str, to_status: str, allowed: Optional[list] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = allowed or []
        super().__init__(
            f"Cannot transition from {from_status} to {to_status}. Allowed: {self.allowed}",
            details={"from": from_status, "to": to_status, "allowed": self.allowed},
        )


class ResultsPersistenceError(JuryException):
    """Raised when a layer's results could not be committed; prior state is intact."""
    status_code = 500
    code = ErrorCode.PERSISTENCE_FAILED

    def __init__(self, session_id: int, layer: int, cause: Exception):
        self.session_id = session_id
        self.layer = layer
        self.cause = cause
        super().__init__(
            f"Failed to persist layer {layer} results for session {session_id}: {cause}"
        )
