"""
ai_jury/errors.py
Centralized error response structure.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}
"""
import logging
from typing import Optional, Dict, Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_LAYER = "INVALID_LAYER"

    NOT_FOUND = "NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"

    INVALID_STATE = "INVALID_STATE"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    LAYER_OUT_OF_TURN = "LAYER_OUT_OF_TURN"
    LAYER_IN_PROGRESS = "LAYER_IN_PROGRESS"
    SESSION_CLOSED = "SESSION_CLOSED"
    SESSION_NOT_COMPLETED = "SESSION_NOT_COMPLETED"
    ACTIVE_SESSION_EXISTS = "ACTIVE_SESSION_EXISTS"

    FEATURE_DISABLED = "FEATURE_DISABLED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


def error_content(
    error: str,
    message: str,
    code: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    content = {
        "success": False,
        "error": error,
        "message": message,
        "code": code
    }
    if details:
        content["details"] = details
    return content


def jury_error_response(exc) -> JSONResponse:
    """Render a JuryException as the standard error body."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_content(
            error=type(exc).__name__,
            message=exc.message,
            code=exc.code,
            details=exc.details,
        )
    )
