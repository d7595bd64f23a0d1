"""Typed service errors with a stable code and an HTTP status."""

import json
from typing import Any, Dict, Optional

MAX_ERROR_MESSAGE_CHARS = 500
MAX_ERROR_DETAILS_CHARS = 2000
TRUNCATION_MARKER = "...[truncated]"


class ServiceError(Exception):
    """Base class for errors surfaced to callers."""

    def __init__(self, message: str, code: str, http_status: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.details = details


class InvalidInputError(ServiceError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_INPUT", 400, details)


class NotFoundError(ServiceError):
    def __init__(self, resource: str, id: Optional[str] = None):
        message = f"{resource} not found: {id}" if id else f"{resource} not found"
        super().__init__(message, "NOT_FOUND", 404)
        self.resource = resource


class NoEligibleDaysError(ServiceError):
    def __init__(self, message: str = "No days match the filter criteria"):
        super().__init__(message, "NO_ELIGIBLE_DAYS", 400)


class ConflictError(ServiceError):
    def __init__(self, code: str, message: str):
        super().__init__(message, code, 409)


class TickInProgressError(ServiceError):
    def __init__(self, message: str = "Tick already in progress"):
        super().__init__(message, "TICK_IN_PROGRESS", 409)


class ExportPreconditionError(ServiceError):
    """A run that cannot be exported yet, or does not exist (EXPORT_NOT_FOUND)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, not_found: bool = False):
        if not_found:
            super().__init__(message, "EXPORT_NOT_FOUND", 404, details)
        else:
            super().__init__(message, "EXPORT_PRECONDITION", 400, details)


def error_payload(error: BaseException) -> Dict[str, Any]:
    """
    Build a size-capped error payload for audit rows.

    The message is cut to 500 characters. Details are kept as-is when their
    JSON form fits in 2000 characters, otherwise stored as a truncated string.

    Args:
        error: Any exception; code/details are read when present

    Returns:
        Dict with code, message and details or detailsTruncated
    """
    code = getattr(error, "code", None)
    if not isinstance(code, str) or not code:
        code = "INTERNAL_ERROR"

    message = getattr(error, "message", None) or str(error) or type(error).__name__
    payload: Dict[str, Any] = {
        "code": code,
        "message": message[:MAX_ERROR_MESSAGE_CHARS],
    }

    details = getattr(error, "details", None)
    if details:
        serialized = json.dumps(details, default=str, sort_keys=True)
        if len(serialized) <= MAX_ERROR_DETAILS_CHARS:
            payload["details"] = json.loads(serialized)
        else:
            payload["detailsTruncated"] = serialized[:MAX_ERROR_DETAILS_CHARS] + TRUNCATION_MARKER

    return payload
