"""
Custom exceptions for the scheduling domain.

These exceptions represent domain-level errors and are independent
of infrastructure concerns (HTTP, database, etc.). The API layer maps
them to status codes in one place.
"""

from datetime import date
from typing import Any, Optional


class SpeddyException(Exception):
    """Base exception for all scheduling service errors."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SessionNotFoundException(SpeddyException):
    """Raised when a schedule session does not exist."""

    status_code = 404
    error_code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session not found: {session_id}",
            details={"session_id": session_id},
        )


class StudentNotFoundException(SpeddyException):
    """Raised when a student does not exist."""

    status_code = 404
    error_code = "student_not_found"

    def __init__(self, student_id: str):
        super().__init__(
            message=f"Student not found: {student_id}",
            details={"student_id": student_id},
        )


class AccessDeniedException(SpeddyException):
    """Raised when the current user may not act on a resource."""

    status_code = 403
    error_code = "access_denied"

    def __init__(self, reason: str = "Access denied", details: Optional[dict] = None):
        super().__init__(message=reason, details=details)


class ValidationException(SpeddyException):
    """Raised when input validation fails."""

    status_code = 400
    error_code = "validation_error"

    def __init__(self, field: str, value: Any, reason: str):
        message = f"Validation failed for {field}: {reason}"
        super().__init__(
            message=message,
            details={"field": field, "value": str(value), "reason": reason},
        )


class TemplateException(SpeddyException):
    """Raised when a session cannot be used as a template."""

    status_code = 400
    error_code = "invalid_template"

    def __init__(self, template_id: Optional[str], reason: str):
        super().__init__(
            message=reason,
            details={"template_id": template_id, "reason": reason},
        )


class PastSessionException(SpeddyException):
    """Raised when trying to move a dated session that already happened."""

    status_code = 400
    error_code = "session_in_past"

    def __init__(self, session_id: str, session_date: date):
        super().__init__(
            message="Cannot modify sessions in the past",
            details={"session_id": session_id, "session_date": session_date.isoformat()},
        )


class ScheduleConflictException(SpeddyException):
    """Raised when a move has conflicts and was not forced."""

    status_code = 409
    error_code = "schedule_conflict"

    def __init__(self, message: str, conflicts: list[dict]):
        super().__init__(
            message=message,
            details={"conflicts": conflicts, "requires_confirmation": True},
        )
        self.conflicts = conflicts


class DatabaseException(SpeddyException):
    """Raised when a database operation fails."""

    status_code = 500
    error_code = "database_error"

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Database {operation} failed"
        if reason:
            message += f": {reason}"
        super().__init__(
            message=message, details={"operation": operation, "reason": reason}
        )
