"""
Custom exception classes for the application.

Every error raised by the import engine inherits from AppError so routes
can convert it to the standard error response.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_MAPPING_INCOMPLETE")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource or state (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


# ===================
# TABULAR LOADER
# ===================

class TabularParseError(ValidationError):
    """Uploaded file could not be turned into rows."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            code="TABULAR_PARSE_ERROR",
            details=details
        )


# ===================
# MAPPING & VALIDATION
# ===================

class ImportMappingError(ValidationError):
    """Column mapping is unusable (required field unmapped, unknown column)."""

    def __init__(self, message: str, fields: Optional[list[str]] = None):
        super().__init__(
            message=message,
            code="IMPORT_MAPPING_INCOMPLETE",
            details={"fields": fields or []}
        )
        self.fields = fields or []


class ImportValidationError(ValidationError):
    """Canonical rows failed validation; import is blocked."""

    def __init__(self, issues: list[dict]):
        super().__init__(
            message=f"Validation failed: {len(issues)} error(s) found",
            code="IMPORT_VALIDATION_FAILED",
            details={"issues": issues[:200], "total": len(issues)}
        )
        self.issues = issues


# ===================
# REMOTE STORE
# ===================

class RemoteStoreError(ExternalServiceError):
    """
    A remote store call failed after all retry attempts.

    Raised by the record store adapter; the reconciliation engine records
    it as a chunk error and keeps going.
    """

    def __init__(self, operation: str, table: str, message: str):
        super().__init__(
            service="remote_store",
            message=f"{operation} on {table} failed: {message}",
            details={"operation": operation, "table": table}
        )
        self.operation = operation
        self.table = table
        self.reason = message


# ===================
# IMPORT RUNS
# ===================

class ImportAlreadyRunningError(ConflictError):
    """A second run was requested while one is active on the same surface."""

    def __init__(self, import_type: str):
        super().__init__(
            message=f"An {import_type} import is already running",
            code="IMPORT_ALREADY_RUNNING",
            details={"import_type": import_type}
        )


class ImportRunNotFoundError(NotFoundError):
    """No run (or no loaded file) exists for the requested surface."""

    def __init__(self, import_type: str):
        super().__init__(
            resource="Import run",
            identifier=import_type,
            code="IMPORT_RUN_NOT_FOUND"
        )


class InvalidSchedulerStateError(ConflictError):
    """Batch scheduler operation not allowed in its current state."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            message=f"Cannot {operation} while scheduler is {state}",
            code="INVALID_SCHEDULER_STATE",
            details={"operation": operation, "state": state}
        )
