"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,

    # Tabular loader
    TabularParseError,

    # Mapping & validation
    ImportMappingError,
    ImportValidationError,

    # Remote store
    RemoteStoreError,

    # Import runs
    ImportAlreadyRunningError,
    ImportRunNotFoundError,
    InvalidSchedulerStateError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",

    # Tabular loader
    "TabularParseError",

    # Mapping & validation
    "ImportMappingError",
    "ImportValidationError",

    # Remote store
    "RemoteStoreError",

    # Import runs
    "ImportAlreadyRunningError",
    "ImportRunNotFoundError",
    "InvalidSchedulerStateError",
]
