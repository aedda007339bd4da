"""
Utilities module: HTTP exceptions.
"""

from shared.utils.exceptions import (
    AppException,
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    InsufficientRoleError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

__all__ = [
    "AppException",
    "ConflictError",
    "ExternalServiceError",
    "ForbiddenError",
    "InsufficientRoleError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
]
