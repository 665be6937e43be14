from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code used in the response envelope:
    - unauthorized (401)
    - forbidden (403)
    - conflict (409)
    - validation_error (400)
    - server_error (5xx)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class RotationError(ServiceError):
    """Base for refresh failures. The client session is dead on any of these."""
    status_code = 401
    error_code = "unauthorized"


class InvalidRefresh(RotationError):
    """Refresh token absent, expired or superseded (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenMismatch(RotationError):
    """Presented tokens/username do not form a stored pair (403)."""
    status_code = 403
    error_code = "forbidden"


class ConcurrentRotation(RotationError):
    """Another caller rotated or removed this pair first (409)."""
    status_code = 409
    error_code = "conflict"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ConflictError",
    "RotationError",
    "InvalidRefresh",
    "TokenMismatch",
    "ConcurrentRotation",
]
