"""
Domain exceptions raised by the service layer.

Every error derives from ``ServiceError`` (itself a ``ValueError``) and
carries the HTTP status it maps to.  The exception handlers registered
in ``exception_handlers`` turn these into JSON responses, so endpoints
only need to catch them when they want a different status.
"""

from typing import Any, Dict, Optional


class ServiceError(ValueError):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 409


class LimitExceededError(ServiceError):
    """A rate or quota limit was hit (daily point limits)."""

    status_code = 429


class ExternalServiceError(ServiceError):
    """A third-party API (Stripe, a remote page) failed."""

    status_code = 502


class ConfigurationError(ServiceError):
    """A required setting (API key, webhook secret) is missing."""

    status_code = 500
