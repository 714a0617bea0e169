"""
Error taxonomy for the send service.

Every failure the service reports to a caller is one of the classes below.
Each carries an HTTP status and a short machine-readable code (for example
``invalid_checkDocumentId`` or ``no_provider_id``) that the API layer renders
as ``{"error": code, "detail": message}``.
"""

from __future__ import annotations

from typing import Optional


class SendServiceError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    default_code: str = "internal_error"

    def __init__(self, code: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.code = code or self.default_code
        self.detail = detail or self.code
        super().__init__(self.detail)


class ValidationError(SendServiceError):
    """Missing or inconsistent fields on a create request."""

    status_code = 400
    default_code = "validation_error"


class BadRequestError(SendServiceError):
    """The request is well formed but cannot be acted on."""

    status_code = 400
    default_code = "bad_request"


class UnauthorizedError(SendServiceError):
    status_code = 401
    default_code = "unauthorized"


class NotFoundError(SendServiceError):
    status_code = 404
    default_code = "not_found"


class AdapterError(SendServiceError):
    """A delivery provider call failed, timed out, or returned a non-success response."""

    status_code = 502
    default_code = "provider_error"


class StorageError(SendServiceError):
    status_code = 500
    default_code = "storage_failed"


class PersistenceError(SendServiceError):
    status_code = 500
    default_code = "persistence_failed"
