"""
Domain error taxonomy.

Every failure the core reports is one of these.  The API layer maps them
to HTTP statuses and the realtime gateway to ``error`` events; services
never translate them into silent no-ops.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    code = "domain_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """Malformed or out-of-range input, rejected before any store access."""

    code = "validation_error"


class AuthorizationError(DomainError):
    """Caller is not a party to the resource or lacks the required role."""

    code = "forbidden"


class ConflictError(DomainError):
    """Illegal transition, lost race or duplicate action."""

    code = "conflict"


class InvalidStateTransition(ConflictError):
    """Raised when a status change violates the state machine."""


class NotFoundError(DomainError):
    code = "not_found"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})


class TransientError(DomainError):
    """Store or network hiccup; nothing was applied, safe to retry."""

    code = "unavailable"
