"""
Domain error taxonomy.

Engines raise these; the exception handler in app.main turns them into
JSON rejections carrying a stable ``error`` kind.
"""
from typing import Any, Optional


class DomainError(Exception):
    """Base class for recoverable, client-visible domain failures."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message}
        body.update(self.details)
        return body


class AuthorizationError(DomainError):
    """Actor lacks the required role, permission or ownership."""

    kind = "authorization_error"
    status_code = 403

    def __init__(self, message: str = "You are not allowed to perform this action",
                 required_permission: Optional[str] = None, **details: Any):
        if required_permission is not None:
            details["required_permission"] = required_permission
        super().__init__(message, **details)
        self.required_permission = required_permission


class InvalidStateTransition(DomainError):
    kind = "invalid_state_transition"
    status_code = 409


class ConflictError(DomainError):
    kind = "conflict"
    status_code = 409


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class ValidationError(DomainError):
    kind = "validation_error"
    status_code = 422
