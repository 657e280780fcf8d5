"""
Error taxonomy for the operations core.

Services raise these; the error handlers in `create_app` turn them into JSON
responses. None of them are transient, so nothing here is ever retried.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class OpsError(Exception):
    code = "error"
    http_status = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class PermissionDenied(OpsError):
    code = "permission_denied"
    http_status = 403


class InvalidTransition(OpsError):
    code = "invalid_transition"
    http_status = 409


class InvalidState(OpsError):
    code = "invalid_state"
    http_status = 409


class InvariantViolation(OpsError):
    code = "invariant_violation"
    http_status = 409


class NotFound(OpsError):
    code = "not_found"
    http_status = 404


class ValidationError(OpsError):
    code = "validation_error"
    http_status = 422

    def __init__(self, errors: list[FieldError] | FieldError, message: str | None = None) -> None:
        if isinstance(errors, FieldError):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(message or "; ".join(f"{e.field}: {e.message}" for e in self.errors))

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["errors"] = [{"field": e.field, "message": e.message} for e in self.errors]
        return body
