"""
Error taxonomy for incident processing.

Callers (admin actions, Celery tasks, management commands, an HTTP layer)
branch on the class, not on message text:

- SubmissionValidationError: malformed input, rejected before any stage runs
- InsufficientCreditsError: submitter balance below what the work needs
- CollaboratorError: an external collaborator failed with no fallback
- InvalidTransitionError: operation attempted from the wrong lifecycle state
- NotFoundError: unknown incident or batch identifier
- ImmutableRecordError: write attempted on an append-only record
"""

from __future__ import annotations

from typing import Any


class IncidentError(Exception):
    """Base class for all incident processing errors."""

    code: str = "incident_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class SubmissionValidationError(IncidentError):
    """Raised when a submission or correction payload is malformed."""

    code = "validation_error"

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self), "errors": self.errors}


class InsufficientCreditsError(IncidentError):
    """Raised before pipeline entry when the submitter cannot pay for the work."""

    code = "insufficient_credits"

    def __init__(self, submitter: str, required: int, available: int):
        self.submitter = submitter
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits for {submitter}. Required: {required}, Available: {available}"
        )


class CollaboratorError(IncidentError):
    """Raised when an external collaborator fails and no fallback applies."""

    code = "collaborator_error"

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class InvalidTransitionError(IncidentError):
    """Raised when a lifecycle operation is attempted from an invalid state."""

    code = "invalid_state"

    def __init__(self, incident_id: Any, current_status: str, operation: str, reason: str = ""):
        self.incident_id = incident_id
        self.current_status = current_status
        self.operation = operation
        message = f"Cannot {operation} incident {incident_id} in status '{current_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotFoundError(IncidentError):
    """Raised for unknown identifiers."""

    code = "not_found"

    def __init__(self, kind: str, identifier: Any):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class IncidentNotFoundError(NotFoundError):
    def __init__(self, identifier: Any):
        super().__init__("Incident", identifier)


class BatchNotFoundError(NotFoundError):
    def __init__(self, identifier: Any):
        super().__init__("Batch", identifier)


class ImmutableRecordError(IncidentError):
    """Raised when code attempts to rewrite an append-only record."""

    code = "immutable_record"
