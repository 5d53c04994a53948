"""
CareKeep Errors

Lifecycle and validation errors propagate to the caller. Audit write
failures are the only class recovered locally by the recorder.
"""

from typing import Any


class CareKeepError(Exception):
    """Base class for all core errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ValidationError(CareKeepError):
    """Malformed input. Recoverable by correcting the input."""
    pass


class ConsentNotFoundError(ValidationError):
    """Consent id is unknown to the store."""

    def __init__(self, consent_id: str):
        super().__init__("Consent not found", consent_id=consent_id)
        self.consent_id = consent_id


class InvalidStateError(CareKeepError):
    """Illegal lifecycle transition."""

    def __init__(self, entity_id: str, current_state: str, attempted: str):
        super().__init__(
            f"Cannot {attempted} from state '{current_state}'",
            entity_id=entity_id,
        )
        self.entity_id = entity_id
        self.current_state = current_state
        self.attempted = attempted


class SessionNotFoundError(CareKeepError):
    """No live session exists for the principal."""

    def __init__(self, principal_id: str, reason: str = "no active session"):
        super().__init__(f"Session not found: {reason}", principal_id=principal_id)
        self.principal_id = principal_id


class AuditWriteDegraded(CareKeepError):
    """Durable audit delivery keeps failing. Logged, never raised to callers."""

    def __init__(self, pending: int, error: str):
        super().__init__("Audit sink degraded", pending=pending, error=error)
        self.pending = pending
        self.error = error
