"""
CareKeep - Authorization & Consent Lifecycle Core

Components:
- Clock Source (injectable virtual time)
- Audit Recorder (append-only, hash-chained trail)
- Consent Store (versioned, scoped, time-bounded patient consent)
- Role Authorizer (default-deny RBAC with own-record rules)
- Session Guard (timed active/warning/expired state machine)
- Compliance Reporter (scored audit aggregation)
"""

from carekeep.core import CareKeep
from carekeep.errors import (
    AuditWriteDegraded,
    CareKeepError,
    ConsentNotFoundError,
    InvalidStateError,
    SessionNotFoundError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "CareKeep",
    # Errors
    "CareKeepError",
    "ValidationError",
    "ConsentNotFoundError",
    "InvalidStateError",
    "SessionNotFoundError",
    "AuditWriteDegraded",
]
