"""Consent Data Models"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from carekeep.audit.models import RiskLevel


class ConsentType(str, Enum):
    TREATMENT = "treatment"
    PAYMENT = "payment"
    HEALTHCARE_OPERATIONS = "healthcare_operations"
    MARKETING = "marketing"
    RESEARCH = "research"
    THIRD_PARTY = "third_party"


class ConsentStatus(str, Enum):
    PENDING = "pending"
    GRANTED = "granted"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ConsentStatus.REVOKED, ConsentStatus.EXPIRED)


class Sensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def risk(self) -> RiskLevel:
        return RiskLevel(self.value)


class GeographicScope(str, Enum):
    LOCAL = "local"
    REGIONAL = "regional"
    NATIONAL = "national"


# Legal edges of the lifecycle; anything else is an InvalidStateError
TRANSITIONS: dict[ConsentStatus, frozenset[ConsentStatus]] = {
    ConsentStatus.PENDING: frozenset({ConsentStatus.GRANTED}),
    ConsentStatus.GRANTED: frozenset({
        ConsentStatus.REVOKED, ConsentStatus.EXPIRED, ConsentStatus.SUSPENDED,
    }),
    ConsentStatus.SUSPENDED: frozenset({ConsentStatus.GRANTED, ConsentStatus.REVOKED}),
    ConsentStatus.REVOKED: frozenset(),
    ConsentStatus.EXPIRED: frozenset(),
}


def can_transition(current: ConsentStatus, target: ConsentStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class DataCategory:
    """Reference data describing a class of patient data."""
    category: str
    description: str = ""
    examples: tuple[str, ...] = ()
    sensitivity: Sensitivity = Sensitivity.LOW
    requires_explicit_consent: bool = False


@dataclass(frozen=True)
class ConsentScope:
    """Where and for how long a consent applies. Empty id sets mean unrestricted."""
    time_limit: int
    facilities: frozenset[str] = frozenset()
    providers: frozenset[str] = frozenset()
    services: frozenset[str] = frozenset()
    geographic_scope: GeographicScope = GeographicScope.LOCAL

    def __post_init__(self):
        # Accept any iterable of ids from callers
        for name in ("facilities", "providers", "services"):
            object.__setattr__(self, name, frozenset(getattr(self, name)))

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.time_limit)


@dataclass(frozen=True)
class ConsentFlags:
    third_party_sharing: bool = False
    marketing_consent: bool = False
    research_consent: bool = False
    # When set, every supplied category that requires explicit consent
    # must be listed in explicit_categories.
    require_explicit_consent: bool = False
    explicit_categories: frozenset[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "explicit_categories", frozenset(self.explicit_categories))


@dataclass(frozen=True)
class PatientConsent:
    """Patient consent record. Every transition yields a new instance."""
    id: str
    patient_id: str
    consent_type: ConsentType
    version: int
    status: ConsentStatus
    data_categories: tuple[DataCategory, ...]
    scope: ConsentScope
    created_by: str
    created_at: datetime
    updated_at: datetime
    third_party_sharing: bool = False
    marketing_consent: bool = False
    research_consent: bool = False
    granted_at: datetime | None = None
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    suspended_reason: str | None = None
    updated_by: str | None = None

    @property
    def key(self) -> tuple[str, ConsentType]:
        return (self.patient_id, self.consent_type)

    @property
    def category_names(self) -> tuple[str, ...]:
        return tuple(c.category for c in self.data_categories)

    def is_active(self, now: datetime) -> bool:
        return (
            self.status == ConsentStatus.GRANTED
            and self.expires_at is not None
            and now < self.expires_at
        )


@dataclass(frozen=True)
class ConsentRequest:
    """A request to access patient data, checked against granted consents."""
    patient_id: str
    requesting_principal_id: str
    requesting_role: str
    data_categories: tuple[str, ...]
    purpose: str = ""
    facility_id: str | None = None
    provider_id: str | None = None
    service_type: str | None = None
    # Break-the-glass access; requires an emergency-capable role and a justification
    emergency_override: bool = False
    justification: str = ""


@dataclass(frozen=True)
class ConsentVerification:
    """Result of consent verification."""
    valid: bool
    reason: str
    consent_id: str | None = None
    consent_type: ConsentType | None = None
    data_categories: tuple[DataCategory, ...] = ()
    expires_at: datetime | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    audit_required: bool = False
    restrictions: tuple[str, ...] = field(default_factory=tuple)
    emergency: bool = False


@dataclass(frozen=True)
class ConsentSummary:
    """Per-patient consent counts."""
    patient_id: str
    active: int = 0
    pending: int = 0
    suspended: int = 0
    expired: int = 0
    revoked: int = 0
    last_consent_at: datetime | None = None
    next_expiry_at: datetime | None = None
