"""
Role Table

Roles are fixed at deployment time. Capabilities are `resource:action`
strings; a role either holds one or it does not.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


class AccessLevel(str, Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class Capability:
    """Healthcare capability keys."""
    PATIENT_READ = "patient:read"
    PATIENT_CREATE = "patient:create"
    PATIENT_UPDATE = "patient:update"
    PATIENT_DELETE = "patient:delete"
    PATIENT_EXPORT = "patient:export"

    MEDICAL_RECORD_READ = "medical_record:read"
    MEDICAL_RECORD_CREATE = "medical_record:create"
    MEDICAL_RECORD_UPDATE = "medical_record:update"
    MEDICAL_RECORD_DELETE = "medical_record:delete"
    MEDICAL_RECORD_EMERGENCY_ACCESS = "medical_record:emergency_access"

    APPOINTMENT_READ = "appointment:read"
    APPOINTMENT_CREATE = "appointment:create"
    APPOINTMENT_UPDATE = "appointment:update"
    APPOINTMENT_CANCEL = "appointment:cancel"

    CONSENT_READ = "consent:read"
    CONSENT_CREATE = "consent:create"
    CONSENT_UPDATE = "consent:update"
    CONSENT_REVOKE = "consent:revoke"

    FACILITY_READ = "facility:read"
    FACILITY_CREATE = "facility:create"
    FACILITY_UPDATE = "facility:update"
    FACILITY_DELETE = "facility:delete"

    USER_READ = "user:read"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_ROLE_ASSIGN = "user:role_assign"

    SYSTEM_CONFIG_READ = "system_config:read"
    SYSTEM_CONFIG_UPDATE = "system_config:update"
    AUDIT_LOG_READ = "audit_log:read"
    COMPLIANCE_REPORT_READ = "compliance_report:read"

    @classmethod
    def all(cls) -> frozenset[str]:
        return frozenset(
            v for k, v in vars(cls).items() if k.isupper() and isinstance(v, str)
        )


KNOWN_RESOURCES = frozenset(c.split(":", 1)[0] for c in Capability.all())

# Resources whose capabilities administer the system rather than care
ADMIN_RESOURCES = frozenset({"user", "system_config", "audit_log", "compliance_report", "facility"})


@dataclass(frozen=True)
class Role:
    id: str
    name: str
    permissions: frozenset[str]
    access_level: AccessLevel
    own_record_capabilities: frozenset[str] = frozenset()
    priority: int = 0
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "permissions", frozenset(self.permissions))
        object.__setattr__(self, "own_record_capabilities", frozenset(self.own_record_capabilities))
        stray = self.own_record_capabilities - self.permissions
        if stray:
            raise ValueError(f"Own-record capabilities not granted to role {self.id}: {sorted(stray)}")

    def has(self, capability: str) -> bool:
        return capability in self.permissions

    def own_records_only(self, capability: str) -> bool:
        return capability in self.own_record_capabilities


class RoleTable:
    """Read-only role lookup."""

    def __init__(self, roles: Iterable[Role]):
        table = {}
        for role in roles:
            if role.id in table:
                raise ValueError(f"Duplicate role id: {role.id}")
            table[role.id] = role
        self._roles: Mapping[str, Role] = MappingProxyType(table)

    def get(self, role_id: str) -> Role | None:
        return self._roles.get(role_id)

    def __contains__(self, role_id: str) -> bool:
        return role_id in self._roles

    def __iter__(self):
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)


_PATIENT_OWN = frozenset({
    Capability.PATIENT_READ,
    Capability.MEDICAL_RECORD_READ,
    Capability.APPOINTMENT_READ,
    Capability.CONSENT_READ,
    Capability.CONSENT_UPDATE,
})

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(
        id="system_admin",
        name="System Administrator",
        description="System Administrator with full access",
        permissions=Capability.all(),
        access_level=AccessLevel.ADMIN,
        priority=100,
    ),
    Role(
        id="compliance_officer",
        name="Compliance Officer",
        description="HIPAA Compliance Officer",
        permissions=frozenset({
            Capability.AUDIT_LOG_READ,
            Capability.COMPLIANCE_REPORT_READ,
            Capability.CONSENT_READ,
            Capability.CONSENT_UPDATE,
            Capability.PATIENT_READ,
        }),
        access_level=AccessLevel.WRITE,
        priority=90,
    ),
    Role(
        id="facility_admin",
        name="Facility Administrator",
        description="Healthcare Facility Administrator",
        permissions=frozenset({
            Capability.FACILITY_READ,
            Capability.FACILITY_UPDATE,
            Capability.USER_READ,
            Capability.USER_CREATE,
            Capability.USER_UPDATE,
            Capability.USER_ROLE_ASSIGN,
            Capability.APPOINTMENT_READ,
            Capability.APPOINTMENT_CREATE,
            Capability.APPOINTMENT_UPDATE,
        }),
        access_level=AccessLevel.ADMIN,
        priority=80,
    ),
    Role(
        id="doctor",
        name="Doctor",
        description="Healthcare Provider (Doctor)",
        permissions=frozenset({
            Capability.PATIENT_READ,
            Capability.MEDICAL_RECORD_READ,
            Capability.MEDICAL_RECORD_CREATE,
            Capability.MEDICAL_RECORD_UPDATE,
            Capability.MEDICAL_RECORD_EMERGENCY_ACCESS,
            Capability.APPOINTMENT_READ,
            Capability.APPOINTMENT_CREATE,
            Capability.APPOINTMENT_UPDATE,
            Capability.CONSENT_READ,
            Capability.CONSENT_CREATE,
        }),
        access_level=AccessLevel.WRITE,
        priority=70,
    ),
    Role(
        id="nurse",
        name="Nurse",
        description="Healthcare Provider (Nurse)",
        permissions=frozenset({
            Capability.PATIENT_READ,
            Capability.MEDICAL_RECORD_READ,
            Capability.MEDICAL_RECORD_UPDATE,
            Capability.MEDICAL_RECORD_EMERGENCY_ACCESS,
            Capability.APPOINTMENT_READ,
            Capability.APPOINTMENT_UPDATE,
            Capability.CONSENT_READ,
        }),
        access_level=AccessLevel.WRITE,
        priority=60,
    ),
    Role(
        id="clinic_staff",
        name="Clinic Staff",
        description="Clinic Support Staff",
        permissions=frozenset({
            Capability.PATIENT_READ,
            Capability.APPOINTMENT_READ,
            Capability.APPOINTMENT_CREATE,
            Capability.APPOINTMENT_UPDATE,
            Capability.CONSENT_READ,
            Capability.CONSENT_CREATE,
        }),
        access_level=AccessLevel.WRITE,
        priority=50,
    ),
    Role(
        id="patient",
        name="Patient",
        description="Patient User",
        permissions=_PATIENT_OWN,
        own_record_capabilities=_PATIENT_OWN,
        access_level=AccessLevel.READ,
        priority=10,
    ),
)


def default_role_table() -> RoleTable:
    return RoleTable(DEFAULT_ROLES)
