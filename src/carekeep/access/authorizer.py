"""
Role Authorizer

Default-deny RBAC with own-record rules. A decision is a pure function of
the role table and the inputs; the only side effect is one audit append
per call. Denials are returned, never raised.
"""

import re
from dataclasses import dataclass
from typing import Protocol

import structlog

from carekeep.access.roles import ADMIN_RESOURCES, KNOWN_RESOURCES, RoleTable, default_role_table
from carekeep.audit.models import AuditEntry, AuditResult, RiskLevel
from carekeep.audit.recorder import AuditRecorder

logger = structlog.get_logger(__name__)

ANONYMOUS = "anonymous"

VERB_ALIASES = {
    "view": "read",
    "get": "read",
    "fetch": "read",
    "access": "read",
    "list": "read",
    "edit": "update",
    "modify": "update",
    "change": "update",
    "add": "create",
    "new": "create",
    "remove": "delete",
    "erase": "delete",
    "download": "export",
}

# Sensitivity of a read on each resource, used for denied-read risk
READ_SENSITIVITY = {
    "medical_record": RiskLevel.HIGH,
    "patient": RiskLevel.MEDIUM,
    "consent": RiskLevel.MEDIUM,
    "audit_log": RiskLevel.HIGH,
    "system_config": RiskLevel.HIGH,
    "user": RiskLevel.MEDIUM,
    "compliance_report": RiskLevel.MEDIUM,
}

CRITICAL_ADMIN_VERBS = frozenset({"delete", "update", "role_assign", "create"})

_SEPARATORS = re.compile(r"[\s_\-]+")


class SessionChecker(Protocol):
    def is_authenticated(self, principal_id: str) -> bool: ...


@dataclass(frozen=True)
class Decision:
    """Result of an authorization check."""
    allowed: bool
    reason: str
    capability: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    audit_event_id: str | None = None


def normalize_action(action: str) -> str | None:
    """
    Map a caller's action to a `resource:action` capability key.

    Accepts `medical_record:read`, `Medical Record: View`,
    `read_patient` and `view_own_medical_record`. Returns None when the
    action cannot be interpreted.
    """
    if not action or not action.strip():
        return None
    text = action.strip().lower()

    if ":" in text:
        parts = text.split(":")
        if len(parts) != 2:
            return None
        resource = _SEPARATORS.sub("_", parts[0].strip())
        verb = _SEPARATORS.sub("_", parts[1].strip())
    else:
        tokens = [t for t in _SEPARATORS.split(text) if t]
        if len(tokens) < 2:
            return None
        verb, rest = tokens[0], tokens[1:]
        if rest[0] == "own":
            rest = rest[1:]
        resource = "_".join(rest)

    verb = VERB_ALIASES.get(verb, verb)
    if resource not in KNOWN_RESOURCES and resource.endswith("s") and resource[:-1] in KNOWN_RESOURCES:
        resource = resource[:-1]
    if not resource or not verb:
        return None
    return f"{resource}:{verb}"


def assess_risk(capability: str | None, allowed: bool, reason_code: str) -> RiskLevel:
    """Heuristic risk level for an authorization decision."""
    if capability is None:
        return RiskLevel.MEDIUM
    resource, verb = capability.split(":", 1)

    if allowed:
        if verb == "read":
            return RiskLevel.LOW
        if resource in ADMIN_RESOURCES or verb in ("delete", "export"):
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    if reason_code in ("unauthenticated", "unknown_role"):
        return RiskLevel.HIGH
    if resource in ADMIN_RESOURCES:
        return RiskLevel.CRITICAL if verb in CRITICAL_ADMIN_VERBS else RiskLevel.HIGH
    if verb in ("delete", "export"):
        return RiskLevel.HIGH
    if verb == "read":
        risk = READ_SENSITIVITY.get(resource, RiskLevel.LOW)
    else:
        risk = RiskLevel.MEDIUM
    if reason_code == "not_owner" and risk == RiskLevel.LOW:
        return RiskLevel.MEDIUM
    return risk


class RoleAuthorizer:
    """
    Authorization engine.

    Evaluates access requests against the role table and logs decisions.
    When a session checker is wired in, principals without a live session
    are treated as unauthenticated regardless of the role they present.
    """

    def __init__(
        self,
        audit: AuditRecorder,
        roles: RoleTable | None = None,
        sessions: SessionChecker | None = None,
    ):
        self._audit = audit
        self._roles = roles or default_role_table()
        self._sessions = sessions

    @property
    def roles(self) -> RoleTable:
        return self._roles

    def authorize(
        self,
        principal_role: str,
        action: str,
        resource_owner_id: str | None = None,
        principal_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Decision:
        capability = normalize_action(action)
        allowed, code, reason = self._decide(principal_role, capability, resource_owner_id, principal_id)
        risk = assess_risk(capability, allowed, code)

        event_id = self._audit.append(AuditEntry(
            principal_id=principal_id or ANONYMOUS,
            principal_role=principal_role or ANONYMOUS,
            action=capability or action,
            resource_type=capability.split(":", 1)[0] if capability else "unknown",
            resource_id=resource_owner_id or "",
            result=AuditResult.SUCCESS if allowed else AuditResult.DENIED,
            risk_level=risk,
            correlation_id=correlation_id,
            details={"requested_action": action, "reason": reason, "decision": code},
        ))

        if allowed:
            logger.debug("Access granted", principal=principal_id, role=principal_role,
                         capability=capability)
        else:
            logger.warning("Access denied", principal=principal_id, role=principal_role,
                           capability=capability or action, decision=code, risk=risk.value)

        return Decision(
            allowed=allowed,
            reason=reason,
            capability=capability,
            risk_level=risk,
            audit_event_id=event_id,
        )

    def _decide(
        self,
        principal_role: str,
        capability: str | None,
        resource_owner_id: str | None,
        principal_id: str | None,
    ) -> tuple[bool, str, str]:
        if self._sessions is not None:
            if not principal_id or not self._sessions.is_authenticated(principal_id):
                return False, "unauthenticated", "No live session for principal"

        role = self._roles.get(principal_role) if principal_role else None
        if role is None:
            return False, "unknown_role", f"Unknown role: {principal_role!r}"

        if capability is None:
            return False, "unrecognized_action", "Action could not be mapped to a capability"

        if not role.has(capability):
            return False, "no_capability", f"Role '{role.id}' lacks capability '{capability}'"

        if role.own_records_only(capability) and (
            resource_owner_id is None or resource_owner_id != principal_id
        ):
            return False, "not_owner", f"Capability '{capability}' is limited to own records"

        return True, "allowed", f"Role '{role.id}' holds capability '{capability}'"
