"""Audit Models"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class AuditResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self]


_RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2, RiskLevel.CRITICAL: 3}


@dataclass(frozen=True)
class AuditEntry:
    """What a component asks the recorder to append."""
    principal_id: str
    principal_role: str
    action: str
    resource_type: str
    resource_id: str
    result: AuditResult = AuditResult.SUCCESS
    risk_level: RiskLevel = RiskLevel.LOW
    correlation_id: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEvent:
    """Committed, immutable audit record."""
    id: str
    sequence: int
    timestamp: datetime
    principal_id: str
    principal_role: str
    action: str
    resource_type: str
    resource_id: str
    result: AuditResult
    risk_level: RiskLevel
    correlation_id: str
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    prev_hash: str | None = None
    hash: str = ""

    @property
    def is_violation(self) -> bool:
        return self.result in (AuditResult.DENIED, AuditResult.FAILURE)


@dataclass(frozen=True)
class AuditFilter:
    principal_id: str | None = None
    principal_role: str | None = None
    action: str | None = None
    action_prefix: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    result: AuditResult | None = None
    min_risk: RiskLevel | None = None
    correlation_id: str | None = None

    def matches(self, event: AuditEvent) -> bool:
        if self.principal_id and event.principal_id != self.principal_id:
            return False
        if self.principal_role and event.principal_role != self.principal_role:
            return False
        if self.action and event.action != self.action:
            return False
        if self.action_prefix and not event.action.startswith(self.action_prefix):
            return False
        if self.resource_type and event.resource_type != self.resource_type:
            return False
        if self.resource_id and event.resource_id != self.resource_id:
            return False
        if self.result and event.result != self.result:
            return False
        if self.min_risk and event.risk_level.rank < self.min_risk.rank:
            return False
        if self.correlation_id and event.correlation_id != self.correlation_id:
            return False
        return True
