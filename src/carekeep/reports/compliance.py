"""Compliance Report Generator"""
import uuid
from datetime import datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from carekeep.audit.models import AuditFilter, AuditResult, RiskLevel
from carekeep.audit.recorder import AuditRecorder
from carekeep.clock import ClockSource

logger = structlog.get_logger(__name__)

COMPLIANT_THRESHOLD = 80.0
AT_RISK_THRESHOLD = 60.0
STRENGTHEN_CONTROLS_AFTER = 10


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    AT_RISK = "at_risk"
    NON_COMPLIANT = "non_compliant"


class ReportPeriod(BaseModel):
    start: datetime | None = None
    end: datetime | None = None


class ComplianceReport(BaseModel):
    id: str
    generated_at: datetime
    period: ReportPeriod
    overall_compliance_score: float = Field(ge=0, le=100)
    compliance_status: ComplianceStatus
    total_events: int = 0
    total_data_access: int = 0
    total_violations: int = 0
    authorized_access: int = 0
    unauthorized_access: int = 0
    violations_by_risk: dict[str, int] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


def compliance_score(total_events: int, violations: int) -> float:
    """100 * (1 - violations / max(1, total)), clamped to [0, 100]."""
    total = max(1, total_events)
    score = 100.0 * (total - violations) / total
    return round(min(100.0, max(0.0, score)), 2)


def status_for(score: float) -> ComplianceStatus:
    if score >= COMPLIANT_THRESHOLD:
        return ComplianceStatus.COMPLIANT
    if score >= AT_RISK_THRESHOLD:
        return ComplianceStatus.AT_RISK
    return ComplianceStatus.NON_COMPLIANT


def recommendations_for(total_violations: int, by_risk: dict[str, int]) -> list[str]:
    recommendations = []
    if by_risk.get(RiskLevel.CRITICAL.value, 0) > 0:
        recommendations.append(
            "Immediate action required: investigate and resolve all critical violations"
        )
    if by_risk.get(RiskLevel.HIGH.value, 0) > 0:
        recommendations.append("High priority: address high-severity violations within 24 hours")
    if total_violations > STRENGTHEN_CONTROLS_AFTER:
        recommendations.append("Review and strengthen access controls and monitoring procedures")
    if not recommendations:
        recommendations.append("Maintain current compliance practices and continue monitoring")
    return recommendations


class ComplianceReporter:
    """
    Scores a window of the audit trail.

    Read-only: generating a report never appends to the log.
    """

    def __init__(self, recorder: AuditRecorder, clock: ClockSource):
        self._recorder = recorder
        self._clock = clock

    def generate(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        filters: AuditFilter | None = None,
    ) -> ComplianceReport:
        if start is not None and end is not None and end < start:
            raise ValueError("report window ends before it starts")

        total = 0
        violations = 0
        denied = 0
        succeeded = 0
        by_risk = {level.value: 0 for level in RiskLevel}

        for event in self._recorder.query(start, end, filters):
            total += 1
            if event.result == AuditResult.SUCCESS:
                succeeded += 1
            elif event.result == AuditResult.DENIED:
                denied += 1
            if event.is_violation:
                violations += 1
                by_risk[event.risk_level.value] += 1

        score = compliance_score(total, violations)
        report = ComplianceReport(
            id=f"RPT-{uuid.uuid4().hex[:12].upper()}",
            generated_at=self._clock.now(),
            period=ReportPeriod(start=start, end=end),
            overall_compliance_score=score,
            compliance_status=status_for(score),
            total_events=total,
            total_data_access=total - denied,
            total_violations=violations,
            authorized_access=succeeded,
            unauthorized_access=denied,
            violations_by_risk=by_risk,
            recommendations=recommendations_for(violations, by_risk),
        )

        logger.info("Compliance report generated", report_id=report.id,
                    score=score, status=report.compliance_status.value, events=total)
        return report
