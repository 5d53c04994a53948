"""Compliance Reporting"""
from carekeep.reports.compliance import (
    ComplianceReport,
    ComplianceReporter,
    ComplianceStatus,
    ReportPeriod,
    compliance_score,
)

__all__ = [
    "ComplianceReporter",
    "ComplianceReport",
    "ComplianceStatus",
    "ReportPeriod",
    "compliance_score",
]
