"""Audit Trail - append-only recorder, query and export"""
from carekeep.audit.export import AuditExporter, AuditExportRow
from carekeep.audit.models import AuditEntry, AuditEvent, AuditFilter, AuditResult, RiskLevel
from carekeep.audit.recorder import AuditQueryResult, AuditRecorder

__all__ = [
    "AuditRecorder",
    "AuditQueryResult",
    "AuditEntry",
    "AuditEvent",
    "AuditFilter",
    "AuditResult",
    "RiskLevel",
    "AuditExporter",
    "AuditExportRow",
]
