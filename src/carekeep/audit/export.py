"""Audit Export - flat tabular rows for the export-to-file feature"""
import csv
import io
import json
from datetime import datetime

import structlog
from pydantic import BaseModel

from carekeep.audit.models import AuditEntry, AuditEvent, AuditFilter, RiskLevel
from carekeep.audit.recorder import AuditRecorder

logger = structlog.get_logger(__name__)


class AuditExportRow(BaseModel):
    """One flat record per audit event."""
    timestamp: datetime
    principal_id: str
    principal_role: str
    action: str
    resource_type: str
    resource_id: str
    result: str
    risk_level: str
    correlation_id: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditExportRow":
        return cls(
            timestamp=event.timestamp,
            principal_id=event.principal_id,
            principal_role=event.principal_role,
            action=event.action,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            result=event.result.value,
            risk_level=event.risk_level.value,
            correlation_id=event.correlation_id,
        )


EXPORT_FIELDS = list(AuditExportRow.model_fields)


class AuditExporter:
    """
    Export audit events for compliance reporting.

    Passing `exported_by` records the export itself as a disclosure.
    """

    def __init__(self, recorder: AuditRecorder):
        self._recorder = recorder

    def rows(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        filters: AuditFilter | None = None,
        exported_by: tuple[str, str] | None = None,
        export_format: str = "rows",
    ) -> list[AuditExportRow]:
        rows = [AuditExportRow.from_event(e) for e in self._recorder.query(start, end, filters)]
        if exported_by is not None:
            principal_id, principal_role = exported_by
            self._recorder.append(AuditEntry(
                principal_id=principal_id,
                principal_role=principal_role,
                action="audit.export",
                resource_type="audit_log",
                resource_id="*",
                risk_level=RiskLevel.MEDIUM,
                details={"record_count": len(rows), "format": export_format},
            ))
            logger.info("Audit log exported", by=principal_id, records=len(rows),
                        format=export_format)
        return rows

    def to_csv(self, start: datetime | None = None, end: datetime | None = None,
               filters: AuditFilter | None = None,
               exported_by: tuple[str, str] | None = None) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS)
        writer.writeheader()
        for row in self.rows(start, end, filters, exported_by, export_format="csv"):
            record = row.model_dump()
            record["timestamp"] = row.timestamp.isoformat()
            writer.writerow(record)
        return buffer.getvalue()

    def to_json(self, start: datetime | None = None, end: datetime | None = None,
                filters: AuditFilter | None = None,
                exported_by: tuple[str, str] | None = None) -> str:
        rows = self.rows(start, end, filters, exported_by, export_format="json")
        return json.dumps([r.model_dump(mode="json") for r in rows], indent=2)
