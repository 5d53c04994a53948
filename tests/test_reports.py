import csv
import io
import json

import pytest

from carekeep.audit.export import EXPORT_FIELDS, AuditExporter
from carekeep.audit.models import AuditEntry, AuditResult, RiskLevel
from carekeep.reports.compliance import (
    ComplianceReporter, ComplianceStatus, compliance_score,
)


def record(recorder, result=AuditResult.SUCCESS, risk=RiskLevel.LOW, action="patient:read"):
    return recorder.append(AuditEntry(
        principal_id="doc-1",
        principal_role="doctor",
        action=action,
        resource_type="patient",
        resource_id="pat-1",
        result=result,
        risk_level=risk,
        correlation_id="corr-1",
    ))


def test_score_with_twelve_violations_in_hundred(recorder, clock):
    for _ in range(88):
        record(recorder)
    for _ in range(8):
        record(recorder, AuditResult.DENIED, RiskLevel.HIGH)
    for _ in range(4):
        record(recorder, AuditResult.FAILURE, RiskLevel.MEDIUM)

    report = ComplianceReporter(recorder, clock).generate()

    assert report.overall_compliance_score == 88
    assert report.total_events == 100
    assert report.total_violations == 12
    assert report.total_data_access == 92
    assert report.authorized_access == 88
    assert report.unauthorized_access == 8
    assert report.violations_by_risk["high"] == 8
    assert report.violations_by_risk["medium"] == 4
    assert report.compliance_status == ComplianceStatus.COMPLIANT
    assert "High priority: address high-severity violations within 24 hours" in report.recommendations


def test_report_is_read_only(recorder, clock):
    record(recorder)
    ComplianceReporter(recorder, clock).generate()
    assert len(recorder) == 1


def test_empty_window_scores_full(recorder, clock):
    report = ComplianceReporter(recorder, clock).generate()
    assert report.overall_compliance_score == 100
    assert report.total_events == 0
    assert report.recommendations == [
        "Maintain current compliance practices and continue monitoring"
    ]


def test_window_limits_events(recorder, clock):
    record(recorder, AuditResult.DENIED, RiskLevel.CRITICAL)
    clock.advance(hours=1)
    start = clock.now()
    record(recorder)
    record(recorder)

    report = ComplianceReporter(recorder, clock).generate(start=start, end=clock.now())
    assert report.total_events == 2
    assert report.total_violations == 0


def test_status_bands(recorder, clock):
    for _ in range(7):
        record(recorder)
    for _ in range(3):
        record(recorder, AuditResult.DENIED, RiskLevel.CRITICAL)

    report = ComplianceReporter(recorder, clock).generate()
    assert report.overall_compliance_score == 70
    assert report.compliance_status == ComplianceStatus.AT_RISK
    assert report.recommendations[0].startswith("Immediate action required")


def test_inverted_window_rejected(recorder, clock):
    with pytest.raises(ValueError):
        ComplianceReporter(recorder, clock).generate(start=clock.now(),
                                                     end=clock.now().replace(year=2020))


@pytest.mark.parametrize("total,violations,score", [
    (0, 0, 100.0),
    (3, 1, 66.67),
    (10, 10, 0.0),
    (1, 5, 0.0),
])
def test_compliance_score(total, violations, score):
    assert compliance_score(total, violations) == score


def test_csv_export_flat_rows(recorder):
    record(recorder)
    record(recorder, AuditResult.DENIED, RiskLevel.HIGH, action="user:delete")

    text = AuditExporter(recorder).to_csv()
    rows = list(csv.DictReader(io.StringIO(text)))

    assert list(rows[0].keys()) == EXPORT_FIELDS
    assert [r["action"] for r in rows] == ["patient:read", "user:delete"]
    assert rows[1]["result"] == "denied"
    assert rows[1]["risk_level"] == "high"
    assert rows[0]["correlation_id"] == "corr-1"


def test_export_is_recorded_as_disclosure(recorder):
    record(recorder)

    data = json.loads(AuditExporter(recorder).to_json(exported_by=("co-1", "compliance_officer")))

    assert len(data) == 1
    last = list(recorder.query())[-1]
    assert last.action == "audit.export"
    assert last.details["record_count"] == 1
    assert last.details["format"] == "json"
