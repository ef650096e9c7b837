"""JSON report renderer."""

from __future__ import annotations

import json
from collections.abc import Iterable

from pg_health import __version__
from pg_health.diagnostics import get_check_info
from pg_health.models import CheckResult, Finding, MigrationStatement, ScanReport


def result_to_dict(result: CheckResult) -> dict:
    info = get_check_info(result.diagnostic)
    return {
        "diagnostic": result.diagnostic.value,
        "category": info.category,
        "consistency": result.diagnostic.consistency.value,
        "description": info.description,
        "passed": result.passed,
        "error": result.error,
        "hosts": list(result.hosts),
        "partial_failure": result.partial_failure.to_dict() if result.partial_failure else None,
        "findings": [f.db_object.to_dict() for f in result.findings],
    }


def report_to_dict(report: ScanReport) -> dict:
    return {
        "meta": {
            "tool": "pg-health",
            "version": __version__,
            "timestamp": report.timestamp.isoformat(),
            "schema_name": report.context.schema_name,
            "hosts": list(report.hosts),
        },
        "summary": {
            "total_checks": report.checks_total,
            "checks_passed": report.checks_passed,
            "checks_failed": report.checks_failed,
            "findings": report.findings_count,
        },
        "results": [result_to_dict(r) for r in report.results],
    }


def render(report: ScanReport) -> str:
    """Render a ScanReport as a JSON string."""
    return json.dumps(report_to_dict(report), indent=2, default=str)


def render_findings(findings: Iterable[Finding]) -> str:
    return json.dumps([f.to_dict() for f in findings], indent=2, default=str)


def render_migrations(statements: Iterable[MigrationStatement]) -> str:
    return json.dumps([s.to_dict() for s in statements], indent=2, default=str)
