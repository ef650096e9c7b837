"""Plain text report renderer for terminals."""

from __future__ import annotations

from pg_health.models import ScanReport


def render(report: ScanReport) -> str:
    lines = [
        f"pg-health report for schema {report.context.schema_name} "
        f"({', '.join(report.hosts)}) at {report.timestamp.isoformat()}",
        "",
    ]
    for result in report.results:
        name = result.diagnostic.value
        if result.error:
            lines.append(f"[ERROR] {name}: {result.error}")
            continue
        status = "OK" if result.passed else f"{len(result.findings)} finding(s)"
        lines.append(f"[{status}] {name}")
        for finding in result.findings:
            lines.append(f"    {finding.object_name}")
        if result.partial_failure is not None:
            lines.append(
                f"    (hosts excluded from merge: "
                f"{', '.join(result.partial_failure.excluded_hosts)})"
            )
    lines.append("")
    lines.append(
        f"{report.checks_total} check(s): {report.checks_passed} passed, "
        f"{report.checks_failed} failed, {report.findings_count} finding(s)"
    )
    return "\n".join(lines)
