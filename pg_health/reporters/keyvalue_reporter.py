"""Key-value health summary: one tab-separated line per diagnostic.

Lines look like ``2024-01-31T10:00:00Z<TAB>db_indexes_health<TAB>invalid_indexes<TAB>1``
and are meant for log shippers that graph the counts over time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pg_health.models import ScanReport

logger = logging.getLogger(__name__)

# Emitted on a dedicated logger so applications can route it to its own file.
kv_logger = logging.getLogger("pg_health.keyvalue")

KEY_NAME = "db_indexes_health"


def format_instant(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(microsecond=0)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def render_lines(report: ScanReport, now: datetime | None = None) -> list[str]:
    """Build one line per diagnostic that ran; failed diagnostics are skipped."""
    instant = format_instant(now or datetime.now(timezone.utc))
    lines = []
    for result in report.results:
        if result.error:
            logger.warning("%s was not counted: %s", result.diagnostic.value, result.error)
            continue
        count = len(result.findings)
        if count:
            logger.warning(
                "There are %d object(s) flagged by %s", count, result.diagnostic.value
            )
        lines.append(f"{instant}\t{KEY_NAME}\t{result.diagnostic.value}\t{count}")
    return lines


def render(report: ScanReport, now: datetime | None = None) -> str:
    return "\n".join(render_lines(report, now))


def log_report(report: ScanReport, now: datetime | None = None) -> list[str]:
    """Write the summary to the pg_health.keyvalue logger and return the lines."""
    lines = render_lines(report, now)
    for line in lines:
        kv_logger.info(line)
    return lines
