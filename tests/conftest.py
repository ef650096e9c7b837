"""Shared fixtures for pg-health tests: fake psycopg2 hosts with canned rows."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import psycopg2
import psycopg2.extensions
import pytest

from pg_health.connection import ClusterConnection, HostDescriptor, HostSettings
from pg_health.diagnostics import get_check_info
from pg_health.models import (
    CheckResult,
    Diagnostic,
    Finding,
    HostRole,
    Index,
    PgContext,
    ScanReport,
    Table,
)
from pg_health.retry import RetryPolicy
from pg_health.scanner import RunnerSettings

NEVER = object()


class FakeServer:
    """One fake database host.

    Args:
        primary: Answer to the primary lookup.
        down: Every connection attempt fails with OperationalError.
        rows: Canned result rows, keyed by Diagnostic or SQL text.
        errors: Exceptions raised for a Diagnostic's query.
        transient_failures: Number of leading queries that fail before the
            server starts answering.
        blocking: Diagnostics (or SQL text) whose execution hangs until the
            connection is cancelled or `release()` is called.
        settings: Run-time parameters answered by ``show``.
        stats_reset: Statistics reset time, or NEVER for a null column.
    """

    def __init__(
        self,
        primary=False,
        down=False,
        rows=None,
        errors=None,
        transient_failures=0,
        blocking=(),
        settings=None,
        stats_reset=datetime(2026, 1, 1, tzinfo=timezone.utc),
    ):
        self.primary = primary
        self.down = down
        self.rows = {_sql(d): r for d, r in (rows or {}).items()}
        self.errors = {_sql(d): e for d, e in (errors or {}).items()}
        self.transient_failures = transient_failures
        self.blocking = {_sql(d) for d in blocking}
        self.settings = dict(settings or {})
        self.stats_reset = stats_reset
        self.executed: list[str] = []
        self.cancelled = 0
        self._blocked = 0
        self._released = threading.Event()
        self._cond = threading.Condition()

    def answer(self, sql):
        self.executed.append(sql)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        if "pg_is_in_recovery" in sql:
            return [{"is_primary": self.primary}]
        if "stats_reset" in sql:
            return [{"stats_reset": None if self.stats_reset is NEVER else self.stats_reset}]
        if sql == "show all":
            return [{"name": k, "setting": v, "description": ""} for k, v in self.settings.items()]
        if sql.startswith("show "):
            name = sql[len("show "):].rstrip(";").strip()
            if name not in self.settings:
                raise psycopg2.ProgrammingError(f'unrecognized configuration parameter "{name}"')
            return [{name: self.settings[name]}]
        if sql in self.errors:
            raise self.errors[sql]
        return [dict(r) for r in self.rows.get(sql, [])]

    def block(self, conn: FakeConnection):
        """Hang until conn is cancelled or the server is released."""
        with self._cond:
            self._blocked += 1
            self._cond.notify_all()
        deadline = 5.0
        while deadline > 0:
            if conn.cancel_requested.is_set():
                raise psycopg2.extensions.QueryCanceledError(
                    "canceling statement due to user request"
                )
            if self._released.wait(0.01):
                return
            deadline -= 0.01
        raise AssertionError("blocked query was never released")

    def wait_blocked(self, count: int, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._blocked >= count, timeout)

    def release(self):
        self._released.set()


def _sql(key) -> str:
    return get_check_info(key).query if isinstance(key, Diagnostic) else key


class FakeCursor:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.server = conn.server
        self._rows: list[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if sql in self.server.blocking:
            self.server.block(self.conn)
        self._rows = self.server.answer(sql)

    def fetchall(self):
        return self._rows


class FakeConnection:
    def __init__(self, server: FakeServer):
        self.server = server
        self.closed = False
        self.cancel_requested = threading.Event()

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def cancel(self):
        self.server.cancelled += 1
        self.cancel_requested.set()

    def close(self):
        self.closed = True


def make_cluster(servers: dict[str, FakeServer], role_hints: dict[str, HostRole] | None = None):
    """Build a ClusterConnection whose hosts are answered by the given fake servers."""
    role_hints = role_hints or {}

    def connect_factory(descriptor: HostDescriptor, settings: HostSettings):
        server = servers[descriptor.host]
        if server.down:
            raise psycopg2.OperationalError(f"could not connect to server {descriptor.host}")
        return FakeConnection(server)

    descriptors = [
        HostDescriptor(host=name, role_hint=role_hints.get(name, HostRole.UNKNOWN))
        for name in servers
    ]
    return ClusterConnection(descriptors, connect_factory=connect_factory)


def unused_index_row(index_name: str, table_name: str = "orders", scans: int = 0) -> dict:
    return {
        "table_name": table_name,
        "index_name": index_name,
        "index_size": 8192,
        "index_scans": scans,
    }


@pytest.fixture
def fast_settings() -> RunnerSettings:
    """Runner settings that retry without sleeping."""
    return RunnerSettings(retry=RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0))


@pytest.fixture
def ctx() -> PgContext:
    return PgContext()


@pytest.fixture
def sample_report() -> ScanReport:
    """ScanReport with a clean check, a check with findings and a failed check."""
    report = ScanReport(
        timestamp=datetime(2026, 1, 27, 12, 0, 0, tzinfo=timezone.utc),
        context=PgContext(),
        hosts=["db1:5432", "db2:5432"],
    )
    report.results.append(CheckResult(diagnostic=Diagnostic.INVALID_INDEXES, hosts=["db1:5432"]))
    report.results.append(
        CheckResult(
            diagnostic=Diagnostic.TABLES_WITHOUT_PRIMARY_KEY,
            findings=[
                Finding(Diagnostic.TABLES_WITHOUT_PRIMARY_KEY, Table("audit_log", 16384)),
                Finding(Diagnostic.TABLES_WITHOUT_PRIMARY_KEY, Table("orders", 8192)),
            ],
            hosts=["db1:5432"],
        )
    )
    report.results.append(
        CheckResult(
            diagnostic=Diagnostic.UNUSED_INDEXES,
            error="UnsupportedDiagnostic: permission denied for pg_stat_all_indexes",
        )
    )
    return report


@pytest.fixture
def invalid_index_finding() -> Finding:
    return Finding(Diagnostic.INVALID_INDEXES, Index("orders", "idx_orders_customer", 8192))
