"""Embeddable PostgreSQL schema health checks for single hosts and replicated clusters."""

__version__ = "0.1.0"

from pg_health.connection import (  # noqa: E402
    CancellationToken,
    ClusterConnection,
    HostConnection,
    HostDescriptor,
    HostSettings,
    for_each_host,
    parse_pg_url,
    resolve_primary,
)
from pg_health.diagnostics import get_check_info, list_diagnostics  # noqa: E402
from pg_health.exceptions import (  # noqa: E402
    Cancelled,
    ClusterInconsistency,
    ClusterUnavailable,
    ConflictingMigrations,
    InvalidUrl,
    NoPrimaryAvailable,
    PartialHostFailure,
    PgHealthError,
    UnknownParam,
    UnsupportedDiagnostic,
)
from pg_health.generator import GeneratingOptions, MigrationGenerator, generate, generate_all  # noqa: E402
from pg_health.maintenance import (  # noqa: E402
    ImportantParam,
    PgParam,
    get_last_stats_reset_timestamp,
    param_current_value,
    params_current_values,
    params_with_default_values,
)
from pg_health.models import (  # noqa: E402
    CheckResult,
    ConsistencyClass,
    Diagnostic,
    Finding,
    IdxPosition,
    MigrationAction,
    MigrationStatement,
    MigrationStep,
    PgContext,
    ScanReport,
)
from pg_health.predicates import EXCLUDE_ALL, KEEP_ALL, Predicate, predicate  # noqa: E402
from pg_health.retry import RetryPolicy, with_retry  # noqa: E402
from pg_health.scanner import DiagnosticRunner, RunnerSettings  # noqa: E402

__all__ = [
    "EXCLUDE_ALL",
    "KEEP_ALL",
    "CancellationToken",
    "Cancelled",
    "CheckResult",
    "ClusterConnection",
    "ClusterInconsistency",
    "ClusterUnavailable",
    "ConflictingMigrations",
    "ConsistencyClass",
    "Diagnostic",
    "DiagnosticRunner",
    "Finding",
    "GeneratingOptions",
    "HostConnection",
    "HostDescriptor",
    "HostSettings",
    "IdxPosition",
    "ImportantParam",
    "InvalidUrl",
    "MigrationAction",
    "MigrationGenerator",
    "MigrationStatement",
    "MigrationStep",
    "NoPrimaryAvailable",
    "PartialHostFailure",
    "PgContext",
    "PgHealthError",
    "PgParam",
    "Predicate",
    "RetryPolicy",
    "RunnerSettings",
    "ScanReport",
    "UnknownParam",
    "UnsupportedDiagnostic",
    "__version__",
    "for_each_host",
    "generate",
    "generate_all",
    "get_check_info",
    "get_last_stats_reset_timestamp",
    "list_diagnostics",
    "param_current_value",
    "params_current_values",
    "params_with_default_values",
    "parse_pg_url",
    "predicate",
    "resolve_primary",
    "with_retry",
]
