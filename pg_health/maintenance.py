"""Read-only server maintenance helpers: statistics age and configuration parameters."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pg_health.connection import (
    CancellationToken,
    ClusterConnection,
    HostConnection,
    resolve_primary,
)
from pg_health.exceptions import UnknownParam
from pg_health.retry import SEMANTIC_ERRORS, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

STATS_RESET_SQL = """
select stats_reset
from pg_catalog.pg_stat_database
where datname = current_database();
"""

SHOW_ALL_SQL = "show all"

# Run-time parameter names: letters, digits, underscores and the dot of
# extension-qualified names such as pg_stat_statements.max.
_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class PgParam:
    """A configuration parameter and the value reported by ``show``."""

    name: str
    value: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be blank")
        if self.value is None:
            raise ValueError(f"value for '{self.name}' cannot be None")


class ImportantParam(Enum):
    """Parameters worth tuning, with the value PostgreSQL ships by default."""

    SHARED_BUFFERS = ("shared_buffers", "128MB")
    WORK_MEM = ("work_mem", "4MB")
    MAINTENANCE_WORK_MEM = ("maintenance_work_mem", "64MB")
    RANDOM_PAGE_COST = ("random_page_cost", "4")
    LOG_MIN_DURATION_STATEMENT = ("log_min_duration_statement", "-1")
    IDLE_IN_TRANSACTION_SESSION_TIMEOUT = ("idle_in_transaction_session_timeout", "0")
    STATEMENT_TIMEOUT = ("statement_timeout", "0")
    LOCK_TIMEOUT = ("lock_timeout", "0")
    EFFECTIVE_CACHE_SIZE = ("effective_cache_size", "4GB")
    TEMP_FILE_LIMIT = ("temp_file_limit", "-1")

    def __init__(self, param_name: str, default_value: str):
        self.param_name = param_name
        self.default_value = default_value


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def stats_reset_time(
    host: HostConnection,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> datetime | None:
    """When statistics of the current database were last reset on host.

    Returns None if they have never been reset. Naive timestamps are taken
    as UTC.
    """
    rows = with_retry(
        lambda: host.query(STATS_RESET_SQL, cancel_token=cancel_token),
        policy,
        description=f"statistics reset time on {host.name}",
    )
    reset = rows[0].get("stats_reset") if rows else None
    if not isinstance(reset, datetime):
        return None
    if reset.tzinfo is None:
        reset = reset.replace(tzinfo=timezone.utc)
    return reset


def get_last_stats_reset_timestamp(
    cluster: ClusterConnection,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    rng: random.Random | None = None,
) -> datetime | None:
    """Statistics reset time as seen by the current primary.

    Raises:
        NoPrimaryAvailable: no writable host answered.
        ClusterUnavailable: no host answered at all.
    """
    primary = resolve_primary(cluster, policy, cancel_token, rng)
    logger.debug("Reading statistics reset time on primary %s", primary.name)
    return stats_reset_time(primary, policy, cancel_token)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def params_current_values(
    host: HostConnection,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> set[PgParam]:
    """Every run-time parameter of host, as listed by ``show all``."""
    rows = with_retry(
        lambda: host.query(SHOW_ALL_SQL, cancel_token=cancel_token),
        policy,
        description=f"show all on {host.name}",
    )
    return {PgParam(row["name"], row["setting"]) for row in rows}


def param_current_value(
    host: HostConnection,
    param: ImportantParam | str,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> PgParam:
    """Current value of one parameter.

    Raises:
        ValueError: name is not a valid parameter name.
        UnknownParam: the server does not know the parameter.
    """
    name = param.param_name if isinstance(param, ImportantParam) else param
    if not name or not _PARAM_NAME.match(name):
        raise ValueError(f"invalid parameter name: {name!r}")
    try:
        rows = with_retry(
            lambda: host.query(f"show {name};", cancel_token=cancel_token),
            policy,
            description=f"show {name} on {host.name}",
        )
    except SEMANTIC_ERRORS as exc:
        raise UnknownParam(f"{host.name} has no parameter {name}: {exc}".strip(), name) from exc
    return PgParam(name, rows[0][name])


def params_with_default_values(
    host: HostConnection,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> set[PgParam]:
    """Important parameters still left at their shipped default on host."""
    current = {p.name: p for p in params_current_values(host, policy, cancel_token)}
    untouched = set()
    for param in ImportantParam:
        value = current.get(param.param_name)
        if value is None:
            logger.debug("%s does not report %s", host.name, param.param_name)
            continue
        if value.value == param.default_value:
            untouched.add(value)
    return untouched
