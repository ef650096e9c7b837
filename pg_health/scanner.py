"""Diagnostic runner: dispatches checks to hosts, merges and filters the results."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pg_health.connection import (
    CancellationToken,
    ClusterConnection,
    HostConnection,
    for_each_host,
    resolve_primary,
)
from pg_health.diagnostics import CheckInfo, get_check_info, list_diagnostics
from pg_health.exceptions import (
    Cancelled,
    ClusterInconsistency,
    NoPrimaryAvailable,
    PartialHostFailure,
    UnsupportedDiagnostic,
)
from pg_health.maintenance import stats_reset_time
from pg_health.models import (
    CheckResult,
    DbObject,
    Diagnostic,
    Finding,
    PgContext,
    ScanReport,
    object_sort_key,
)
from pg_health.predicates import KEEP_ALL, Predicate, predicate as as_predicate
from pg_health.retry import SEMANTIC_ERRORS, TRANSIENT_ERRORS, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

# Errors recorded on a single diagnostic by run_all; anything else aborts the call.
RECOVERABLE_ERRORS = (NoPrimaryAvailable, UnsupportedDiagnostic, ClusterInconsistency)


@dataclass(frozen=True)
class RunnerSettings:
    """Knobs for one DiagnosticRunner.

    Attributes:
        max_workers: Upper bound on hosts queried in parallel.
        retry: Policy applied to every single-host query.
        cross_check_structural: Also run structural checks on replicas and
            fail with ClusterInconsistency when the hosts disagree.
        shuffle_primary_lookup: Ask hosts in random order when looking for
            the primary, to spread load over the cluster.
    """

    max_workers: int = DEFAULT_MAX_WORKERS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cross_check_structural: bool = False
    shuffle_primary_lookup: bool = False

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError("max_workers should be at least 1")


def merge_structural(
    per_host: dict[str, list[DbObject]], diagnostic: Diagnostic | None = None
) -> list[DbObject]:
    """Return the single answer of a structural check, refusing to pick between disagreeing hosts."""
    if not per_host:
        return []
    hosts = list(per_host)
    reference = set(per_host[hosts[0]])
    for host in hosts[1:]:
        if set(per_host[host]) != reference:
            name = diagnostic.value if diagnostic else "structural check"
            raise ClusterInconsistency(
                f"{name}: hosts {hosts[0]} and {host} disagree about the schema",
                diagnostic=diagnostic.value if diagnostic else None,
                per_host={h: sorted(o.name for o in objs) for h, objs in per_host.items()},
            )
    return list(per_host[hosts[0]])


def merge_statistical(per_host: Sequence[Sequence[DbObject]]) -> list[DbObject]:
    """Keep objects flagged by every answering host.

    Instances come from the first host, so metrics shown to the caller are
    the ones reported by the first answering host in cluster order.
    """
    if not per_host:
        return []
    common = set(per_host[0])
    for objects in per_host[1:]:
        common &= set(objects)
    merged = []
    seen = set()
    for obj in per_host[0]:
        if obj in common and obj not in seen:
            seen.add(obj)
            merged.append(obj)
    return merged


def _log_stats_reset(host: HostConnection, cancel_token: CancellationToken | None = None):
    if not logger.isEnabledFor(logging.INFO):
        return
    try:
        reset = stats_reset_time(host, RetryPolicy.no_retry(), cancel_token)
    except TRANSIENT_ERRORS + SEMANTIC_ERRORS as exc:
        logger.debug("Could not read statistics reset time on %s: %s", host.name, exc)
        return
    if reset is None:
        logger.info("Statistics on %s have never been reset", host.name)
        return
    age = datetime.now(timezone.utc) - reset
    logger.info(
        "Last statistics reset on %s was %d day(s) ago (%s)",
        host.name,
        age.days,
        reset.isoformat(),
    )


class DiagnosticRunner:
    """Runs diagnostics against a cluster.

    The runner keeps no state between invocations: the host list is
    snapshotted and the primary resolved again on every call.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        settings: RunnerSettings | None = None,
        context: PgContext | None = None,
    ):
        self.cluster = cluster
        self.settings = settings or RunnerSettings()
        self.context = context or PgContext.of_default()

    # -- single host -----------------------------------------------------

    def _query_host(
        self,
        host: HostConnection,
        info: CheckInfo,
        ctx: PgContext,
        cancel_token: CancellationToken | None,
    ) -> list[DbObject]:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(info.name)
        try:
            rows = with_retry(
                lambda: host.query(info.query, ctx.query_params(), cancel_token),
                self.settings.retry,
                description=f"{info.name} on {host.name}",
                should_stop=(lambda: cancel_token.cancelled) if cancel_token else None,
            )
        except SEMANTIC_ERRORS as exc:
            raise UnsupportedDiagnostic(
                f"{info.name} is not supported on {host.name}: {exc}".strip(),
                diagnostic=info.name,
                host=host.name,
            ) from exc
        except Exception as exc:
            if cancel_token is not None and cancel_token.cancelled:
                raise Cancelled(f"{info.name} on {host.name} was cancelled") from exc
            raise

        try:
            return [info.mapper(row, ctx) for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise UnsupportedDiagnostic(
                f"{info.name} returned rows of an unexpected shape on {host.name}: {exc!r}",
                diagnostic=info.name,
                host=host.name,
            ) from exc

    def _primary(
        self, hosts: Sequence[HostConnection], info: CheckInfo, cancel_token
    ) -> HostConnection:
        rng = random.Random() if self.settings.shuffle_primary_lookup else None
        try:
            return resolve_primary(hosts, self.settings.retry, cancel_token, rng)
        except NoPrimaryAvailable as exc:
            raise NoPrimaryAvailable(f"{info.name}: {exc}", diagnostic=info.name) from exc

    # -- per consistency class -------------------------------------------

    def _run_structural(self, hosts, info, ctx, cancel_token) -> tuple[list[DbObject], list[str]]:
        primary = self._primary(hosts, info, cancel_token)
        if self.settings.cross_check_structural and len(hosts) > 1:
            results = for_each_host(
                hosts,
                lambda h, scope: self._query_host(h, info, ctx, scope),
                max_workers=self.settings.max_workers,
                cancel_token=cancel_token,
                fatal=(UnsupportedDiagnostic,),
            )
            answered = {r.host: r.value for r in results if r.ok}
            if primary.name not in answered:
                raise NoPrimaryAvailable(
                    f"{info.name}: primary {primary.name} did not answer",
                    diagnostic=info.name,
                )
            # Primary first so its instances are the ones returned.
            ordered = {primary.name: answered.pop(primary.name), **answered}
            return merge_structural(ordered, info.diagnostic), list(ordered)

        try:
            objects = self._query_host(primary, info, ctx, cancel_token)
        except TRANSIENT_ERRORS as exc:
            raise NoPrimaryAvailable(
                f"{info.name}: primary {primary.name} failed: {exc}",
                diagnostic=info.name,
            ) from exc
        return objects, [primary.name]

    def _run_statistical(self, hosts, info, ctx, cancel_token):
        def operation(host: HostConnection, scope: CancellationToken) -> list[DbObject]:
            _log_stats_reset(host, scope)
            return self._query_host(host, info, ctx, scope)

        results = for_each_host(
            hosts,
            operation,
            max_workers=self.settings.max_workers,
            cancel_token=cancel_token,
            fatal=(UnsupportedDiagnostic,),
        )
        answered = [r for r in results if r.ok]
        failed = {r.host: f"{type(r.error).__name__}: {r.error}" for r in results if not r.ok}
        partial = None
        if failed:
            partial = PartialHostFailure(info.name, failed, [r.host for r in answered])
            logger.warning("%s", partial)
        merged = merge_statistical([r.value for r in answered])
        return merged, [r.host for r in answered], partial

    # -- public entry points ---------------------------------------------

    def run(
        self,
        diagnostic: Diagnostic | str,
        context: PgContext | None = None,
        predicate: Predicate | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CheckResult:
        """Run one diagnostic and return its filtered, sorted findings.

        Args:
            diagnostic: Catalog member or its identifier.
            context: Schema and thresholds; defaults to the runner's context.
            predicate: Keep-filter applied after merging (default keeps all).
            cancel_token: Cancels outstanding host queries when fired.

        Raises:
            NoPrimaryAvailable: structural check and no writable host.
            UnsupportedDiagnostic: the query does not work on this server.
            ClusterInconsistency: cross-checked structural results differ.
            ClusterUnavailable: no host answered.
            Cancelled: cancel_token fired.
        """
        info = get_check_info(diagnostic)
        ctx = context or self.context
        keep = as_predicate(predicate) if predicate is not None else KEEP_ALL
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(info.name)

        hosts = self.cluster.snapshot()
        logger.debug("Running %s on %d host(s)", info.name, len(hosts))
        partial = None
        if info.diagnostic.is_statistical:
            objects, answered, partial = self._run_statistical(hosts, info, ctx, cancel_token)
        else:
            objects, answered = self._run_structural(hosts, info, ctx, cancel_token)

        kept = sorted((obj for obj in objects if keep(obj)), key=object_sort_key)
        result = CheckResult(
            diagnostic=info.diagnostic,
            findings=[Finding(info.diagnostic, obj) for obj in kept],
            hosts=answered,
            partial_failure=partial,
        )
        logger.debug(
            "%s: %d finding(s) (%d before exclusions)", info.name, len(kept), len(objects)
        )
        return result

    def run_all(
        self,
        context: PgContext | None = None,
        predicate: Predicate | None = None,
        diagnostics: Iterable[Diagnostic | str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict[Diagnostic, CheckResult]:
        """Run several diagnostics; one entry per diagnostic, in catalog order.

        Failures that concern a single diagnostic are recorded on its
        CheckResult.error; ClusterUnavailable and Cancelled abort the call.
        """
        if diagnostics is None:
            selected = list_diagnostics()
        else:
            selected = [get_check_info(d).diagnostic for d in diagnostics]
            order = {d: i for i, d in enumerate(list_diagnostics())}
            selected = sorted(set(selected), key=order.__getitem__)

        results: dict[Diagnostic, CheckResult] = {}
        for diagnostic in selected:
            try:
                results[diagnostic] = self.run(diagnostic, context, predicate, cancel_token)
            except RECOVERABLE_ERRORS as exc:
                logger.warning("%s failed: %s", diagnostic.value, exc)
                results[diagnostic] = CheckResult(
                    diagnostic=diagnostic, error=f"{type(exc).__name__}: {exc}"
                )
        return results

    def scan(
        self,
        context: PgContext | None = None,
        predicate: Predicate | None = None,
        diagnostics: Iterable[Diagnostic | str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ScanReport:
        ctx = context or self.context
        report = ScanReport(
            timestamp=datetime.now(timezone.utc),
            context=ctx,
            hosts=self.cluster.host_names,
        )
        results = self.run_all(ctx, predicate, diagnostics, cancel_token)
        report.results = list(results.values())
        logger.info(
            "Scan finished: %d check(s), %d passed, %d failed, %d finding(s)",
            report.checks_total,
            report.checks_passed,
            report.checks_failed,
            report.findings_count,
        )
        return report
