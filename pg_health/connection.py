"""Database connection management: hosts, clusters and primary discovery."""

from __future__ import annotations

import logging
import os
import random
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, TypeVar
from urllib.parse import parse_qsl, unquote

import psycopg2
import psycopg2.extras

from pg_health.exceptions import (
    Cancelled,
    ClusterInconsistency,
    ClusterUnavailable,
    InvalidUrl,
    NoPrimaryAvailable,
)
from pg_health.models import HostRole
from pg_health.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORT = 5432
DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_STATEMENT_TIMEOUT = 60.0

_URL_PREFIXES = ("postgresql://", "postgres://")
_REPLICA_ATTRS = {"read-only", "standby", "prefer-standby", "slave", "secondary"}
_PRIMARY_ATTRS = {"read-write", "primary", "master"}


@dataclass(frozen=True)
class HostSettings:
    """Per-host network limits applied to every connection."""

    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    statement_timeout: float = DEFAULT_STATEMENT_TIMEOUT

    def __post_init__(self):
        if self.connect_timeout < 1:
            raise ValueError("connect_timeout should be at least 1 second")
        if self.statement_timeout <= 0:
            raise ValueError("statement_timeout should be positive")


@dataclass(frozen=True)
class HostDescriptor:
    """Where one database host lives and how to log in to it."""

    host: str
    port: int = DEFAULT_PORT
    dbname: str = "postgres"
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    role_hint: HostRole = HostRole.UNKNOWN

    def __post_init__(self):
        if not self.host or not self.host.strip():
            raise ValueError("host cannot be blank")
        if not 0 < int(self.port) < 65536:
            raise ValueError(f"port should be in the range [1, 65535], got {self.port}")
        if not self.dbname or not self.dbname.strip():
            raise ValueError("dbname cannot be blank")

    @property
    def name(self) -> str:
        return f"{self.host}:{self.port}"

    def connect_kwargs(self, settings: HostSettings | None = None) -> dict[str, Any]:
        settings = settings or HostSettings()
        params: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "connect_timeout": settings.connect_timeout,
            "options": f"-c statement_timeout={int(settings.statement_timeout * 1000)}",
            "application_name": "pg-health",
        }
        if self.user:
            params["user"] = self.user
        if self.password:
            params["password"] = self.password
        elif os.environ.get("PGPASSWORD"):
            params["password"] = os.environ["PGPASSWORD"]
        return params


def connect(descriptor: HostDescriptor, settings: HostSettings | None = None):
    """Open a read-only autocommit psycopg2 connection to one host."""
    conn = psycopg2.connect(**descriptor.connect_kwargs(settings))
    conn.set_session(readonly=True, autocommit=True)
    return conn


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------


def _split_host_port(part: str, url: str) -> tuple[str, int]:
    if part.startswith("["):
        host, _, rest = part[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif part.count(":") == 1:
        host, _, port_text = part.partition(":")
    else:
        host, port_text = part, ""
    if not host:
        raise InvalidUrl(f"url contains an empty host: {url}")
    if not port_text:
        return host, DEFAULT_PORT
    if not port_text.isdigit():
        raise InvalidUrl(f"url contains invalid port '{port_text}': {url}")
    return host, int(port_text)


def parse_pg_url(
    url: str,
    user: str | None = None,
    password: str | None = None,
) -> list[HostDescriptor]:
    """Split a (possibly multi-host) libpq URL into one descriptor per host.

    Accepts ``postgresql://``, ``postgres://`` and ``jdbc:postgresql://``
    forms, e.g. ``postgresql://h1:5432,h2:5433/db?target_session_attrs=any``.
    Explicit user/password take precedence over the ones embedded in the URL.

    Returns:
        Distinct hosts sorted by ``host:port``.
    """
    if not url or not url.strip():
        raise InvalidUrl("url cannot be blank")
    raw = url.strip()
    if raw.startswith("jdbc:"):
        raw = raw[len("jdbc:"):]
    prefix = next((p for p in _URL_PREFIXES if raw.startswith(p)), None)
    if prefix is None:
        raise InvalidUrl(f"url has invalid format: {url}")

    netloc, _, path_and_query = raw[len(prefix):].partition("/")
    path, _, query = path_and_query.partition("?")
    dbname = unquote(path)
    if not dbname:
        raise InvalidUrl(f"url has no database name: {url}")
    params = dict(parse_qsl(query))

    url_user = url_password = None
    if "@" in netloc:
        userinfo, _, netloc = netloc.rpartition("@")
        raw_user, _, raw_password = userinfo.partition(":")
        url_user = unquote(raw_user) or None
        url_password = unquote(raw_password) or None

    attrs = (params.get("target_session_attrs") or params.get("targetServerType") or "").lower()
    role_hint = HostRole.REPLICA if attrs in _REPLICA_ATTRS else HostRole.UNKNOWN

    seen: dict[str, HostDescriptor] = {}
    for part in netloc.split(","):
        part = part.strip()
        if not part:
            continue
        host, port = _split_host_port(part, url)
        descriptor = HostDescriptor(
            host=host,
            port=port,
            dbname=dbname,
            user=user or url_user,
            password=password or url_password,
            role_hint=role_hint,
        )
        seen.setdefault(descriptor.name, descriptor)
    if not seen:
        raise InvalidUrl(f"url contains no hosts: {url}")
    return [seen[name] for name in sorted(seen)]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """Caller-side handle to abort an in-flight invocation."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.debug("Cancellation callback failed", exc_info=True)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self, what: str = "invocation"):
        if self.cancelled:
            raise Cancelled(f"{what} was cancelled")


# ---------------------------------------------------------------------------
# Host and cluster connections
# ---------------------------------------------------------------------------


ConnectFactory = Callable[[HostDescriptor, HostSettings], Any]


class HostConnection:
    """Runs read-only queries against one host.

    A fresh connection is opened per query so the object can be shared by
    concurrent invocations. Cancellation is scoped to the token passed to
    `query`: firing it aborts only the connections opened under that token.
    """

    def __init__(
        self,
        descriptor: HostDescriptor,
        settings: HostSettings | None = None,
        connect_factory: ConnectFactory | None = None,
    ):
        self.descriptor = descriptor
        self.settings = settings or HostSettings()
        self._connect_factory = connect_factory or connect

    @property
    def name(self) -> str:
        return self.descriptor.name

    def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """Run sql on a fresh connection and return the rows as dicts.

        When cancel_token fires, only the connection opened here is
        cancelled; queries issued by other callers keep running.
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(f"query on {self.name}")
        logger.debug("Executing on %s: %s %s", self.name, sql.strip().splitlines()[0], params)
        conn = self._connect_factory(self.descriptor, self.settings)
        unregister = (
            cancel_token.on_cancel(lambda: self._cancel(conn))
            if cancel_token is not None
            else (lambda: None)
        )
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"query on {self.name}")
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = [dict(row) for row in cur.fetchall()]
        finally:
            unregister()
            conn.close()
        logger.debug("Query on %s returned %d row(s)", self.name, len(rows))
        return rows

    def is_primary(self, cancel_token: CancellationToken | None = None) -> bool:
        rows = self.query("select not pg_is_in_recovery() as is_primary", cancel_token=cancel_token)
        return bool(rows and rows[0]["is_primary"])

    def _cancel(self, conn):
        try:
            conn.cancel()
        except Exception:
            logger.debug("Could not cancel query on %s", self.name, exc_info=True)

    def __eq__(self, other):
        if not isinstance(other, HostConnection):
            return NotImplemented
        return self.descriptor == other.descriptor

    def __hash__(self):
        return hash(self.descriptor)

    def __repr__(self):
        return f"<HostConnection {self.name} ({self.descriptor.role_hint.value})>"


class ClusterConnection:
    """An ordered set of hosts serving one logical database.

    Hosts may be added or removed while the object is in use; every
    invocation works on the immutable tuple returned by `snapshot()`.
    Roles are never cached here: use `resolve_primary` per invocation.
    """

    def __init__(
        self,
        hosts: Iterable[HostConnection | HostDescriptor],
        settings: HostSettings | None = None,
        connect_factory: ConnectFactory | None = None,
    ):
        self.settings = settings or HostSettings()
        self._connect_factory = connect_factory
        self._lock = threading.Lock()
        self._hosts: list[HostConnection] = []
        for host in hosts:
            self.add_host(host)
        if not self._hosts:
            raise ValueError("cluster should contain at least one host")

    @classmethod
    def from_urls(
        cls,
        urls: str | Sequence[str],
        user: str | None = None,
        password: str | None = None,
        settings: HostSettings | None = None,
        connect_factory: ConnectFactory | None = None,
    ) -> ClusterConnection:
        if isinstance(urls, str):
            urls = [urls]
        if not urls:
            raise InvalidUrl("urls should contain at least one url")
        descriptors: dict[str, HostDescriptor] = {}
        dbnames = set()
        for url in urls:
            for descriptor in parse_pg_url(url, user=user, password=password):
                descriptors.setdefault(descriptor.name, descriptor)
                dbnames.add(descriptor.dbname)
        if len(dbnames) > 1:
            raise InvalidUrl(f"urls point to different databases: {sorted(dbnames)}")
        return cls(
            [descriptors[name] for name in sorted(descriptors)],
            settings=settings,
            connect_factory=connect_factory,
        )

    def _as_connection(self, host: HostConnection | HostDescriptor) -> HostConnection:
        if isinstance(host, HostConnection):
            return host
        return HostConnection(host, self.settings, self._connect_factory)

    def add_host(self, host: HostConnection | HostDescriptor) -> HostConnection:
        conn = self._as_connection(host)
        with self._lock:
            if any(h.name == conn.name for h in self._hosts):
                raise ValueError(f"host {conn.name} is already part of the cluster")
            self._hosts.append(conn)
        logger.debug("Added host %s to cluster", conn.name)
        return conn

    def remove_host(self, name: str) -> HostConnection:
        with self._lock:
            for i, conn in enumerate(self._hosts):
                if conn.name == name:
                    if len(self._hosts) == 1:
                        raise ValueError("cannot remove the last host of a cluster")
                    del self._hosts[i]
                    logger.debug("Removed host %s from cluster", name)
                    return conn
        raise KeyError(f"host {name} is not part of the cluster")

    def snapshot(self) -> tuple[HostConnection, ...]:
        with self._lock:
            return tuple(self._hosts)

    @property
    def host_names(self) -> list[str]:
        return [h.name for h in self.snapshot()]

    def __len__(self):
        return len(self.snapshot())

    def __repr__(self):
        return f"<ClusterConnection {', '.join(self.host_names)}>"


@dataclass(frozen=True)
class HostResult:
    """Outcome of one per-host operation: a value or the error it raised."""

    host: str
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Topology:
    primary: HostConnection | None
    replicas: tuple[HostConnection, ...] = ()
    unreachable: dict[str, str] = field(default_factory=dict)


def _hosts_of(target: ClusterConnection | Sequence[HostConnection]) -> tuple[HostConnection, ...]:
    if isinstance(target, ClusterConnection):
        return target.snapshot()
    return tuple(target)


def for_each_host(
    target: ClusterConnection | Sequence[HostConnection],
    operation: Callable[[HostConnection, CancellationToken], T],
    max_workers: int | None = None,
    cancel_token: CancellationToken | None = None,
    fatal: tuple[type[BaseException], ...] = (),
    poll_interval: float = 0.1,
) -> list[HostResult]:
    """Run operation against every host in parallel.

    operation is called as ``operation(host, scope)``. ``scope`` is a token
    owned by this call: it fires when cancel_token does or when a fatal error
    aborts the call, so passing it to `HostConnection.query` cancels only the
    queries this call started.

    Per-host failures are recorded in the returned list (in cluster order)
    rather than raised. Exceptions of a type listed in `fatal` abort the call
    and propagate. Raises ClusterUnavailable when every host failed and
    Cancelled when the token fires.
    """
    hosts = _hosts_of(target)
    if not hosts:
        raise ClusterUnavailable("cluster has no hosts")
    workers = max(1, min(len(hosts), max_workers or len(hosts)))
    results: dict[str, HostResult] = {}

    scope = CancellationToken()
    unregister = cancel_token.on_cancel(scope.cancel) if cancel_token else (lambda: None)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pg-health")
    try:
        futures = {executor.submit(operation, h, scope): h for h in hosts}
        pending = set(futures)
        while pending:
            if cancel_token is not None and cancel_token.cancelled:
                for f in pending:
                    f.cancel()
                raise Cancelled("invocation was cancelled while waiting for hosts")
            done, pending = wait(pending, timeout=poll_interval, return_when=FIRST_COMPLETED)
            for future in done:
                host = futures[future]
                try:
                    results[host.name] = HostResult(host.name, value=future.result())
                except Exception as exc:
                    if isinstance(exc, Cancelled) or isinstance(exc, fatal):
                        for f in pending:
                            f.cancel()
                        scope.cancel()
                        raise
                    logger.warning("Host %s failed: %s", host.name, exc)
                    results[host.name] = HostResult(host.name, error=exc)
        if cancel_token is not None and cancel_token.cancelled:
            raise Cancelled("invocation was cancelled")
    finally:
        unregister()
        executor.shutdown(wait=True)

    ordered = [results[h.name] for h in hosts]
    if not any(r.ok for r in ordered):
        raise ClusterUnavailable(
            "no host in the cluster answered",
            host_errors={r.host: str(r.error) for r in ordered},
        )
    return ordered


def _lookup_order(
    hosts: Sequence[HostConnection], rng: random.Random | None
) -> list[HostConnection]:
    order = list(hosts)
    if rng is not None:
        rng.shuffle(order)
    # Hosts already known as replicas are the least likely primaries.
    return sorted(order, key=lambda h: h.descriptor.role_hint is HostRole.REPLICA)


def resolve_primary(
    cluster: ClusterConnection | Sequence[HostConnection],
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    rng: random.Random | None = None,
) -> HostConnection:
    """Find the writable host. Never cached: roles change on failover.

    Raises:
        NoPrimaryAvailable: some hosts answered but none is writable.
        ClusterUnavailable: no host answered at all.
    """
    hosts = _hosts_of(cluster)
    errors: dict[str, str] = {}
    answered = 0
    for host in _lookup_order(hosts, rng):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("primary discovery")
        try:
            primary = with_retry(
                lambda: host.is_primary(cancel_token),
                policy,
                description=f"primary lookup on {host.name}",
                should_stop=(lambda: cancel_token.cancelled) if cancel_token else None,
            )
        except Exception as exc:
            logger.warning("Exception during primary detection for host %s: %s", host.name, exc)
            errors[host.name] = str(exc)
            continue
        answered += 1
        if primary:
            logger.debug("Current primary is %s", host.name)
            return host
    if not answered:
        raise ClusterUnavailable("no host in the cluster answered", host_errors=errors)
    unreachable = f" (unreachable: {', '.join(sorted(errors))})" if errors else ""
    raise NoPrimaryAvailable(f"no writable host found among {len(hosts)} host(s){unreachable}")


def discover_topology(
    cluster: ClusterConnection | Sequence[HostConnection],
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
    max_workers: int | None = None,
) -> Topology:
    """Ask every host once and classify it as primary, replica or unreachable."""
    results = for_each_host(
        cluster,
        lambda h, scope: with_retry(
            lambda: h.is_primary(scope), policy, description=f"primary lookup on {h.name}"
        ),
        max_workers=max_workers,
        cancel_token=cancel_token,
    )
    hosts = {h.name: h for h in _hosts_of(cluster)}
    primaries = [hosts[r.host] for r in results if r.ok and r.value]
    if len(primaries) > 1:
        raise ClusterInconsistency(
            f"more than one writable host: {', '.join(h.name for h in primaries)}"
        )
    return Topology(
        primary=primaries[0] if primaries else None,
        replicas=tuple(hosts[r.host] for r in results if r.ok and not r.value),
        unreachable={r.host: str(r.error) for r in results if not r.ok},
    )
