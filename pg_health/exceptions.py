"""Errors raised by the diagnostic engine."""

from __future__ import annotations


class PgHealthError(Exception):
    """Base class for every error raised by pg_health."""


class InvalidUrl(PgHealthError, ValueError):
    """A connection URL could not be parsed."""


class ClusterUnavailable(PgHealthError):
    """No host of the cluster answered."""

    def __init__(self, message: str, host_errors: dict[str, str] | None = None):
        super().__init__(message)
        self.host_errors = dict(host_errors or {})


class NoPrimaryAvailable(PgHealthError):
    """A primary-only diagnostic was requested but no writable host was found."""

    def __init__(self, message: str, diagnostic: str | None = None):
        super().__init__(message)
        self.diagnostic = diagnostic


class UnsupportedDiagnostic(PgHealthError):
    """The diagnostic query is incompatible with the server (version or permissions)."""

    def __init__(self, message: str, diagnostic: str | None = None, host: str | None = None):
        super().__init__(message)
        self.diagnostic = diagnostic
        self.host = host


class ClusterInconsistency(PgHealthError):
    """Hosts disagree about something that replication should keep identical."""

    def __init__(self, message: str, diagnostic: str | None = None, per_host: dict | None = None):
        super().__init__(message)
        self.diagnostic = diagnostic
        self.per_host = dict(per_host or {})


class PartialHostFailure(PgHealthError):
    """Some hosts failed during a statistical run.

    Not fatal: it is attached to the CheckResult so callers can see which
    hosts were left out of the merge.
    """

    def __init__(self, diagnostic: str, failed_hosts: dict[str, str], answered_hosts: list[str]):
        super().__init__(
            f"{diagnostic}: {len(failed_hosts)} host(s) excluded from merge: "
            f"{', '.join(sorted(failed_hosts))}"
        )
        self.diagnostic = diagnostic
        self.failed_hosts = dict(failed_hosts)
        self.answered_hosts = list(answered_hosts)

    @property
    def excluded_hosts(self) -> list[str]:
        return sorted(self.failed_hosts)

    def to_dict(self) -> dict:
        return {
            "diagnostic": self.diagnostic,
            "excluded_hosts": self.failed_hosts,
            "answered_hosts": self.answered_hosts,
        }


class ConflictingMigrations(PgHealthError):
    """Two generated statements would fight over the same object."""

    def __init__(self, message: str, target: str, first: str, second: str):
        super().__init__(message)
        self.target = target
        self.first = first
        self.second = second


class Cancelled(PgHealthError):
    """The caller cancelled an in-flight invocation."""


class UnknownParam(PgHealthError):
    """The server has no configuration parameter with the requested name."""

    def __init__(self, message: str, name: str):
        super().__init__(message)
        self.name = name
