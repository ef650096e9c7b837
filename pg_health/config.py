"""Configuration loading and management for pg-health."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from pg_health.connection import DEFAULT_CONNECT_TIMEOUT, DEFAULT_STATEMENT_TIMEOUT, HostSettings
from pg_health.generator import GeneratingOptions
from pg_health.models import IdxPosition, NameResolution, PgContext
from pg_health.predicates import (
    Predicate,
    all_of,
    skip_bloat_under_threshold,
    skip_by_column_name,
    skip_by_constraint_name,
    skip_db_objects_by_name,
    skip_flyway_tables,
    skip_indexes_by_name,
    skip_liquibase_tables,
    skip_sequences_by_name,
    skip_small_indexes,
    skip_small_tables,
    skip_tables_by_name,
)
from pg_health.retry import RetryPolicy
from pg_health.scanner import DEFAULT_MAX_WORKERS, RunnerSettings

CONFIG_FILE_NAME = "pg-health.yaml"


@dataclass
class CheckConfig:
    """Configuration for which checks to include/exclude."""

    exclude: set[str] = field(default_factory=set)
    include_only: set[str] | None = None  # None = no whitelist, run all minus exclude
    categories: list[str] | None = None


@dataclass
class ClusterConfig:
    urls: list[str] = field(default_factory=list)
    user: str | None = None
    password: str | None = None
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    statement_timeout: float = DEFAULT_STATEMENT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    cross_check_structural: bool = False

    def host_settings(self) -> HostSettings:
        return HostSettings(
            connect_timeout=self.connect_timeout, statement_timeout=self.statement_timeout
        )

    @property
    def effective_password(self) -> str | None:
        return self.password or os.environ.get("PGPASSWORD")


@dataclass
class Exclusions:
    """Known-acceptable objects, left out of every result.

    Thresholds of zero disable the corresponding filter.
    """

    tables: list[str] = field(default_factory=list)
    indexes: list[str] = field(default_factory=list)
    sequences: list[str] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    objects: list[str] = field(default_factory=list)
    table_size_threshold_bytes: int = 0
    index_size_threshold_bytes: int = 0
    bloat_size_threshold_bytes: int = 0
    bloat_percentage_threshold: float = 0.0
    skip_flyway_tables: bool = False
    skip_liquibase_tables: bool = False

    def to_predicate(self, ctx: PgContext | None = None) -> Predicate:
        parts = [
            skip_tables_by_name(self.tables, ctx),
            skip_indexes_by_name(self.indexes, ctx),
            skip_sequences_by_name(self.sequences, ctx),
            skip_bloat_under_threshold(
                self.bloat_size_threshold_bytes, self.bloat_percentage_threshold
            ),
            skip_small_tables(self.table_size_threshold_bytes),
            skip_small_indexes(self.index_size_threshold_bytes),
            skip_by_column_name(self.columns),
            skip_by_constraint_name(self.constraints),
            skip_db_objects_by_name(self.objects, ctx),
        ]
        if self.skip_flyway_tables:
            parts.append(skip_flyway_tables(ctx))
        if self.skip_liquibase_tables:
            parts.append(skip_liquibase_tables(ctx))
        return all_of(*parts)


@dataclass
class Config:
    """Complete configuration for pg-health."""

    context: PgContext = field(default_factory=PgContext)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    exclusions: Exclusions = field(default_factory=Exclusions)
    checks: CheckConfig = field(default_factory=CheckConfig)
    generator: GeneratingOptions = field(default_factory=GeneratingOptions)

    def runner_settings(self) -> RunnerSettings:
        return RunnerSettings(
            max_workers=self.cluster.max_workers,
            retry=self.retry,
            cross_check_structural=self.cluster.cross_check_structural,
        )

    def predicate(self) -> Predicate:
        return self.exclusions.to_predicate(self.context)


def find_config_file() -> str | None:
    """Search for pg-health.yaml in cwd, then home dir.

    Returns:
        Path to config file if found, None otherwise.
    """
    cwd_config = Path.cwd() / CONFIG_FILE_NAME
    if cwd_config.is_file():
        return str(cwd_config)

    home_config = Path.home() / CONFIG_FILE_NAME
    if home_config.is_file():
        return str(home_config)

    return None


def load_config(config_path: str | None = None, auto_discover: bool = True) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Explicit path to config file. If None and auto_discover is True,
                     searches default locations.
        auto_discover: If True and config_path is None, search for config file.

    Returns:
        Config object. Returns default config if no file found.
    """
    if config_path is None and auto_discover:
        config_path = find_config_file()

    if config_path is None:
        return Config()

    if not os.path.isfile(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} should contain a mapping")
    return _parse_config(data)


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _parse_config(data: dict) -> Config:
    """Parse YAML data into Config object."""
    config = Config()

    if "context" in data:
        ctx = data["context"] or {}
        config.context = PgContext(
            schema_name=ctx.get("schema_name", "public"),
            bloat_percentage_threshold=float(ctx.get("bloat_percentage_threshold", 10.0)),
            remaining_percentage_threshold=float(ctx.get("remaining_percentage_threshold", 10.0)),
            name_resolution=NameResolution(ctx.get("name_resolution", "auto")),
        )

    if "cluster" in data:
        cl = data["cluster"] or {}
        config.cluster = ClusterConfig(
            urls=_as_list(cl.get("urls", cl.get("url"))),
            user=cl.get("user"),
            password=cl.get("password"),
            connect_timeout=int(cl.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),
            statement_timeout=float(cl.get("statement_timeout", DEFAULT_STATEMENT_TIMEOUT)),
            max_workers=int(cl.get("max_workers", DEFAULT_MAX_WORKERS)),
            cross_check_structural=bool(cl.get("cross_check_structural", False)),
        )

    if "retry" in data:
        r = data["retry"] or {}
        config.retry = RetryPolicy(
            max_attempts=int(r.get("max_attempts", 3)),
            initial_delay=float(r.get("initial_delay", 0.2)),
            multiplier=float(r.get("multiplier", 2.0)),
            max_delay=float(r.get("max_delay", 2.0)),
            jitter=float(r.get("jitter", 0.0)),
        )

    if "exclusions" in data:
        config.exclusions = _parse_exclusions(data["exclusions"] or {})

    if "checks" in data:
        config.checks = _parse_check_config(data["checks"] or {})

    if "generator" in data:
        g = data["generator"] or {}
        config.generator = GeneratingOptions(
            concurrently=bool(g.get("concurrently", True)),
            exclude_nulls=bool(g.get("exclude_nulls", True)),
            break_lines=bool(g.get("break_lines", True)),
            indentation=int(g.get("indentation", 4)),
            uppercase_for_keywords=bool(g.get("uppercase_for_keywords", False)),
            name_without_nulls=bool(g.get("name_without_nulls", True)),
            idx_position=IdxPosition(g.get("idx_position", "suffix")),
        )

    return config


def _parse_exclusions(data: dict) -> Exclusions:
    return Exclusions(
        tables=_as_list(data.get("tables")),
        indexes=_as_list(data.get("indexes")),
        sequences=_as_list(data.get("sequences")),
        columns=_as_list(data.get("columns")),
        constraints=_as_list(data.get("constraints")),
        objects=_as_list(data.get("objects")),
        table_size_threshold_bytes=int(data.get("table_size_threshold_bytes", 0)),
        index_size_threshold_bytes=int(data.get("index_size_threshold_bytes", 0)),
        bloat_size_threshold_bytes=int(data.get("bloat_size_threshold_bytes", 0)),
        bloat_percentage_threshold=float(data.get("bloat_percentage_threshold", 0.0)),
        skip_flyway_tables=bool(data.get("skip_flyway_tables", False)),
        skip_liquibase_tables=bool(data.get("skip_liquibase_tables", False)),
    )


def _parse_check_config(data: dict) -> CheckConfig:
    """Parse check configuration section."""
    exclude = set(_as_list(data.get("exclude")))

    include_only = None
    if "include_only" in data:
        include_only = set(_as_list(data["include_only"]))

    categories = None
    if "categories" in data:
        categories = _as_list(data["categories"])

    return CheckConfig(exclude=exclude, include_only=include_only, categories=categories)


def merge_cli_with_config(
    config: Config,
    cli_urls: list[str] | None = None,
    cli_user: str | None = None,
    cli_password: str | None = None,
    cli_schema: str | None = None,
    cli_exclude: set[str] | None = None,
    cli_include_only: set[str] | None = None,
    cli_categories: list[str] | None = None,
) -> Config:
    """Merge CLI arguments with config file settings.

    CLI arguments take precedence over config file.

    Returns:
        A new Config; the one passed in is left untouched.
    """
    cluster = config.cluster
    if cli_urls:
        cluster = replace(cluster, urls=list(cli_urls))
    if cli_user:
        cluster = replace(cluster, user=cli_user)
    if cli_password:
        cluster = replace(cluster, password=cli_password)

    context = config.context
    if cli_schema:
        context = replace(context, schema_name=cli_schema)

    checks = config.checks
    # CLI exclude adds to config exclude
    if cli_exclude:
        checks = replace(checks, exclude=checks.exclude | cli_exclude)
    # CLI include_only completely overrides config
    if cli_include_only is not None:
        checks = replace(checks, include_only=cli_include_only)
    if cli_categories is not None:
        checks = replace(checks, categories=cli_categories)

    return replace(config, cluster=cluster, context=context, checks=checks)
