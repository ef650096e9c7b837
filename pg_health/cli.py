"""CLI entry point for pg-health."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from pg_health import __version__
from pg_health.exceptions import PgHealthError
from pg_health.models import Diagnostic

_FORMATS = ("text", "json", "keyvalue")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-health",
        description="Check a PostgreSQL database or cluster for schema and index anti-patterns.",
    )
    parser.add_argument("--version", action="version", version=f"pg-health {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- list-checks --
    list_parser = subparsers.add_parser("list-checks", help="List all available checks")
    list_parser.add_argument(
        "--categories",
        help="Comma-separated list of categories to filter",
    )

    # -- check --
    check_parser = subparsers.add_parser("check", help="Run checks and report findings")
    _add_connection_args(check_parser)
    _add_selection_args(check_parser)
    check_parser.add_argument(
        "--format",
        "-f",
        choices=_FORMATS,
        default="text",
        help="Report format (default: text)",
    )
    check_parser.add_argument("--output", "-o", help="Write the report to this file instead of stdout")
    check_parser.add_argument(
        "--fail-on-findings",
        action="store_true",
        help="Exit with status 1 when any check reports findings",
    )
    check_parser.add_argument("--verbose", "-v", action="store_true", help="Print progress")

    # -- migrate --
    migrate_parser = subparsers.add_parser(
        "migrate", help="Generate corrective DDL for findings (printed, never executed)"
    )
    _add_connection_args(migrate_parser)
    _add_selection_args(migrate_parser, default_checks=Diagnostic.FOREIGN_KEYS_WITHOUT_INDEX.value)
    migrate_parser.add_argument(
        "--uppercase", action="store_true", help="Write SQL keywords in upper case"
    )
    migrate_parser.add_argument(
        "--no-concurrently",
        action="store_true",
        help="Do not use CONCURRENTLY (statements will lock writes)",
    )
    migrate_parser.add_argument(
        "--single-line", action="store_true", help="Write each statement on one line"
    )
    migrate_parser.add_argument(
        "--format",
        "-f",
        choices=("sql", "json"),
        default="sql",
        help="Output format (default: sql)",
    )
    migrate_parser.add_argument("--output", "-o", help="Write statements to this file instead of stdout")
    migrate_parser.add_argument("--verbose", "-v", action="store_true", help="Print progress")

    return parser


def _add_connection_args(parser: argparse.ArgumentParser):
    grp = parser.add_argument_group("connection")
    grp.add_argument(
        "--url",
        action="append",
        dest="urls",
        help="PostgreSQL URL, may list several hosts (postgresql://h1,h2/db); repeatable",
    )
    grp.add_argument("--user", "-U", default=None, help="Database user")
    grp.add_argument("--password", "-W", default=None, help="Database password (default: $PGPASSWORD)")
    grp.add_argument("--schema", "-s", default=None, help="Schema to inspect (default: public)")
    grp.add_argument("--config", "-c", default=None, help="Path to pg-health.yaml")


def _add_selection_args(parser: argparse.ArgumentParser, default_checks: str | None = None):
    grp = parser.add_argument_group("selection")
    grp.add_argument(
        "--checks",
        default=default_checks,
        help="Comma-separated list of checks to run"
        + (f" (default: {default_checks})" if default_checks else " (default: all)"),
    )
    grp.add_argument("--exclude", help="Comma-separated list of checks to skip")
    grp.add_argument(
        "--categories",
        help="Comma-separated list of check categories to run (default: all)",
    )


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def main(argv: list[str] | None = None):
    parser = build_parser()
    raw_args = argv if argv is not None else sys.argv[1:]
    if not raw_args:
        parser.print_help()
        sys.exit(1)

    args = parser.parse_args(raw_args)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging(getattr(args, "verbose", False))

    try:
        if args.command == "list-checks":
            _cmd_list_checks(args)
        elif args.command == "check":
            _cmd_check(args)
        elif args.command == "migrate":
            _cmd_migrate(args)
    except (PgHealthError, ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _cmd_list_checks(args):
    from pg_health.registry import describe, select_diagnostics

    checks = describe(select_diagnostics(categories=_split(args.categories)))

    if not checks:
        print("No checks found.")
        return

    current_cat = None
    for info in sorted(checks, key=lambda i: i.category):
        if info.category != current_cat:
            current_cat = info.category
            print(f"\n[{current_cat}]")
        tag = "[stats]" if info.diagnostic.is_statistical else ""
        print(f"  {info.name:40s} {tag:8s} {info.description}")


def _load(args):
    from pg_health.config import load_config, merge_cli_with_config

    config = load_config(args.config)
    exclude = _split(args.exclude)
    checks = _split(args.checks)
    return merge_cli_with_config(
        config,
        cli_urls=args.urls,
        cli_user=args.user,
        cli_password=args.password,
        cli_schema=args.schema,
        cli_exclude=set(exclude) if exclude else None,
        cli_include_only=set(checks) if checks else None,
        cli_categories=_split(args.categories),
    )


def _runner(config):
    from pg_health.connection import ClusterConnection
    from pg_health.scanner import DiagnosticRunner

    if not config.cluster.urls:
        raise ValueError("no database url given (use --url or the cluster section of pg-health.yaml)")
    cluster = ClusterConnection.from_urls(
        config.cluster.urls,
        user=config.cluster.user,
        password=config.cluster.effective_password,
        settings=config.cluster.host_settings(),
    )
    return DiagnosticRunner(cluster, config.runner_settings(), config.context)


def _selected(config) -> list[Diagnostic]:
    from pg_health.registry import select_diagnostics

    return select_diagnostics(
        categories=config.checks.categories,
        include_only=config.checks.include_only,
        exclude=config.checks.exclude,
    )


def _cmd_check(args):
    config = _load(args)
    runner = _runner(config)
    report = runner.scan(predicate=config.predicate(), diagnostics=_selected(config))

    if args.format == "json":
        from pg_health.reporters.json_reporter import render
    elif args.format == "keyvalue":
        from pg_health.reporters.keyvalue_reporter import render
    else:
        from pg_health.reporters.text_reporter import render
    _write_output(render(report), args.output)

    if args.fail_on_findings and report.findings_count:
        sys.exit(1)


def _cmd_migrate(args):
    from dataclasses import replace

    from pg_health.generator import MigrationGenerator

    config = _load(args)
    options = config.generator
    if args.uppercase:
        options = replace(options, uppercase_for_keywords=True)
    if args.no_concurrently:
        options = replace(options, concurrently=False)
    if args.single_line:
        options = replace(options, break_lines=False)

    generator = MigrationGenerator(options)
    diagnostics = [d for d in _selected(config) if generator.supports(d)]
    if not diagnostics:
        raise ValueError("none of the selected checks has a corrective statement")

    runner = _runner(config)
    results = runner.run_all(predicate=config.predicate(), diagnostics=diagnostics)
    for result in results.values():
        if result.error:
            print(f"Warning: {result.diagnostic.value} skipped: {result.error}", file=sys.stderr)
    findings = [f for r in results.values() for f in r.findings]
    statements = generator.generate_all(findings)

    if args.format == "json":
        from pg_health.reporters.json_reporter import render_migrations

        output = render_migrations(statements)
    else:
        output = "\n\n".join(s.sql for s in statements)
    _write_output(output, args.output)


def _write_output(output: str, path: str | None):
    """Write to the given file or stdout."""
    if not path:
        print(output)
        return
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w") as f:
        f.write(output + "\n")
    print(f"Report written to {path}", file=sys.stderr)


if __name__ == "__main__":
    main()
