"""Selection of diagnostics from the static catalog."""

from __future__ import annotations

from collections.abc import Iterable

from pg_health.diagnostics import CATALOG, CATEGORIES, CheckInfo, list_diagnostics
from pg_health.models import Diagnostic


def _resolve(names: Iterable[str | Diagnostic] | None) -> set[Diagnostic]:
    result = set()
    for name in names or ():
        if isinstance(name, Diagnostic):
            result.add(name)
        else:
            result.add(Diagnostic.from_name(name.strip()))
    return result


def select_diagnostics(
    categories: Iterable[str] | None = None,
    include_only: Iterable[str | Diagnostic] | None = None,
    exclude: Iterable[str | Diagnostic] | None = None,
) -> list[Diagnostic]:
    """Pick diagnostics from the catalog, keeping catalog order.

    Args:
        categories: If provided, only diagnostics in these categories.
        include_only: If provided, only these diagnostics (identifiers or members).
        exclude: Diagnostics to leave out; applied last.

    Returns:
        Selected diagnostics in catalog order.

    Raises:
        ValueError: An unknown category or diagnostic name was given.
    """
    categories = set(categories or ())
    unknown = categories - set(CATEGORIES)
    if unknown:
        raise ValueError(
            f"Unknown categories: {', '.join(sorted(unknown))} "
            f"(expected one of: {', '.join(CATEGORIES)})"
        )
    wanted = _resolve(include_only)
    skipped = _resolve(exclude)

    selected = []
    for diagnostic in list_diagnostics():
        if categories and CATALOG[diagnostic].category not in categories:
            continue
        if wanted and diagnostic not in wanted:
            continue
        if diagnostic in skipped:
            continue
        selected.append(diagnostic)
    return selected


def describe(diagnostics: Iterable[Diagnostic] | None = None) -> list[CheckInfo]:
    if diagnostics is None:
        diagnostics = list_diagnostics()
    return [CATALOG[d] for d in diagnostics]
