"""Exclusion predicates: filters that drop known-acceptable objects from results.

A predicate answers "keep this object?". Composition with `&` keeps an object
only when every part keeps it, so adding an exclusion can never bring an
object back.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pg_health.models import DbObject, PgContext

FLYWAY_TABLES = ("flyway_schema_history",)
LIQUIBASE_TABLES = ("databasechangelog", "databasechangeloglock")


class Predicate:
    """Composable keep-filter over DbObject values."""

    def __call__(self, obj: DbObject) -> bool:
        raise NotImplementedError

    def __and__(self, other: Predicate) -> Predicate:
        return all_of(self, other)


@dataclass(frozen=True)
class _FunctionPredicate(Predicate):
    func: Callable[[DbObject], bool]
    description: str = ""

    def __call__(self, obj: DbObject) -> bool:
        return bool(self.func(obj))

    def __repr__(self):
        return f"<Predicate {self.description or self.func!r}>"


@dataclass(frozen=True)
class _AllOf(Predicate):
    parts: tuple[Predicate, ...]

    def __call__(self, obj: DbObject) -> bool:
        return all(p(obj) for p in self.parts)


def predicate(func: Callable[[DbObject], bool], description: str = "") -> Predicate:
    """Wrap a plain function as a composable predicate."""
    if isinstance(func, Predicate):
        return func
    return _FunctionPredicate(func, description)


def all_of(*predicates: Predicate | Callable[[DbObject], bool]) -> Predicate:
    parts: list[Predicate] = []
    for p in predicates:
        p = predicate(p)
        if isinstance(p, _AllOf):
            parts.extend(p.parts)
        elif p is not KEEP_ALL:
            parts.append(p)
    if not parts:
        return KEEP_ALL
    if len(parts) == 1:
        return parts[0]
    return _AllOf(tuple(parts))


KEEP_ALL: Predicate = _FunctionPredicate(lambda _obj: True, "keep all")
EXCLUDE_ALL: Predicate = _FunctionPredicate(lambda _obj: False, "exclude all")


# -- name-based predicates ---------------------------------------------------


def _normalized(names: Iterable[str] | str, ctx: PgContext | None) -> frozenset[str]:
    if isinstance(names, str):
        names = [names]
    ctx = ctx or PgContext.of_default()
    result = set()
    for name in names:
        if not name or not name.strip():
            raise ValueError("object names to skip cannot be blank")
        result.add(ctx.qualify(name.strip()).lower())
    return frozenset(result)


def _table_names_of(obj: DbObject) -> list[str]:
    table_name = getattr(obj, "table_name", None)
    return [table_name] if table_name else []


def _index_names_of(obj: DbObject) -> list[str]:
    if hasattr(obj, "indexes"):
        return [i.name for i in obj.indexes]
    if obj.object_type.value == "index":
        return [obj.name]
    return []


def _column_names_of(obj: DbObject) -> list[str]:
    if hasattr(obj, "column_name"):
        return [obj.column_name]
    if hasattr(obj, "nullable_column"):
        return [obj.nullable_column.column_name]
    if hasattr(obj, "columns"):
        return [c.column_name for c in obj.columns]
    return []


def _constraint_names_of(obj: DbObject) -> list[str]:
    if hasattr(obj, "foreign_keys"):
        return [fk.name for fk in obj.foreign_keys]
    if obj.object_type.value == "constraint":
        return [obj.name]
    return []


def _skip_when_any(
    extract: Callable[[DbObject], list[str]], names: frozenset[str], description: str
) -> Predicate:
    if not names:
        return KEEP_ALL

    def keep(obj: DbObject) -> bool:
        return not any(n.lower() in names for n in extract(obj))

    return _FunctionPredicate(keep, description)


def skip_tables_by_name(names: Iterable[str] | str, ctx: PgContext | None = None) -> Predicate:
    normalized = _normalized(names, ctx)
    return _skip_when_any(_table_names_of, normalized, f"skip tables {sorted(normalized)}")


def skip_indexes_by_name(names: Iterable[str] | str, ctx: PgContext | None = None) -> Predicate:
    normalized = _normalized(names, ctx)
    return _skip_when_any(_index_names_of, normalized, f"skip indexes {sorted(normalized)}")


def skip_sequences_by_name(names: Iterable[str] | str, ctx: PgContext | None = None) -> Predicate:
    normalized = _normalized(names, ctx)

    def sequence_names(obj: DbObject) -> list[str]:
        return [obj.name] if obj.object_type.value == "sequence" else []

    return _skip_when_any(sequence_names, normalized, f"skip sequences {sorted(normalized)}")


def skip_by_column_name(names: Iterable[str] | str) -> Predicate:
    """Skip objects touching any of the given columns (bare column names)."""
    if isinstance(names, str):
        names = [names]
    normalized = frozenset(n.strip().lower() for n in names)
    if any(not n for n in normalized):
        raise ValueError("column names to skip cannot be blank")
    return _skip_when_any(_column_names_of, normalized, f"skip columns {sorted(normalized)}")


def skip_by_constraint_name(names: Iterable[str] | str) -> Predicate:
    if isinstance(names, str):
        names = [names]
    normalized = frozenset(n.strip().lower() for n in names)
    if any(not n for n in normalized):
        raise ValueError("constraint names to skip cannot be blank")
    return _skip_when_any(
        _constraint_names_of, normalized, f"skip constraints {sorted(normalized)}"
    )


def skip_db_objects_by_name(names: Iterable[str] | str, ctx: PgContext | None = None) -> Predicate:
    """Skip objects whose own name matches, whatever their kind."""
    normalized = _normalized(names, ctx)
    return _skip_when_any(lambda obj: [obj.name], normalized, f"skip objects {sorted(normalized)}")


def skip_flyway_tables(ctx: PgContext | None = None) -> Predicate:
    return skip_tables_by_name(FLYWAY_TABLES, ctx)


def skip_liquibase_tables(ctx: PgContext | None = None) -> Predicate:
    return skip_tables_by_name(LIQUIBASE_TABLES, ctx)


# -- size / bloat thresholds -------------------------------------------------


def skip_small_tables(size_threshold_bytes: int) -> Predicate:
    if size_threshold_bytes < 0:
        raise ValueError("size_threshold_bytes cannot be less than zero")
    if size_threshold_bytes == 0:
        return KEEP_ALL

    def keep(obj: DbObject) -> bool:
        if obj.object_type.value != "table" or not hasattr(obj, "size_bytes"):
            return True
        return obj.size_bytes >= size_threshold_bytes

    return _FunctionPredicate(keep, f"skip tables under {size_threshold_bytes} bytes")


def skip_small_indexes(size_threshold_bytes: int) -> Predicate:
    if size_threshold_bytes < 0:
        raise ValueError("size_threshold_bytes cannot be less than zero")
    if size_threshold_bytes == 0:
        return KEEP_ALL

    def keep(obj: DbObject) -> bool:
        if hasattr(obj, "total_size_bytes"):
            return obj.total_size_bytes >= size_threshold_bytes
        if obj.object_type.value != "index" or not hasattr(obj, "size_bytes"):
            return True
        return obj.size_bytes >= size_threshold_bytes

    return _FunctionPredicate(keep, f"skip indexes under {size_threshold_bytes} bytes")


def skip_bloat_under_threshold(size_threshold_bytes: int, percentage_threshold: float) -> Predicate:
    """Keep bloated objects only when both bloat size and percentage reach the thresholds."""
    if size_threshold_bytes < 0:
        raise ValueError("size_threshold_bytes cannot be less than zero")
    if percentage_threshold < 0.0 or percentage_threshold > 100.0:
        raise ValueError("percentage_threshold should be in the range from 0.0 to 100.0 inclusive")
    if size_threshold_bytes == 0 and percentage_threshold == 0.0:
        return KEEP_ALL

    def keep(obj: DbObject) -> bool:
        if not hasattr(obj, "bloat_size_bytes"):
            return True
        return (
            obj.bloat_size_bytes >= size_threshold_bytes
            and obj.bloat_percentage >= percentage_threshold
        )

    return _FunctionPredicate(
        keep, f"skip bloat under {size_threshold_bytes} bytes / {percentage_threshold}%"
    )
