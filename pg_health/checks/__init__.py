"""Catalog queries and row mappers, grouped by the kind of object they inspect.

Every query takes the same named parameters (see PgContext.query_params):
``schema_name``, ``bloat_percentage_threshold`` and
``remaining_percentage_threshold``. Mappers turn one result row into a
DbObject, qualifying names through the PgContext.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from pg_health.models import Column, PgContext


def as_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value)


def as_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


def as_list(value: Any) -> list:
    """psycopg2 returns arrays as lists; a few catalog types come back as '{a,b}' strings."""
    if value is None:
        return []
    if isinstance(value, str):
        inner = value.strip("{}")
        return [v.strip('"') for v in inner.split(",")] if inner else []
    return list(value)


def make_columns(
    ctx: PgContext,
    table_name: str,
    column_names: Sequence[str] | None,
    nullables: Sequence[bool] | None = None,
) -> tuple[Column, ...]:
    names = as_list(column_names)
    flags = as_list(nullables) or [False] * len(names)
    qualified = ctx.qualify(table_name)
    return tuple(
        Column(table_name=qualified, column_name=name, nullable=as_bool(nullable))
        for name, nullable in zip(names, flags)
    )


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("t", "true")
    return bool(value)
