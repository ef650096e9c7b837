"""Constraint checks: foreign keys and not validated constraints."""

from __future__ import annotations

from typing import Any

from pg_health.checks import make_columns
from pg_health.models import Constraint, DuplicatedForeignKeys, ForeignKey, PgContext

# An index supports a foreign key when its leading columns are exactly the
# key columns, in any order.
FOREIGN_KEYS_WITHOUT_INDEX_SQL = """
select
    c.relname as table_name,
    con.conname as constraint_name,
    array_agg(a.attname::text order by x.ordinality) as column_names,
    array_agg(not a.attnotnull order by x.ordinality) as column_nullables
from pg_catalog.pg_constraint con
    join pg_catalog.pg_class c on c.oid = con.conrelid
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    cross join lateral unnest(con.conkey) with ordinality as x(attnum, ordinality)
    join pg_catalog.pg_attribute a on a.attrelid = con.conrelid and a.attnum = x.attnum
where con.contype = 'f'
    and n.nspname = %(schema_name)s
    and not exists (
        select 1
        from pg_catalog.pg_index i
        where i.indrelid = con.conrelid
            and i.indpred is null
            and (i.indkey::int2[])[0:array_length(con.conkey, 1) - 1] @> con.conkey
    )
group by c.relname, con.conname
order by c.relname, con.conname;
"""

NOT_VALID_CONSTRAINTS_SQL = """
select
    c.relname as table_name,
    con.conname as constraint_name,
    con.contype as constraint_type
from pg_catalog.pg_constraint con
    join pg_catalog.pg_class c on c.oid = con.conrelid
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
where not con.convalidated
    and con.contype in ('c', 'f')
    and n.nspname = %(schema_name)s
order by c.relname, con.conname;
"""

_FOREIGN_KEY_INFO = """
with fk_info as (
    select
        con.oid,
        c.relname as table_name,
        con.conname as constraint_name,
        con.conrelid,
        con.confrelid,
        con.conkey,
        con.confkey,
        (
            select json_agg(a.attname::text order by x.ordinality)
            from unnest(con.conkey) with ordinality as x(attnum, ordinality)
                join pg_catalog.pg_attribute a
                    on a.attrelid = con.conrelid and a.attnum = x.attnum
        ) as column_names,
        (
            select json_agg(not a.attnotnull order by x.ordinality)
            from unnest(con.conkey) with ordinality as x(attnum, ordinality)
                join pg_catalog.pg_attribute a
                    on a.attrelid = con.conrelid and a.attnum = x.attnum
        ) as column_nullables
    from pg_catalog.pg_constraint con
        join pg_catalog.pg_class c on c.oid = con.conrelid
        join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    where con.contype = 'f'
        and n.nspname = %(schema_name)s
)
"""

DUPLICATED_FOREIGN_KEYS_SQL = _FOREIGN_KEY_INFO + """
select
    a.table_name,
    json_build_array(
        json_build_object(
            'constraint_name', a.constraint_name,
            'column_names', a.column_names,
            'column_nullables', a.column_nullables
        ),
        json_build_object(
            'constraint_name', b.constraint_name,
            'column_names', b.column_names,
            'column_nullables', b.column_nullables
        )
    ) as foreign_keys
from fk_info a
    join fk_info b
        on b.conrelid = a.conrelid
        and b.confrelid = a.confrelid
        and b.constraint_name > a.constraint_name
        and b.conkey = a.conkey
        and b.confkey = a.confkey
order by a.table_name, a.constraint_name, b.constraint_name;
"""

INTERSECTED_FOREIGN_KEYS_SQL = _FOREIGN_KEY_INFO + """
select
    a.table_name,
    json_build_array(
        json_build_object(
            'constraint_name', a.constraint_name,
            'column_names', a.column_names,
            'column_nullables', a.column_nullables
        ),
        json_build_object(
            'constraint_name', b.constraint_name,
            'column_names', b.column_names,
            'column_nullables', b.column_nullables
        )
    ) as foreign_keys
from fk_info a
    join fk_info b
        on b.conrelid = a.conrelid
        and b.confrelid = a.confrelid
        and b.constraint_name > a.constraint_name
        and (b.conkey <> a.conkey or b.confkey <> a.confkey)
where a.conkey && b.conkey
order by a.table_name, a.constraint_name, b.constraint_name;
"""

FOREIGN_KEYS_WITH_UNMATCHED_COLUMN_TYPE_SQL = """
select
    c.relname as table_name,
    con.conname as constraint_name,
    array_agg(a.attname::text order by x.ordinality) as column_names,
    array_agg(not a.attnotnull order by x.ordinality) as column_nullables
from pg_catalog.pg_constraint con
    join pg_catalog.pg_class c on c.oid = con.conrelid
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    cross join lateral unnest(con.conkey, con.confkey) with ordinality as x(attnum, fattnum, ordinality)
    join pg_catalog.pg_attribute a on a.attrelid = con.conrelid and a.attnum = x.attnum
    join pg_catalog.pg_attribute fa on fa.attrelid = con.confrelid and fa.attnum = x.fattnum
where con.contype = 'f'
    and n.nspname = %(schema_name)s
group by c.relname, con.conname
having bool_or(a.atttypid <> fa.atttypid or a.atttypmod <> fa.atttypmod)
order by c.relname, con.conname;
"""


def _foreign_key(ctx: PgContext, table_name: str, data: dict[str, Any]) -> ForeignKey:
    return ForeignKey(
        table_name=ctx.qualify(table_name),
        name=data["constraint_name"],
        columns=make_columns(ctx, table_name, data["column_names"], data.get("column_nullables")),
    )


def map_foreign_key(row: dict[str, Any], ctx: PgContext) -> ForeignKey:
    return _foreign_key(ctx, row["table_name"], row)


def map_duplicated_foreign_keys(row: dict[str, Any], ctx: PgContext) -> DuplicatedForeignKeys:
    return DuplicatedForeignKeys(
        table_name=ctx.qualify(row["table_name"]),
        foreign_keys=tuple(_foreign_key(ctx, row["table_name"], fk) for fk in row["foreign_keys"]),
    )


def map_constraint(row: dict[str, Any], ctx: PgContext) -> Constraint:
    return Constraint(
        table_name=ctx.qualify(row["table_name"]),
        name=row["constraint_name"],
        constraint_type=row.get("constraint_type") or "c",
    )
