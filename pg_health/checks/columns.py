"""Column checks: descriptions, json and serial types."""

from __future__ import annotations

from typing import Any

from pg_health.checks import as_bool
from pg_health.models import Column, ColumnWithSerialType, ColumnWithType, PgContext

COLUMNS_WITHOUT_DESCRIPTION_SQL = """
select
    c.relname as table_name,
    a.attname as column_name,
    not a.attnotnull as column_not_null_is_false
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    join pg_catalog.pg_attribute a on a.attrelid = c.oid
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and a.attnum > 0
    and not a.attisdropped
    and coalesce(trim(col_description(c.oid, a.attnum)), '') = ''
order by c.relname, a.attname;
"""

COLUMNS_WITH_JSON_TYPE_SQL = """
select
    c.relname as table_name,
    a.attname as column_name,
    not a.attnotnull as column_not_null_is_false,
    format_type(a.atttypid, a.atttypmod) as column_type
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    join pg_catalog.pg_attribute a on a.attrelid = c.oid
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and a.attnum > 0
    and not a.attisdropped
    and a.atttypid = 'json'::regtype
order by c.relname, a.attname;
"""

# A serial column owns its sequence through an 'a' (auto) dependency and
# defaults to nextval() of it.
_SERIAL_COLUMNS_BASE = """
select
    c.relname as table_name,
    a.attname as column_name,
    not a.attnotnull as column_not_null_is_false,
    case
        when a.atttypid = 'int8'::regtype then 'bigserial'
        when a.atttypid = 'int2'::regtype then 'smallserial'
        else 'serial'
    end as column_type,
    s.relname as sequence_name
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    join pg_catalog.pg_attribute a on a.attrelid = c.oid
    join pg_catalog.pg_attrdef ad on ad.adrelid = c.oid and ad.adnum = a.attnum
    join pg_catalog.pg_depend d
        on d.refobjid = c.oid
        and d.refobjsubid = a.attnum
        and d.classid = 'pg_catalog.pg_class'::regclass
        and d.deptype = 'a'
    join pg_catalog.pg_class s on s.oid = d.objid and s.relkind = 'S'
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and a.attnum > 0
    and not a.attisdropped
    and a.atttypid in ('int2'::regtype, 'int4'::regtype, 'int8'::regtype)
    and position('nextval(' in pg_get_expr(ad.adbin, ad.adrelid)) = 1
    and {pk_filter} (
        select 1
        from pg_catalog.pg_constraint con
        where con.conrelid = c.oid
            and con.contype = 'p'
            and a.attnum = any(con.conkey)
    )
order by c.relname, a.attname;
"""

COLUMNS_WITH_SERIAL_TYPES_SQL = _SERIAL_COLUMNS_BASE.format(pk_filter="not exists")
PRIMARY_KEYS_WITH_SERIAL_TYPES_SQL = _SERIAL_COLUMNS_BASE.format(pk_filter="exists")


def map_column(row: dict[str, Any], ctx: PgContext) -> Column:
    return Column(
        table_name=ctx.qualify(row["table_name"]),
        column_name=row["column_name"],
        nullable=as_bool(row.get("column_not_null_is_false")),
    )


def map_column_with_type(row: dict[str, Any], ctx: PgContext) -> ColumnWithType:
    return ColumnWithType(
        table_name=ctx.qualify(row["table_name"]),
        column_name=row["column_name"],
        column_type=row["column_type"],
        nullable=as_bool(row.get("column_not_null_is_false")),
    )


def map_column_with_serial_type(row: dict[str, Any], ctx: PgContext) -> ColumnWithSerialType:
    return ColumnWithSerialType(
        table_name=ctx.qualify(row["table_name"]),
        column_name=row["column_name"],
        serial_type=row["column_type"],
        sequence_name=ctx.qualify(row["sequence_name"]),
        nullable=as_bool(row.get("column_not_null_is_false")),
    )
