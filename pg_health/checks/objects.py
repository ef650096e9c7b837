"""Checks that span every kind of schema object: naming and identifier length."""

from __future__ import annotations

from typing import Any

from pg_health.models import AnyObject, PgContext, PgObjectType

# One row per named object in the schema, with its type spelled the way
# PgObjectType values are.
_ALL_OBJECTS = """
with all_objects as (
    select
        c.relname::text as object_name,
        case c.relkind
            when 'r' then 'table'
            when 'p' then 'table'
            when 'i' then 'index'
            when 'I' then 'index'
            when 'S' then 'sequence'
            when 'v' then 'view'
            when 'm' then 'materialized view'
        end as object_type
    from pg_catalog.pg_class c
        join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    where n.nspname = %(schema_name)s
        and c.relkind in ('r', 'p', 'i', 'I', 'S', 'v', 'm')

    union all

    select
        p.proname::text as object_name,
        'function' as object_type
    from pg_catalog.pg_proc p
        join pg_catalog.pg_namespace n on n.oid = p.pronamespace
    where n.nspname = %(schema_name)s
        and not exists (
            select 1
            from pg_catalog.pg_depend d
            where d.objid = p.oid
                and d.deptype = 'e'
        )

    union all

    select
        con.conname::text as object_name,
        'constraint' as object_type
    from pg_catalog.pg_constraint con
        join pg_catalog.pg_namespace n on n.oid = con.connamespace
    where n.nspname = %(schema_name)s
        and con.conrelid <> 0

    union all

    select
        (c.relname || '.' || a.attname)::text as object_name,
        'column' as object_type
    from pg_catalog.pg_attribute a
        join pg_catalog.pg_class c on c.oid = a.attrelid
        join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    where n.nspname = %(schema_name)s
        and c.relkind in ('r', 'p', 'v', 'm')
        and a.attnum > 0
        and not a.attisdropped
)
"""

POSSIBLE_OBJECT_NAME_OVERFLOW_SQL = _ALL_OBJECTS + """
select distinct object_name, object_type
from all_objects
where length(
    case
        when object_type = 'column' then split_part(object_name, '.', 2)
        else object_name
    end
) >= current_setting('max_identifier_length')::int
order by object_name, object_type;
"""

# Lower case letters, digits and underscores only: anything else forces
# every caller to quote the identifier.
OBJECTS_NOT_FOLLOWING_NAMING_CONVENTION_SQL = _ALL_OBJECTS + """
select distinct object_name, object_type
from all_objects
where object_name ~ '[^a-z0-9_.]'
    or (object_type <> 'column' and object_name ~ '[.]')
order by object_name, object_type;
"""


def map_any_object(row: dict[str, Any], ctx: PgContext) -> AnyObject:
    return AnyObject(
        name=ctx.qualify(row["object_name"]),
        object_type=PgObjectType.value_from(row["object_type"]),
    )
