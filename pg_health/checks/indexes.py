"""Index checks: bloat, duplicates, overlaps, invalid and unused indexes."""

from __future__ import annotations

from typing import Any

from pg_health.checks import as_float, as_int, as_list, make_columns
from pg_health.models import (
    Column,
    DuplicatedIndexes,
    Index,
    IndexWithBloat,
    IndexWithColumns,
    IndexWithNulls,
    PgContext,
    UnusedIndex,
)

# Rough btree estimate: every entry costs an item pointer (4), an index tuple
# header (8) and the average width of the key columns; pages keep a 24 byte
# header and a 16 byte special area.
BLOATED_INDEXES_SQL = """
with index_stats as (
    select
        i.indexrelid,
        tc.relname as table_name,
        ic.relname as index_name,
        ic.reltuples,
        ic.relpages,
        current_setting('block_size')::numeric as block_size,
        coalesce(
            substring(array_to_string(ic.reloptions, ' ') from 'fillfactor=([0-9]+)')::smallint,
            90
        ) as fill_factor,
        (
            select sum((1 - coalesce(s.null_frac, 0)) * coalesce(s.avg_width, 1024))
            from pg_catalog.pg_attribute a
                join pg_catalog.pg_stats s
                    on s.schemaname = n.nspname and s.tablename = tc.relname and s.attname = a.attname
            where a.attrelid = i.indrelid
                and a.attnum = any(i.indkey::int2[])
        ) as data_width
    from pg_catalog.pg_index i
        join pg_catalog.pg_class ic on ic.oid = i.indexrelid
        join pg_catalog.pg_class tc on tc.oid = i.indrelid
        join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
        join pg_catalog.pg_am am on am.oid = ic.relam
    where am.amname = 'btree'
        and ic.relpages > 0
        and n.nspname = %(schema_name)s
),
estimates as (
    select
        *,
        ceil(reltuples * (4 + 8 + data_width) / (block_size - 24 - 16) / fill_factor * 100) + 1
            as est_pages
    from index_stats
    where data_width is not null
)
select
    table_name,
    index_name,
    pg_relation_size(indexrelid) as index_size,
    ((relpages - est_pages) * block_size)::bigint as bloat_size,
    round((100 * (relpages - est_pages) / relpages)::numeric, 2) as bloat_percentage
from estimates
where relpages > est_pages
    and 100 * (relpages - est_pages) / relpages >= %(bloat_percentage_threshold)s
order by table_name, index_name;
"""

DUPLICATED_INDEXES_SQL = """
with index_info as (
    select
        tc.relname as table_name,
        ic.relname as index_name,
        pg_relation_size(i.indexrelid) as index_size,
        i.indrelid,
        array(
            select a.attname::text
            from unnest(i.indkey::int2[]) with ordinality as k(attnum, ord)
                join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = k.attnum
            order by k.ord
        ) as column_names,
        ic.relam,
        i.indkey::text as key_columns,
        i.indclass::text as opclasses,
        i.indcollation::text as collations,
        coalesce(pg_get_expr(i.indexprs, i.indrelid), '') as expressions,
        coalesce(pg_get_expr(i.indpred, i.indrelid), '') as predicate
    from pg_catalog.pg_index i
        join pg_catalog.pg_class ic on ic.oid = i.indexrelid
        join pg_catalog.pg_class tc on tc.oid = i.indrelid
        join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
    where n.nspname = %(schema_name)s
        and i.indisvalid
)
select
    table_name,
    json_agg(
        json_build_object(
            'index_name', index_name, 'index_size', index_size, 'column_names', column_names
        )
        order by index_name
    ) as indexes
from index_info
group by table_name, indrelid, relam, key_columns, opclasses, collations, expressions, predicate
having count(*) > 1
order by table_name;
"""

INDEXES_WITH_NULL_VALUES_SQL = """
select
    tc.relname as table_name,
    ic.relname as index_name,
    pg_relation_size(i.indexrelid) as index_size,
    a.attname as nullable_field
from pg_catalog.pg_index i
    join pg_catalog.pg_class ic on ic.oid = i.indexrelid
    join pg_catalog.pg_class tc on tc.oid = i.indrelid
    join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
    join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = i.indkey[0]
where n.nspname = %(schema_name)s
    and not i.indisunique
    and i.indnatts = 1
    and i.indpred is null
    and not a.attnotnull
order by tc.relname, ic.relname;
"""

INTERSECTED_INDEXES_SQL = """
with index_info as (
    select
        tc.relname as table_name,
        ic.relname as index_name,
        pg_relation_size(i.indexrelid) as index_size,
        i.indrelid,
        array(
            select a.attname::text
            from unnest(i.indkey::int2[]) with ordinality as k(attnum, ord)
                join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = k.attnum
            order by k.ord
        ) as column_names,
        ic.relam,
        i.indkey[0] as first_column,
        i.indkey::int2[] as key_columns
    from pg_catalog.pg_index i
        join pg_catalog.pg_class ic on ic.oid = i.indexrelid
        join pg_catalog.pg_class tc on tc.oid = i.indrelid
        join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
    where n.nspname = %(schema_name)s
        and i.indisvalid
        and i.indexprs is null
        and i.indpred is null
)
select
    a.table_name,
    json_build_array(
        json_build_object(
            'index_name', a.index_name,
            'index_size', a.index_size,
            'column_names', a.column_names
        ),
        json_build_object(
            'index_name', b.index_name,
            'index_size', b.index_size,
            'column_names', b.column_names
        )
    ) as indexes
from index_info a
    join index_info b
        on b.indrelid = a.indrelid
        and b.relam = a.relam
        and b.index_name > a.index_name
        and b.first_column = a.first_column
        and b.key_columns <> a.key_columns
where a.key_columns <@ b.key_columns
    or b.key_columns <@ a.key_columns
order by a.table_name, a.index_name, b.index_name;
"""

INVALID_INDEXES_SQL = """
select
    tc.relname as table_name,
    ic.relname as index_name,
    pg_relation_size(i.indexrelid) as index_size,
    array(
        select a.attname::text
        from unnest(i.indkey::int2[]) with ordinality as k(attnum, ord)
            join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = k.attnum
        order by k.ord
    ) as column_names
from pg_catalog.pg_index i
    join pg_catalog.pg_class ic on ic.oid = i.indexrelid
    join pg_catalog.pg_class tc on tc.oid = i.indrelid
    join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
where n.nspname = %(schema_name)s
    and not i.indisvalid
order by tc.relname, ic.relname;
"""

# Statistics are per host: an index unused here may be hot on a replica.
UNUSED_INDEXES_SQL = """
select
    psai.relname as table_name,
    psai.indexrelname as index_name,
    pg_relation_size(i.indexrelid) as index_size,
    psai.idx_scan as index_scans
from pg_catalog.pg_stat_all_indexes psai
    join pg_catalog.pg_index i on i.indexrelid = psai.indexrelid
where psai.schemaname = %(schema_name)s
    and not i.indisunique
    and i.indisvalid
    and psai.idx_scan < 50
    and not exists (
        select 1
        from pg_catalog.pg_constraint c
        where c.conindid = i.indexrelid
    )
order by psai.relname, psai.indexrelname;
"""

INDEXES_WITH_BOOLEAN_SQL = """
select
    tc.relname as table_name,
    ic.relname as index_name,
    pg_relation_size(i.indexrelid) as index_size,
    array_agg(a.attname::text order by a.attnum) as column_names,
    array_agg(not a.attnotnull order by a.attnum) as column_nullables
from pg_catalog.pg_index i
    join pg_catalog.pg_class ic on ic.oid = i.indexrelid
    join pg_catalog.pg_class tc on tc.oid = i.indrelid
    join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
    join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = any(i.indkey::int2[])
where n.nspname = %(schema_name)s
    and not i.indisunique
    and i.indisvalid
    and a.atttypid = 'bool'::regtype
group by tc.relname, ic.relname, i.indexrelid
order by tc.relname, ic.relname;
"""

BTREE_INDEXES_ON_ARRAY_COLUMNS_SQL = """
select
    tc.relname as table_name,
    ic.relname as index_name,
    pg_relation_size(i.indexrelid) as index_size,
    array_agg(a.attname::text order by a.attnum) as column_names,
    array_agg(not a.attnotnull order by a.attnum) as column_nullables
from pg_catalog.pg_index i
    join pg_catalog.pg_class ic on ic.oid = i.indexrelid
    join pg_catalog.pg_class tc on tc.oid = i.indrelid
    join pg_catalog.pg_namespace n on n.oid = tc.relnamespace
    join pg_catalog.pg_am am on am.oid = ic.relam
    join pg_catalog.pg_attribute a on a.attrelid = i.indrelid and a.attnum = any(i.indkey::int2[])
    join pg_catalog.pg_type t on t.oid = a.atttypid
where n.nspname = %(schema_name)s
    and am.amname = 'btree'
    and t.typcategory = 'A'
    and i.indisvalid
group by tc.relname, ic.relname, i.indexrelid
order by tc.relname, ic.relname;
"""


def map_index(row: dict[str, Any], ctx: PgContext) -> Index:
    return Index(
        table_name=ctx.qualify(row["table_name"]),
        name=ctx.qualify(row["index_name"]),
        size_bytes=as_int(row.get("index_size")),
        columns=tuple(as_list(row.get("column_names"))),
    )


def map_index_with_bloat(row: dict[str, Any], ctx: PgContext) -> IndexWithBloat:
    return IndexWithBloat(
        table_name=ctx.qualify(row["table_name"]),
        name=ctx.qualify(row["index_name"]),
        size_bytes=as_int(row.get("index_size")),
        bloat_size_bytes=max(as_int(row.get("bloat_size")), 0),
        bloat_percentage=min(max(as_float(row.get("bloat_percentage")), 0.0), 100.0),
    )


def map_unused_index(row: dict[str, Any], ctx: PgContext) -> UnusedIndex:
    return UnusedIndex(
        table_name=ctx.qualify(row["table_name"]),
        name=ctx.qualify(row["index_name"]),
        size_bytes=as_int(row.get("index_size")),
        index_scans=as_int(row.get("index_scans")),
    )


def map_index_with_nulls(row: dict[str, Any], ctx: PgContext) -> IndexWithNulls:
    table_name = ctx.qualify(row["table_name"])
    return IndexWithNulls(
        table_name=table_name,
        name=ctx.qualify(row["index_name"]),
        size_bytes=as_int(row.get("index_size")),
        nullable_column=Column(table_name, row["nullable_field"], nullable=True),
    )


def map_index_with_columns(row: dict[str, Any], ctx: PgContext) -> IndexWithColumns:
    return IndexWithColumns(
        table_name=ctx.qualify(row["table_name"]),
        name=ctx.qualify(row["index_name"]),
        size_bytes=as_int(row.get("index_size")),
        columns=make_columns(
            ctx, row["table_name"], row.get("column_names"), row.get("column_nullables")
        ),
    )


def map_duplicated_indexes(row: dict[str, Any], ctx: PgContext) -> DuplicatedIndexes:
    table_name = ctx.qualify(row["table_name"])
    return DuplicatedIndexes(
        table_name=table_name,
        indexes=tuple(
            Index(
                table_name=table_name,
                name=ctx.qualify(item["index_name"]),
                size_bytes=as_int(item.get("index_size")),
                columns=tuple(as_list(item.get("column_names"))),
            )
            for item in row["indexes"]
        ),
    )


__all__ = [
    "BLOATED_INDEXES_SQL",
    "BTREE_INDEXES_ON_ARRAY_COLUMNS_SQL",
    "DUPLICATED_INDEXES_SQL",
    "INDEXES_WITH_BOOLEAN_SQL",
    "INDEXES_WITH_NULL_VALUES_SQL",
    "INTERSECTED_INDEXES_SQL",
    "INVALID_INDEXES_SQL",
    "UNUSED_INDEXES_SQL",
    "map_duplicated_indexes",
    "map_index",
    "map_index_with_bloat",
    "map_index_with_columns",
    "map_index_with_nulls",
    "map_unused_index",
]
