"""Table checks: bloat, missing indexes, primary keys, links and column counts."""

from __future__ import annotations

from typing import Any

from pg_health.checks import as_float, as_int, make_columns
from pg_health.models import (
    PgContext,
    Table,
    TableWithBloat,
    TableWithColumns,
    TableWithMissingIndex,
)

# Heap estimate: 24 byte page header, 23 byte tuple header plus alignment and
# a 4 byte item pointer per row; fill factor defaults to 100 for tables.
BLOATED_TABLES_SQL = """
with table_stats as (
    select
        c.oid,
        c.relname as table_name,
        c.reltuples,
        c.relpages,
        current_setting('block_size')::numeric as block_size,
        coalesce(
            substring(array_to_string(c.reloptions, ' ') from 'fillfactor=([0-9]+)')::smallint,
            100
        ) as fill_factor,
        (
            select sum((1 - coalesce(s.null_frac, 0)) * coalesce(s.avg_width, 1024))
            from pg_catalog.pg_stats s
            where s.schemaname = n.nspname and s.tablename = c.relname
        ) as data_width
    from pg_catalog.pg_class c
        join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    where c.relkind in ('r', 'm')
        and c.relpages > 0
        and n.nspname = %(schema_name)s
),
estimates as (
    select
        *,
        ceil(reltuples * (24 + 4 + data_width) / (block_size - 24) / fill_factor * 100) + 1
            as est_pages
    from table_stats
    where data_width is not null
)
select
    table_name,
    pg_table_size(oid) as table_size,
    ((relpages - est_pages) * block_size)::bigint as bloat_size,
    round((100 * (relpages - est_pages) / relpages)::numeric, 2) as bloat_percentage
from estimates
where relpages > est_pages
    and 100 * (relpages - est_pages) / relpages >= %(bloat_percentage_threshold)s
order by table_name;
"""

# Only tables bigger than five pages: sequential scans over tiny tables are fine.
TABLES_WITH_MISSING_INDEXES_SQL = """
select
    psat.relname as table_name,
    pg_table_size(psat.relid) as table_size,
    coalesce(psat.seq_scan, 0) as seq_scan,
    coalesce(psat.idx_scan, 0) as idx_scan
from pg_catalog.pg_stat_all_tables psat
where psat.schemaname = %(schema_name)s
    and pg_table_size(psat.relid) > 5 * 8192
    and coalesce(psat.seq_scan, 0) > coalesce(psat.idx_scan, 0)
order by psat.relname;
"""

TABLES_WITHOUT_PRIMARY_KEY_SQL = """
select
    c.relname as table_name,
    pg_table_size(c.oid) as table_size,
    greatest(c.reltuples, 0)::bigint as row_count
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and not exists (
        select 1
        from pg_catalog.pg_constraint con
        where con.conrelid = c.oid
            and con.contype = 'p'
    )
order by c.relname;
"""

TABLES_WITHOUT_DESCRIPTION_SQL = """
select
    c.relname as table_name,
    pg_table_size(c.oid) as table_size,
    greatest(c.reltuples, 0)::bigint as row_count
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and coalesce(trim(obj_description(c.oid, 'pg_class')), '') = ''
order by c.relname;
"""

TABLES_NOT_LINKED_TO_OTHERS_SQL = """
select
    c.relname as table_name,
    pg_table_size(c.oid) as table_size,
    greatest(c.reltuples, 0)::bigint as row_count
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
    and not exists (
        select 1
        from pg_catalog.pg_constraint con
        where con.contype = 'f'
            and (con.conrelid = c.oid or con.confrelid = c.oid)
    )
order by c.relname;
"""

TABLES_WITH_ZERO_OR_ONE_COLUMN_SQL = """
select
    c.relname as table_name,
    pg_table_size(c.oid) as table_size,
    coalesce(
        array_agg(a.attname::text order by a.attnum) filter (where a.attname is not null),
        '{}'
    ) as column_names,
    coalesce(
        array_agg(not a.attnotnull order by a.attnum) filter (where a.attname is not null),
        '{}'
    ) as column_nullables
from pg_catalog.pg_class c
    join pg_catalog.pg_namespace n on n.oid = c.relnamespace
    left join pg_catalog.pg_attribute a
        on a.attrelid = c.oid and a.attnum > 0 and not a.attisdropped
where c.relkind in ('r', 'p')
    and not c.relispartition
    and n.nspname = %(schema_name)s
group by c.oid, c.relname
having count(a.attname) <= 1
order by c.relname;
"""


def map_table(row: dict[str, Any], ctx: PgContext) -> Table:
    return Table(
        name=ctx.qualify(row["table_name"]),
        size_bytes=as_int(row.get("table_size")),
        row_count=as_int(row.get("row_count")),
    )


def map_table_with_bloat(row: dict[str, Any], ctx: PgContext) -> TableWithBloat:
    return TableWithBloat(
        name=ctx.qualify(row["table_name"]),
        size_bytes=as_int(row.get("table_size")),
        bloat_size_bytes=max(as_int(row.get("bloat_size")), 0),
        bloat_percentage=min(max(as_float(row.get("bloat_percentage")), 0.0), 100.0),
    )


def map_table_with_missing_index(row: dict[str, Any], ctx: PgContext) -> TableWithMissingIndex:
    return TableWithMissingIndex(
        name=ctx.qualify(row["table_name"]),
        size_bytes=as_int(row.get("table_size")),
        seq_scans=as_int(row.get("seq_scan")),
        index_scans=as_int(row.get("idx_scan")),
    )


def map_table_with_columns(row: dict[str, Any], ctx: PgContext) -> TableWithColumns:
    return TableWithColumns(
        name=ctx.qualify(row["table_name"]),
        size_bytes=as_int(row.get("table_size")),
        columns=make_columns(
            ctx, row["table_name"], row.get("column_names"), row.get("column_nullables")
        ),
    )
