"""Function checks."""

from __future__ import annotations

from typing import Any

from pg_health.models import PgContext, StoredFunction

FUNCTIONS_WITHOUT_DESCRIPTION_SQL = """
select
    p.proname as function_name,
    pg_get_function_identity_arguments(p.oid) as function_signature
from pg_catalog.pg_proc p
    join pg_catalog.pg_namespace n on n.oid = p.pronamespace
where n.nspname = %(schema_name)s
    and p.prokind in ('f', 'p')
    and not exists (
        select 1
        from pg_catalog.pg_depend d
        where d.objid = p.oid
            and d.deptype = 'e'
    )
    and coalesce(trim(obj_description(p.oid, 'pg_proc')), '') = ''
order by p.proname, function_signature;
"""


def map_stored_function(row: dict[str, Any], ctx: PgContext) -> StoredFunction:
    return StoredFunction(
        name=ctx.qualify(row["function_name"]),
        signature=row.get("function_signature") or "",
    )
