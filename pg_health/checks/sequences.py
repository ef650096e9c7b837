"""Sequence checks."""

from __future__ import annotations

from typing import Any

from pg_health.checks import as_float
from pg_health.models import PgContext, SequenceState

# Remaining share of the value range, measured from the last value towards the
# bound in the direction of the increment.
SEQUENCE_OVERFLOW_SQL = """
with sequence_state as (
    select
        s.sequencename as sequence_name,
        s.data_type::text as data_type,
        s.min_value::numeric as min_value,
        s.max_value::numeric as max_value,
        s.increment_by::numeric as increment_by,
        coalesce(s.last_value, s.start_value)::numeric as last_value
    from pg_catalog.pg_sequences s
    where s.schemaname = %(schema_name)s
        and not s.cycle
)
select
    sequence_name,
    data_type,
    round(
        100.0 * case
            when increment_by > 0 then (max_value - last_value) / (max_value - min_value)
            else (last_value - min_value) / (max_value - min_value)
        end,
        2
    ) as remaining_percentage
from sequence_state
where max_value > min_value
    and 100.0 * case
        when increment_by > 0 then (max_value - last_value) / (max_value - min_value)
        else (last_value - min_value) / (max_value - min_value)
    end <= %(remaining_percentage_threshold)s
order by sequence_name;
"""


def map_sequence_state(row: dict[str, Any], ctx: PgContext) -> SequenceState:
    return SequenceState(
        name=ctx.qualify(row["sequence_name"]),
        data_type=row.get("data_type") or "bigint",
        remaining_percentage=min(max(as_float(row.get("remaining_percentage")), 0.0), 100.0),
    )
