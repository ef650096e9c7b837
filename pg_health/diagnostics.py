"""Static diagnostic catalog: what each check queries and how rows become objects."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pg_health.checks import columns, constraints, functions, indexes, objects, sequences, tables
from pg_health.models import ConsistencyClass, DbObject, Diagnostic, PgContext

RowMapper = Callable[[dict[str, Any], PgContext], DbObject]


@dataclass(frozen=True)
class CheckInfo:
    """Everything the runner needs to execute one diagnostic.

    Attributes:
        diagnostic: Catalog member this entry describes.
        query: SQL text using psycopg2 named parameters.
        mapper: Turns one result row into a DbObject.
        category: Grouping used for selection (indexes, tables, ...).
        description: One-line summary for listings and reports.
    """

    diagnostic: Diagnostic
    query: str
    mapper: RowMapper
    category: str
    description: str

    @property
    def name(self) -> str:
        return self.diagnostic.value

    @property
    def consistency(self) -> ConsistencyClass:
        return self.diagnostic.consistency

    @property
    def runtime(self) -> bool:
        return self.diagnostic.runtime


def _info(diagnostic, query, mapper, category, description) -> CheckInfo:
    return CheckInfo(diagnostic, query, mapper, category, description)


_CATALOG: tuple[CheckInfo, ...] = (
    _info(
        Diagnostic.BLOATED_INDEXES,
        indexes.BLOATED_INDEXES_SQL,
        indexes.map_index_with_bloat,
        "indexes",
        "Indexes whose estimated bloat exceeds the configured percentage",
    ),
    _info(
        Diagnostic.BLOATED_TABLES,
        tables.BLOATED_TABLES_SQL,
        tables.map_table_with_bloat,
        "tables",
        "Tables whose estimated bloat exceeds the configured percentage",
    ),
    _info(
        Diagnostic.DUPLICATED_INDEXES,
        indexes.DUPLICATED_INDEXES_SQL,
        indexes.map_duplicated_indexes,
        "indexes",
        "Indexes with identical definitions on the same table",
    ),
    _info(
        Diagnostic.FOREIGN_KEYS_WITHOUT_INDEX,
        constraints.FOREIGN_KEYS_WITHOUT_INDEX_SQL,
        constraints.map_foreign_key,
        "constraints",
        "Foreign keys whose columns are not covered by an index",
    ),
    _info(
        Diagnostic.INDEXES_WITH_NULL_VALUES,
        indexes.INDEXES_WITH_NULL_VALUES_SQL,
        indexes.map_index_with_nulls,
        "indexes",
        "Single-column indexes on nullable columns without a not-null predicate",
    ),
    _info(
        Diagnostic.INTERSECTED_INDEXES,
        indexes.INTERSECTED_INDEXES_SQL,
        indexes.map_duplicated_indexes,
        "indexes",
        "Pairs of indexes where one covers the columns of the other",
    ),
    _info(
        Diagnostic.INVALID_INDEXES,
        indexes.INVALID_INDEXES_SQL,
        indexes.map_index,
        "indexes",
        "Indexes left invalid by a failed concurrent build",
    ),
    _info(
        Diagnostic.TABLES_WITH_MISSING_INDEXES,
        tables.TABLES_WITH_MISSING_INDEXES_SQL,
        tables.map_table_with_missing_index,
        "tables",
        "Tables read more often by sequential scans than by index scans",
    ),
    _info(
        Diagnostic.TABLES_WITHOUT_PRIMARY_KEY,
        tables.TABLES_WITHOUT_PRIMARY_KEY_SQL,
        tables.map_table,
        "tables",
        "Tables without a primary key",
    ),
    _info(
        Diagnostic.UNUSED_INDEXES,
        indexes.UNUSED_INDEXES_SQL,
        indexes.map_unused_index,
        "indexes",
        "Indexes that are rarely or never scanned",
    ),
    _info(
        Diagnostic.TABLES_WITHOUT_DESCRIPTION,
        tables.TABLES_WITHOUT_DESCRIPTION_SQL,
        tables.map_table,
        "tables",
        "Tables without a comment",
    ),
    _info(
        Diagnostic.COLUMNS_WITHOUT_DESCRIPTION,
        columns.COLUMNS_WITHOUT_DESCRIPTION_SQL,
        columns.map_column,
        "columns",
        "Columns without a comment",
    ),
    _info(
        Diagnostic.COLUMNS_WITH_JSON_TYPE,
        columns.COLUMNS_WITH_JSON_TYPE_SQL,
        columns.map_column_with_type,
        "columns",
        "Columns of type json instead of jsonb",
    ),
    _info(
        Diagnostic.COLUMNS_WITH_SERIAL_TYPES,
        columns.COLUMNS_WITH_SERIAL_TYPES_SQL,
        columns.map_column_with_serial_type,
        "columns",
        "Non-key columns backed by serial sequences",
    ),
    _info(
        Diagnostic.FUNCTIONS_WITHOUT_DESCRIPTION,
        functions.FUNCTIONS_WITHOUT_DESCRIPTION_SQL,
        functions.map_stored_function,
        "functions",
        "Functions and procedures without a comment",
    ),
    _info(
        Diagnostic.INDEXES_WITH_BOOLEAN,
        indexes.INDEXES_WITH_BOOLEAN_SQL,
        indexes.map_index_with_columns,
        "indexes",
        "Indexes that include a boolean column",
    ),
    _info(
        Diagnostic.NOT_VALID_CONSTRAINTS,
        constraints.NOT_VALID_CONSTRAINTS_SQL,
        constraints.map_constraint,
        "constraints",
        "Check and foreign key constraints created as not valid and never validated",
    ),
    _info(
        Diagnostic.BTREE_INDEXES_ON_ARRAY_COLUMNS,
        indexes.BTREE_INDEXES_ON_ARRAY_COLUMNS_SQL,
        indexes.map_index_with_columns,
        "indexes",
        "B-tree indexes on array columns",
    ),
    _info(
        Diagnostic.SEQUENCE_OVERFLOW,
        sequences.SEQUENCE_OVERFLOW_SQL,
        sequences.map_sequence_state,
        "sequences",
        "Sequences close to exhausting their value range",
    ),
    _info(
        Diagnostic.PRIMARY_KEYS_WITH_SERIAL_TYPES,
        columns.PRIMARY_KEYS_WITH_SERIAL_TYPES_SQL,
        columns.map_column_with_serial_type,
        "columns",
        "Primary key columns backed by serial sequences instead of identity",
    ),
    _info(
        Diagnostic.DUPLICATED_FOREIGN_KEYS,
        constraints.DUPLICATED_FOREIGN_KEYS_SQL,
        constraints.map_duplicated_foreign_keys,
        "constraints",
        "Foreign keys with identical column mappings",
    ),
    _info(
        Diagnostic.INTERSECTED_FOREIGN_KEYS,
        constraints.INTERSECTED_FOREIGN_KEYS_SQL,
        constraints.map_duplicated_foreign_keys,
        "constraints",
        "Foreign keys to the same table sharing some columns",
    ),
    _info(
        Diagnostic.POSSIBLE_OBJECT_NAME_OVERFLOW,
        objects.POSSIBLE_OBJECT_NAME_OVERFLOW_SQL,
        objects.map_any_object,
        "objects",
        "Objects whose names reach the identifier length limit",
    ),
    _info(
        Diagnostic.TABLES_NOT_LINKED_TO_OTHERS,
        tables.TABLES_NOT_LINKED_TO_OTHERS_SQL,
        tables.map_table,
        "tables",
        "Tables with no foreign keys in or out",
    ),
    _info(
        Diagnostic.FOREIGN_KEYS_WITH_UNMATCHED_COLUMN_TYPE,
        constraints.FOREIGN_KEYS_WITH_UNMATCHED_COLUMN_TYPE_SQL,
        constraints.map_foreign_key,
        "constraints",
        "Foreign keys whose column types differ from the referenced columns",
    ),
    _info(
        Diagnostic.TABLES_WITH_ZERO_OR_ONE_COLUMN,
        tables.TABLES_WITH_ZERO_OR_ONE_COLUMN_SQL,
        tables.map_table_with_columns,
        "tables",
        "Tables with zero or one column",
    ),
    _info(
        Diagnostic.OBJECTS_NOT_FOLLOWING_NAMING_CONVENTION,
        objects.OBJECTS_NOT_FOLLOWING_NAMING_CONVENTION_SQL,
        objects.map_any_object,
        "objects",
        "Objects whose names need quoting (upper case or special characters)",
    ),
)

CATALOG: dict[Diagnostic, CheckInfo] = {info.diagnostic: info for info in _CATALOG}

CATEGORIES: tuple[str, ...] = tuple(sorted({info.category for info in _CATALOG}))


def get_check_info(diagnostic: Diagnostic | str) -> CheckInfo:
    if isinstance(diagnostic, str):
        diagnostic = Diagnostic.from_name(diagnostic)
    return CATALOG[diagnostic]


def list_diagnostics() -> list[Diagnostic]:
    """Every supported diagnostic in catalog order."""
    return list(Diagnostic)
