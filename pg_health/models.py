"""Data models for database objects, findings and check results."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Union

if TYPE_CHECKING:
    from pg_health.exceptions import PartialHostFailure

DEFAULT_SCHEMA_NAME = "public"
DEFAULT_BLOAT_PERCENTAGE_THRESHOLD = 10.0
DEFAULT_REMAINING_PERCENTAGE_THRESHOLD = 10.0


def _not_blank(value: str, argument_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{argument_name} cannot be blank")
    return value


def _valid_percent(value: float, argument_name: str) -> float:
    if value < 0.0 or value > 100.0:
        raise ValueError(f"{argument_name} should be in the range from 0.0 to 100.0 inclusive")
    return float(value)


def _not_negative(value: int, argument_name: str) -> int:
    if value < 0:
        raise ValueError(f"{argument_name} cannot be less than zero")
    return value


class PgObjectType(enum.Enum):
    TABLE = "table"
    INDEX = "index"
    SEQUENCE = "sequence"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized view"
    FUNCTION = "function"
    CONSTRAINT = "constraint"
    COLUMN = "column"

    @classmethod
    def value_from(cls, object_type: str) -> PgObjectType:
        for member in cls:
            if member.value == object_type.lower():
                return member
        raise ValueError(f"Unknown object type: {object_type}")


class ConsistencyClass(enum.Enum):
    """Where a diagnostic runs and how per-host results are combined.

    STRUCTURAL diagnostics describe schema shape, which replication keeps
    identical on every host, so they run once against the primary.
    STATISTICAL diagnostics read runtime statistics that each host
    accumulates on its own, so they run everywhere and are intersected.
    """

    STRUCTURAL = "structural"
    STATISTICAL = "statistical"


class HostRole(enum.Enum):
    PRIMARY = "primary"
    REPLICA = "replica"
    UNKNOWN = "unknown"


class NameResolution(enum.Enum):
    AUTO = "auto"  # bare names in the default schema, qualified elsewhere
    SCHEMA_QUALIFIED = "schema_qualified"
    BARE = "bare"


class IdxPosition(enum.Enum):
    """Where generated index names carry the "idx" marker."""

    SUFFIX = "suffix"
    PREFIX = "prefix"
    NONE = "none"


class Diagnostic(enum.Enum):
    """Catalog of supported checks.

    Append-only: callers persist identifiers, so members are never renamed,
    removed or reordered.
    """

    BLOATED_INDEXES = ("bloated_indexes", ConsistencyClass.STRUCTURAL, True)
    BLOATED_TABLES = ("bloated_tables", ConsistencyClass.STRUCTURAL, True)
    DUPLICATED_INDEXES = ("duplicated_indexes", ConsistencyClass.STRUCTURAL, False)
    FOREIGN_KEYS_WITHOUT_INDEX = ("foreign_keys_without_index", ConsistencyClass.STRUCTURAL, False)
    INDEXES_WITH_NULL_VALUES = ("indexes_with_null_values", ConsistencyClass.STRUCTURAL, False)
    INTERSECTED_INDEXES = ("intersected_indexes", ConsistencyClass.STRUCTURAL, False)
    INVALID_INDEXES = ("invalid_indexes", ConsistencyClass.STRUCTURAL, False)
    TABLES_WITH_MISSING_INDEXES = ("tables_with_missing_indexes", ConsistencyClass.STATISTICAL, True)
    TABLES_WITHOUT_PRIMARY_KEY = ("tables_without_primary_key", ConsistencyClass.STRUCTURAL, False)
    UNUSED_INDEXES = ("unused_indexes", ConsistencyClass.STATISTICAL, True)
    TABLES_WITHOUT_DESCRIPTION = ("tables_without_description", ConsistencyClass.STRUCTURAL, False)
    COLUMNS_WITHOUT_DESCRIPTION = ("columns_without_description", ConsistencyClass.STRUCTURAL, False)
    COLUMNS_WITH_JSON_TYPE = ("columns_with_json_type", ConsistencyClass.STRUCTURAL, False)
    COLUMNS_WITH_SERIAL_TYPES = ("columns_with_serial_types", ConsistencyClass.STRUCTURAL, False)
    FUNCTIONS_WITHOUT_DESCRIPTION = ("functions_without_description", ConsistencyClass.STRUCTURAL, False)
    INDEXES_WITH_BOOLEAN = ("indexes_with_boolean", ConsistencyClass.STRUCTURAL, False)
    NOT_VALID_CONSTRAINTS = ("not_valid_constraints", ConsistencyClass.STRUCTURAL, False)
    BTREE_INDEXES_ON_ARRAY_COLUMNS = ("btree_indexes_on_array_columns", ConsistencyClass.STRUCTURAL, False)
    SEQUENCE_OVERFLOW = ("sequence_overflow", ConsistencyClass.STRUCTURAL, True)
    PRIMARY_KEYS_WITH_SERIAL_TYPES = ("primary_keys_with_serial_types", ConsistencyClass.STRUCTURAL, False)
    DUPLICATED_FOREIGN_KEYS = ("duplicated_foreign_keys", ConsistencyClass.STRUCTURAL, False)
    INTERSECTED_FOREIGN_KEYS = ("intersected_foreign_keys", ConsistencyClass.STRUCTURAL, False)
    POSSIBLE_OBJECT_NAME_OVERFLOW = ("possible_object_name_overflow", ConsistencyClass.STRUCTURAL, False)
    TABLES_NOT_LINKED_TO_OTHERS = ("tables_not_linked_to_others", ConsistencyClass.STRUCTURAL, False)
    FOREIGN_KEYS_WITH_UNMATCHED_COLUMN_TYPE = (
        "foreign_keys_with_unmatched_column_type",
        ConsistencyClass.STRUCTURAL,
        False,
    )
    TABLES_WITH_ZERO_OR_ONE_COLUMN = ("tables_with_zero_or_one_column", ConsistencyClass.STRUCTURAL, False)
    OBJECTS_NOT_FOLLOWING_NAMING_CONVENTION = (
        "objects_not_following_naming_convention",
        ConsistencyClass.STRUCTURAL,
        False,
    )

    def __new__(cls, identifier: str, consistency: ConsistencyClass, runtime: bool):
        obj = object.__new__(cls)
        obj._value_ = identifier
        obj.consistency = consistency
        obj.runtime = runtime
        return obj

    @property
    def is_statistical(self) -> bool:
        return self.consistency is ConsistencyClass.STATISTICAL

    @classmethod
    def from_name(cls, name: str) -> Diagnostic:
        """Look up a diagnostic by identifier ("unused_indexes") or member name."""
        try:
            return cls(name.lower())
        except ValueError:
            try:
                return cls[name.upper()]
            except KeyError:
                raise ValueError(f"Unknown diagnostic: {name}") from None


@dataclass(frozen=True)
class PgContext:
    """Schema to inspect and how object names are qualified."""

    schema_name: str = DEFAULT_SCHEMA_NAME
    bloat_percentage_threshold: float = DEFAULT_BLOAT_PERCENTAGE_THRESHOLD
    remaining_percentage_threshold: float = DEFAULT_REMAINING_PERCENTAGE_THRESHOLD
    name_resolution: NameResolution = NameResolution.AUTO

    def __post_init__(self):
        _not_blank(self.schema_name, "schema_name")
        object.__setattr__(self, "schema_name", self.schema_name.strip().lower())
        object.__setattr__(
            self,
            "bloat_percentage_threshold",
            _valid_percent(self.bloat_percentage_threshold, "bloat_percentage_threshold"),
        )
        object.__setattr__(
            self,
            "remaining_percentage_threshold",
            _valid_percent(self.remaining_percentage_threshold, "remaining_percentage_threshold"),
        )

    @property
    def is_default_schema(self) -> bool:
        return self.schema_name == DEFAULT_SCHEMA_NAME

    def qualify(self, object_name: str) -> str:
        """Prefix object_name with the schema unless the resolution mode says not to."""
        _not_blank(object_name, "object_name")
        if self.name_resolution is NameResolution.BARE:
            return object_name
        if self.name_resolution is NameResolution.AUTO and self.is_default_schema:
            return object_name
        prefix = self.schema_name + "."
        if object_name.lower().startswith(prefix):
            return object_name
        return prefix + object_name

    def query_params(self) -> dict[str, Any]:
        return {
            "schema_name": self.schema_name,
            "bloat_percentage_threshold": self.bloat_percentage_threshold,
            "remaining_percentage_threshold": self.remaining_percentage_threshold,
        }

    @classmethod
    def of_default(cls) -> PgContext:
        return cls()


# ---------------------------------------------------------------------------
# Database object variants
#
# Each variant is a frozen dataclass tagged by `kind`. Identity fields take
# part in equality; metrics such as sizes or scan counters are declared with
# compare=False so the same index seen on two hosts compares equal.
# ---------------------------------------------------------------------------


def _metric(default: Any = 0) -> Any:
    return field(default=default, compare=False)


@dataclass(frozen=True)
class Column:
    kind: ClassVar[str] = "column"
    object_type: ClassVar[PgObjectType] = PgObjectType.COLUMN

    table_name: str
    column_name: str
    nullable: bool = field(default=False, compare=False)

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.column_name, "column_name")

    @property
    def name(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "nullable": self.nullable,
        }


@dataclass(frozen=True)
class ColumnWithType:
    kind: ClassVar[str] = "column_with_type"
    object_type: ClassVar[PgObjectType] = PgObjectType.COLUMN

    table_name: str
    column_name: str
    column_type: str
    nullable: bool = field(default=False, compare=False)

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.column_name, "column_name")
        _not_blank(self.column_type, "column_type")

    @property
    def name(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "column_type": self.column_type,
            "nullable": self.nullable,
        }


@dataclass(frozen=True)
class ColumnWithSerialType:
    kind: ClassVar[str] = "column_with_serial_type"
    object_type: ClassVar[PgObjectType] = PgObjectType.COLUMN

    table_name: str
    column_name: str
    serial_type: str
    sequence_name: str
    nullable: bool = field(default=False, compare=False)

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.column_name, "column_name")
        _not_blank(self.serial_type, "serial_type")
        _not_blank(self.sequence_name, "sequence_name")

    @property
    def name(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "serial_type": self.serial_type,
            "sequence_name": self.sequence_name,
            "nullable": self.nullable,
        }


@dataclass(frozen=True)
class Table:
    kind: ClassVar[str] = "table"
    object_type: ClassVar[PgObjectType] = PgObjectType.TABLE

    name: str
    size_bytes: int = _metric()
    row_count: int = _metric()

    def __post_init__(self):
        _not_blank(self.name, "name")
        _not_negative(self.size_bytes, "size_bytes")
        _not_negative(self.row_count, "row_count")

    @property
    def table_name(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "row_count": self.row_count,
        }


@dataclass(frozen=True)
class TableWithBloat:
    kind: ClassVar[str] = "table_with_bloat"
    object_type: ClassVar[PgObjectType] = PgObjectType.TABLE

    name: str
    size_bytes: int = _metric()
    bloat_size_bytes: int = _metric()
    bloat_percentage: float = _metric(0.0)

    def __post_init__(self):
        _not_blank(self.name, "name")
        _not_negative(self.bloat_size_bytes, "bloat_size_bytes")
        _valid_percent(self.bloat_percentage, "bloat_percentage")

    @property
    def table_name(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "bloat_size_bytes": self.bloat_size_bytes,
            "bloat_percentage": self.bloat_percentage,
        }


@dataclass(frozen=True)
class TableWithMissingIndex:
    kind: ClassVar[str] = "table_with_missing_index"
    object_type: ClassVar[PgObjectType] = PgObjectType.TABLE

    name: str
    size_bytes: int = _metric()
    seq_scans: int = _metric()
    index_scans: int = _metric()

    def __post_init__(self):
        _not_blank(self.name, "name")
        _not_negative(self.seq_scans, "seq_scans")
        _not_negative(self.index_scans, "index_scans")

    @property
    def table_name(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "seq_scans": self.seq_scans,
            "index_scans": self.index_scans,
        }


@dataclass(frozen=True)
class TableWithColumns:
    kind: ClassVar[str] = "table_with_columns"
    object_type: ClassVar[PgObjectType] = PgObjectType.TABLE

    name: str
    size_bytes: int = _metric()
    columns: tuple[Column, ...] = field(default=(), compare=False)

    def __post_init__(self):
        _not_blank(self.name, "name")
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def table_name(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "columns": [c.to_dict() for c in self.columns],
        }


@dataclass(frozen=True)
class Index:
    kind: ClassVar[str] = "index"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    name: str
    size_bytes: int = _metric()
    columns: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")
        _not_negative(self.size_bytes, "size_bytes")
        object.__setattr__(self, "columns", tuple(self.columns))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "size_bytes": self.size_bytes,
            "columns": list(self.columns),
        }


@dataclass(frozen=True)
class IndexWithBloat:
    kind: ClassVar[str] = "index_with_bloat"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    name: str
    size_bytes: int = _metric()
    bloat_size_bytes: int = _metric()
    bloat_percentage: float = _metric(0.0)

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")
        _not_negative(self.bloat_size_bytes, "bloat_size_bytes")
        _valid_percent(self.bloat_percentage, "bloat_percentage")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "size_bytes": self.size_bytes,
            "bloat_size_bytes": self.bloat_size_bytes,
            "bloat_percentage": self.bloat_percentage,
        }


@dataclass(frozen=True)
class UnusedIndex:
    kind: ClassVar[str] = "unused_index"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    name: str
    size_bytes: int = _metric()
    index_scans: int = _metric()

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")
        _not_negative(self.index_scans, "index_scans")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "size_bytes": self.size_bytes,
            "index_scans": self.index_scans,
        }


@dataclass(frozen=True)
class IndexWithNulls:
    kind: ClassVar[str] = "index_with_nulls"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    name: str
    nullable_column: Column
    size_bytes: int = _metric()

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "size_bytes": self.size_bytes,
            "nullable_column": self.nullable_column.to_dict(),
        }


@dataclass(frozen=True)
class IndexWithColumns:
    kind: ClassVar[str] = "index_with_columns"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    name: str
    columns: tuple[Column, ...] = field(default=(), compare=False)
    size_bytes: int = _metric()

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")
        object.__setattr__(self, "columns", tuple(self.columns))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "size_bytes": self.size_bytes,
            "columns": [c.to_dict() for c in self.columns],
        }


@dataclass(frozen=True)
class DuplicatedIndexes:
    """A group of indexes on one table that cover the same (or overlapping) columns."""

    kind: ClassVar[str] = "duplicated_indexes"
    object_type: ClassVar[PgObjectType] = PgObjectType.INDEX

    table_name: str
    indexes: tuple[Index, ...]

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        if len(self.indexes) < 2:
            raise ValueError("duplicated indexes should contain at least two items")
        object.__setattr__(self, "indexes", tuple(sorted(self.indexes, key=lambda i: i.name)))

    @property
    def name(self) -> str:
        return ", ".join(i.name for i in self.indexes)

    @property
    def index_names(self) -> list[str]:
        return [i.name for i in self.indexes]

    @property
    def total_size_bytes(self) -> int:
        return sum(i.size_bytes for i in self.indexes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "total_size_bytes": self.total_size_bytes,
            "indexes": [i.to_dict() for i in self.indexes],
        }


@dataclass(frozen=True)
class ForeignKey:
    kind: ClassVar[str] = "foreign_key"
    object_type: ClassVar[PgObjectType] = PgObjectType.CONSTRAINT

    table_name: str
    name: str
    columns: tuple[Column, ...]

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")
        if not self.columns:
            raise ValueError("columns cannot be empty")
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def column_names(self) -> list[str]:
        return [c.column_name for c in self.columns]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "columns": [c.to_dict() for c in self.columns],
        }


@dataclass(frozen=True)
class DuplicatedForeignKeys:
    kind: ClassVar[str] = "duplicated_foreign_keys"
    object_type: ClassVar[PgObjectType] = PgObjectType.CONSTRAINT

    table_name: str
    foreign_keys: tuple[ForeignKey, ...]

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        if len(self.foreign_keys) < 2:
            raise ValueError("duplicated foreign keys should contain at least two items")
        object.__setattr__(
            self, "foreign_keys", tuple(sorted(self.foreign_keys, key=lambda fk: fk.name))
        )

    @property
    def name(self) -> str:
        return ", ".join(fk.name for fk in self.foreign_keys)

    @property
    def constraint_names(self) -> list[str]:
        return [fk.name for fk in self.foreign_keys]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
        }


@dataclass(frozen=True)
class Constraint:
    kind: ClassVar[str] = "constraint"
    object_type: ClassVar[PgObjectType] = PgObjectType.CONSTRAINT

    table_name: str
    name: str
    constraint_type: str = "c"

    def __post_init__(self):
        _not_blank(self.table_name, "table_name")
        _not_blank(self.name, "name")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "table_name": self.table_name,
            "constraint_type": self.constraint_type,
        }


@dataclass(frozen=True)
class SequenceState:
    kind: ClassVar[str] = "sequence_state"
    object_type: ClassVar[PgObjectType] = PgObjectType.SEQUENCE

    name: str
    data_type: str = field(default="bigint", compare=False)
    remaining_percentage: float = _metric(100.0)

    def __post_init__(self):
        _not_blank(self.name, "name")
        _not_blank(self.data_type, "data_type")
        _valid_percent(self.remaining_percentage, "remaining_percentage")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "data_type": self.data_type,
            "remaining_percentage": self.remaining_percentage,
        }


@dataclass(frozen=True)
class StoredFunction:
    kind: ClassVar[str] = "stored_function"
    object_type: ClassVar[PgObjectType] = PgObjectType.FUNCTION

    name: str
    signature: str = ""

    def __post_init__(self):
        _not_blank(self.name, "name")

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "signature": self.signature}


@dataclass(frozen=True)
class AnyObject:
    kind: ClassVar[str] = "any_object"

    name: str
    object_type: PgObjectType

    def __post_init__(self):
        _not_blank(self.name, "name")

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "object_type": self.object_type.value}


DbObject = Union[
    Column,
    ColumnWithType,
    ColumnWithSerialType,
    Table,
    TableWithBloat,
    TableWithMissingIndex,
    TableWithColumns,
    Index,
    IndexWithBloat,
    UnusedIndex,
    IndexWithNulls,
    IndexWithColumns,
    DuplicatedIndexes,
    ForeignKey,
    DuplicatedForeignKeys,
    Constraint,
    SequenceState,
    StoredFunction,
    AnyObject,
]

DB_OBJECT_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        Column,
        ColumnWithType,
        ColumnWithSerialType,
        Table,
        TableWithBloat,
        TableWithMissingIndex,
        TableWithColumns,
        Index,
        IndexWithBloat,
        UnusedIndex,
        IndexWithNulls,
        IndexWithColumns,
        DuplicatedIndexes,
        ForeignKey,
        DuplicatedForeignKeys,
        Constraint,
        SequenceState,
        StoredFunction,
        AnyObject,
    )
}


def object_sort_key(obj: DbObject) -> tuple[str, str, str, str]:
    return (obj.name, obj.kind, getattr(obj, "table_name", ""), getattr(obj, "signature", ""))


def db_object_from_dict(data: dict[str, Any]) -> DbObject:
    """Rebuild a DbObject from the output of its `to_dict()`."""
    kind = data["kind"]
    if kind not in DB_OBJECT_TYPES:
        raise ValueError(f"Unknown object kind: {kind}")
    cls = DB_OBJECT_TYPES[kind]
    # name is derived (not a field) for columns and duplicate groups
    derived_name = isinstance(getattr(cls, "name", None), property)
    values = {k: v for k, v in data.items() if k not in ("kind", "name", "total_size_bytes")}
    if not derived_name:
        values["name"] = data["name"]
    if "indexes" in values:
        values["indexes"] = tuple(db_object_from_dict(i) for i in values["indexes"])
    if "foreign_keys" in values:
        values["foreign_keys"] = tuple(db_object_from_dict(fk) for fk in values["foreign_keys"])
    if "columns" in values:
        values["columns"] = tuple(
            db_object_from_dict(c) if isinstance(c, dict) else c for c in values["columns"]
        )
    if "nullable_column" in values:
        values["nullable_column"] = db_object_from_dict(values["nullable_column"])
    if kind == "any_object":
        values["object_type"] = PgObjectType.value_from(values["object_type"])
    return cls(**values)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    """One flagged database object for one diagnostic."""

    diagnostic: Diagnostic
    db_object: DbObject

    @property
    def object_name(self) -> str:
        return self.db_object.name

    def sort_key(self) -> tuple[str, str, str, str]:
        return object_sort_key(self.db_object)

    def __lt__(self, other: Finding) -> bool:
        if not isinstance(other, Finding):
            return NotImplemented
        return (self.sort_key(), self.diagnostic.value) < (other.sort_key(), other.diagnostic.value)

    def to_dict(self) -> dict[str, Any]:
        return {"diagnostic": self.diagnostic.value, "object": self.db_object.to_dict()}


class MigrationAction(enum.Enum):
    """What a generated statement does to its target."""

    CREATE_INDEX = "create index"
    REINDEX = "reindex"
    DROP_INDEX = "drop index"
    VALIDATE_CONSTRAINT = "validate constraint"
    ALTER_SEQUENCE = "alter sequence"
    DROP_CONSTRAINT = "drop constraint"


@dataclass(frozen=True)
class MigrationStep:
    """One action on one database object, as a single SQL command."""

    target: str
    action: MigrationAction
    sql: str


@dataclass(frozen=True)
class MigrationStatement:
    """Generated DDL text; the engine never executes it."""

    diagnostic: Diagnostic
    finding: Finding
    rationale: str
    steps: tuple[MigrationStep, ...]

    def __post_init__(self):
        if not self.steps:
            raise ValueError("steps cannot be empty")

    @property
    def sql(self) -> str:
        return "\n".join(step.sql for step in self.steps)

    @property
    def targets(self) -> tuple[str, ...]:
        return tuple(step.target for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "diagnostic": self.diagnostic.value,
            "object_name": self.finding.object_name,
            "targets": list(self.targets),
            "actions": [step.action.value for step in self.steps],
            "rationale": self.rationale,
            "sql": self.sql,
        }


@dataclass
class CheckResult:
    diagnostic: Diagnostic
    findings: list[Finding] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)
    partial_failure: PartialHostFailure | None = None
    error: str | None = None

    @property
    def passed(self) -> bool:
        return not self.findings and self.error is None

    @property
    def objects(self) -> list[DbObject]:
        return [f.db_object for f in self.findings]


@dataclass
class ScanReport:
    timestamp: datetime
    context: PgContext
    hosts: list[str] = field(default_factory=list)
    results: list[CheckResult] = field(default_factory=list)

    @property
    def findings(self) -> list[Finding]:
        all_findings = []
        for r in self.results:
            all_findings.extend(r.findings)
        return all_findings

    @property
    def checks_total(self) -> int:
        return len(self.results)

    @property
    def checks_passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def checks_failed(self) -> int:
        return sum(1 for r in self.results if r.error)

    @property
    def findings_count(self) -> int:
        return len(self.findings)
