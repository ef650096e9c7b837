"""Migration generator: turns findings into corrective DDL text (never executed)."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace

from pg_health.exceptions import ConflictingMigrations
from pg_health.models import (
    Diagnostic,
    Finding,
    ForeignKey,
    IdxPosition,
    MigrationAction,
    MigrationStatement,
    MigrationStep,
)

logger = logging.getLogger(__name__)

# See https://www.postgresql.org/docs/current/limits.html
MAX_IDENTIFIER_LENGTH = 63

IDX = "idx"
WITHOUT_NULLS = "without_nulls"
DELIMITER = "_"

_NARROW_SEQUENCE_TYPES = ("smallint", "integer", "int2", "int4")

# Reserved key words must be quoted even when written in lower case.
RESERVED_KEYWORDS = frozenset(
    """
    all analyse analyze and any array as asc asymmetric both case cast check collate
    column constraint create current_catalog current_date current_role current_time
    current_timestamp current_user default deferrable desc distinct do else end except
    false fetch for foreign from grant group having in initially intersect into lateral
    leading limit localtime localtimestamp not null offset on only or order placing
    primary references returning select session_user some symmetric system_user table
    then to trailing true union unique user using variadic when where window with
    """.split()
)

_PLAIN_IDENTIFIER = re.compile(r"[a-z_][a-z0-9_$]*")


@dataclass(frozen=True)
class GeneratingOptions:
    """Formatting switches for generated statements."""

    concurrently: bool = True
    exclude_nulls: bool = True
    break_lines: bool = True
    indentation: int = 4
    uppercase_for_keywords: bool = False
    name_without_nulls: bool = True
    idx_position: IdxPosition = IdxPosition.SUFFIX

    def __post_init__(self):
        if self.indentation < 0 or self.indentation > 8:
            raise ValueError("indentation should be in the range [0, 8]")

    @property
    def need_to_add_idx(self) -> bool:
        return self.idx_position is not IdxPosition.NONE


def java_string_hash(text: str) -> int:
    """Same value as java.lang.String#hashCode, for names compatible with other tools."""
    h = 0
    for char in text:
        code = ord(char)
        if code > 0xFFFF:
            # Surrogate pair, as Java sees it.
            code -= 0x10000
            for unit in (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF)):
                h = (31 * h + unit) & 0xFFFFFFFF
            continue
        h = (31 * h + code) & 0xFFFFFFFF
    return h - 0x100000000 if h >= 0x80000000 else h


def table_name_without_schema(table_name: str) -> str:
    return table_name.split(".", 1)[-1]


def quote_identifier(name: str) -> str:
    """Double-quote name unless PostgreSQL would read it back unchanged."""
    if _PLAIN_IDENTIFIER.fullmatch(name) and name not in RESERVED_KEYWORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(name: str) -> str:
    """Quote both parts of a ``schema.object`` name."""
    return ".".join(quote_identifier(part) for part in name.split(".", 1))


class IndexNameGenerator:
    """Builds names like ``orders_customer_id_without_nulls_idx`` for a foreign key index."""

    def __init__(self, foreign_key: ForeignKey, options: GeneratingOptions):
        self.options = options
        self.table_name = table_name_without_schema(foreign_key.table_name)
        self.columns_part = DELIMITER.join(foreign_key.column_names)
        self.add_without_nulls = (
            options.name_without_nulls
            and options.exclude_nulls
            and any(c.nullable for c in foreign_key.columns)
        )

    def _main_part(self) -> str:
        return self.table_name + DELIMITER + self.columns_part

    def _with_idx(self, name: str) -> str:
        if not self.options.need_to_add_idx:
            return name
        if self.options.idx_position is IdxPosition.SUFFIX:
            return name + DELIMITER + IDX
        return IDX + DELIMITER + name

    def full_name(self) -> str:
        name = self._main_part()
        if self.add_without_nulls:
            name += DELIMITER + WITHOUT_NULLS
        return self._with_idx(name)

    def truncated_name(self) -> str:
        remaining = MAX_IDENTIFIER_LENGTH
        if self.options.need_to_add_idx:
            remaining -= len(IDX) + len(DELIMITER)
        main_part = self._main_part()
        if len(main_part) > remaining:
            # Hash of the columns keeps names unique; 'n' marks a negative hash.
            hash_value = java_string_hash(self.columns_part)
            columns = f"n{abs(hash_value)}" if hash_value < 0 else str(hash_value)
            remaining -= len(DELIMITER) + len(columns)
            name = self.table_name[: max(remaining, 0)] + DELIMITER + columns
            remaining -= len(self.table_name)
        else:
            name = main_part
            remaining -= len(main_part)
        if remaining > len(WITHOUT_NULLS) and self.add_without_nulls:
            name += DELIMITER + WITHOUT_NULLS
        return self._with_idx(name)


class MigrationGenerator:
    """Maps findings to corrective statements.

    Only diagnostics with a safe, online fix produce a statement; the rest
    map to None.
    """

    def __init__(self, options: GeneratingOptions | None = None):
        self.options = options or GeneratingOptions()
        self._handlers = {
            Diagnostic.FOREIGN_KEYS_WITHOUT_INDEX: self._index_on_foreign_key,
            Diagnostic.BLOATED_INDEXES: self._reindex,
            Diagnostic.INVALID_INDEXES: self._reindex,
            Diagnostic.UNUSED_INDEXES: self._drop_index,
            Diagnostic.DUPLICATED_INDEXES: self._drop_duplicated_indexes,
            Diagnostic.NOT_VALID_CONSTRAINTS: self._validate_constraint,
            Diagnostic.SEQUENCE_OVERFLOW: self._widen_sequence,
            Diagnostic.DUPLICATED_FOREIGN_KEYS: self._drop_duplicated_foreign_keys,
        }

    def keyword(self, text: str) -> str:
        return text.upper() if self.options.uppercase_for_keywords else text

    def _concurrently(self) -> str:
        return self.keyword("concurrently ") if self.options.concurrently else ""

    def supports(self, diagnostic: Diagnostic) -> bool:
        return diagnostic in self._handlers

    # -- handlers --------------------------------------------------------

    def _index_on_foreign_key(self, finding: Finding) -> MigrationStatement:
        foreign_key = finding.db_object
        names = IndexNameGenerator(foreign_key, self.options)
        full_name = names.full_name()
        truncate = len(full_name) > MAX_IDENTIFIER_LENGTH
        index_name = names.truncated_name() if truncate else full_name
        line_break = "\n" if self.options.break_lines else " "

        parts = []
        if truncate:
            parts.append(f"/* {full_name} */{line_break}")
        parts.append(self.keyword("create index "))
        parts.append(self._concurrently())
        parts.append(self.keyword("if not exists "))
        parts.append(quote_identifier(index_name))
        parts.append(line_break)
        if self.options.break_lines:
            parts.append(" " * self.options.indentation)
        parts.append(self.keyword("on "))
        columns = ", ".join(quote_identifier(name) for name in foreign_key.column_names)
        parts.append(f"{quote_qualified(foreign_key.table_name)} ({columns})")
        nullable = [quote_identifier(c.column_name) for c in foreign_key.columns if c.nullable]
        if self.options.exclude_nulls and nullable:
            parts.append(self.keyword(" where "))
            parts.append(" and ".join(name + self.keyword(" is not null") for name in nullable))
        parts.append(";")

        schema = foreign_key.table_name.rsplit(".", 1)[0] + "." if "." in foreign_key.table_name else ""
        return MigrationStatement(
            finding.diagnostic,
            finding,
            (
                f"Foreign key {foreign_key.name} on {foreign_key.table_name} has no supporting "
                "index; deletes and updates on the referenced table scan the whole table"
            ),
            (MigrationStep(schema + index_name, MigrationAction.CREATE_INDEX, "".join(parts)),),
        )

    def _reindex(self, finding: Finding) -> MigrationStatement:
        index = finding.db_object
        sql = self.keyword("reindex index ") + self._concurrently() + f"{quote_qualified(index.name)};"
        reason = (
            "Index was left invalid by a failed build"
            if finding.diagnostic is Diagnostic.INVALID_INDEXES
            else "Index is bloated; rebuilding it returns the space"
        )
        step = MigrationStep(index.name, MigrationAction.REINDEX, sql)
        return MigrationStatement(finding.diagnostic, finding, reason, (step,))

    def _drop_index_step(self, index_name: str) -> MigrationStep:
        sql = (
            self.keyword("drop index ")
            + self._concurrently()
            + self.keyword("if exists ")
            + f"{quote_qualified(index_name)};"
        )
        return MigrationStep(index_name, MigrationAction.DROP_INDEX, sql)

    def _drop_index(self, finding: Finding) -> MigrationStatement:
        index = finding.db_object
        return MigrationStatement(
            finding.diagnostic,
            finding,
            f"Index is not used on any host ({index.index_scans} scan(s))",
            (self._drop_index_step(index.name),),
        )

    def _drop_duplicated_indexes(self, finding: Finding) -> MigrationStatement:
        group = finding.db_object
        kept, *redundant = group.index_names
        return MigrationStatement(
            finding.diagnostic,
            finding,
            f"Indexes duplicate {kept}",
            tuple(self._drop_index_step(name) for name in redundant),
        )

    def _validate_constraint(self, finding: Finding) -> MigrationStatement:
        constraint = finding.db_object
        sql = (
            self.keyword("alter table ")
            + quote_qualified(constraint.table_name)
            + self.keyword(" validate constraint ")
            + f"{quote_identifier(constraint.name)};"
        )
        return MigrationStatement(
            finding.diagnostic,
            finding,
            "Constraint was created as not valid; existing rows were never checked",
            (
                MigrationStep(
                    f"{constraint.table_name}.{constraint.name}",
                    MigrationAction.VALIDATE_CONSTRAINT,
                    sql,
                ),
            ),
        )

    def _widen_sequence(self, finding: Finding) -> MigrationStatement | None:
        sequence = finding.db_object
        if sequence.data_type.lower() not in _NARROW_SEQUENCE_TYPES:
            return None
        sql = (
            self.keyword("alter sequence ")
            + quote_qualified(sequence.name)
            + self.keyword(" as bigint")
            + ";"
        )
        return MigrationStatement(
            finding.diagnostic,
            finding,
            f"Sequence has {sequence.remaining_percentage}% of its {sequence.data_type} range left",
            (MigrationStep(sequence.name, MigrationAction.ALTER_SEQUENCE, sql),),
        )

    def _drop_duplicated_foreign_keys(self, finding: Finding) -> MigrationStatement:
        group = finding.db_object
        kept, *redundant = group.constraint_names
        steps = tuple(
            MigrationStep(
                f"{group.table_name}.{name}",
                MigrationAction.DROP_CONSTRAINT,
                self.keyword("alter table ")
                + quote_qualified(group.table_name)
                + self.keyword(" drop constraint if exists ")
                + f"{quote_identifier(name)};",
            )
            for name in redundant
        )
        return MigrationStatement(finding.diagnostic, finding, f"Foreign keys duplicate {kept}", steps)

    # -- public ----------------------------------------------------------

    def generate(self, finding: Finding) -> MigrationStatement | None:
        handler = self._handlers.get(finding.diagnostic)
        if handler is None:
            return None
        return handler(finding)

    def generate_all(self, findings: Iterable[Finding]) -> list[MigrationStatement]:
        """Generate statements in input order.

        A repeated finding is emitted once. A step that repeats the action an
        earlier statement already takes on the same object is dropped, and a
        statement left with no steps is skipped. Two different actions on the
        same object raise ConflictingMigrations.
        """
        statements: list[MigrationStatement] = []
        seen_findings = set()
        by_target: dict[str, tuple[MigrationStatement, MigrationStep]] = {}
        for finding in findings:
            key = (finding.diagnostic, finding.db_object)
            if key in seen_findings:
                logger.debug("Skipping repeated finding %s", finding.object_name)
                continue
            seen_findings.add(key)
            statement = self.generate(finding)
            if statement is None:
                continue
            fresh = []
            for step in statement.steps:
                previous = by_target.get(step.target)
                if previous is None:
                    fresh.append(step)
                    continue
                earlier, earlier_step = previous
                if earlier_step.action is step.action:
                    logger.debug(
                        "%s already handled by %s", step.target, earlier.diagnostic.value
                    )
                    continue
                raise ConflictingMigrations(
                    f"{earlier.diagnostic.value} and {statement.diagnostic.value} "
                    f"both change {step.target}",
                    target=step.target,
                    first=earlier_step.sql,
                    second=step.sql,
                )
            if not fresh:
                continue
            if len(fresh) < len(statement.steps):
                statement = replace(statement, steps=tuple(fresh))
            for step in fresh:
                by_target[step.target] = (statement, step)
            statements.append(statement)
        return statements


def generate(finding: Finding, options: GeneratingOptions | None = None) -> MigrationStatement | None:
    return MigrationGenerator(options).generate(finding)


def generate_all(
    findings: Iterable[Finding], options: GeneratingOptions | None = None
) -> list[MigrationStatement]:
    return MigrationGenerator(options).generate_all(findings)
