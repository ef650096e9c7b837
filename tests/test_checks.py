"""Tests for the row mappers in pg_health.checks."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pg_health.checks import as_bool, as_float, as_int, as_list, make_columns
from pg_health.checks.columns import map_column, map_column_with_serial_type, map_column_with_type
from pg_health.checks.constraints import (
    map_constraint,
    map_duplicated_foreign_keys,
    map_foreign_key,
)
from pg_health.checks.functions import map_stored_function
from pg_health.checks.indexes import (
    map_duplicated_indexes,
    map_index,
    map_index_with_bloat,
    map_index_with_columns,
    map_index_with_nulls,
    map_unused_index,
)
from pg_health.checks.objects import map_any_object
from pg_health.checks.sequences import map_sequence_state
from pg_health.checks.tables import (
    map_table,
    map_table_with_bloat,
    map_table_with_columns,
    map_table_with_missing_index,
)
from pg_health.models import Column, PgContext, PgObjectType

SALES = PgContext("sales")


class TestConverters:
    def test_as_int(self):
        assert as_int(None) == 0
        assert as_int(Decimal("42")) == 42

    def test_as_float(self):
        assert as_float(None) == 0.0
        assert as_float(Decimal("12.5")) == 12.5

    def test_as_list_from_array_text(self):
        assert as_list("{a,b}") == ["a", "b"]
        assert as_list("{}") == []
        assert as_list(None) == []
        assert as_list(("x",)) == ["x"]

    def test_as_bool(self):
        assert as_bool("t")
        assert not as_bool("f")
        assert as_bool(True)
        assert not as_bool(None)

    def test_make_columns_without_nullables(self):
        cols = make_columns(SALES, "orders", ["a", "b"])
        assert cols == (Column("sales.orders", "a"), Column("sales.orders", "b"))
        assert not any(c.nullable for c in cols)


class TestIndexMappers:
    def test_index(self, ctx):
        index = map_index({"table_name": "orders", "index_name": "i", "index_size": 8192}, ctx)
        assert (index.table_name, index.name, index.size_bytes) == ("orders", "i", 8192)

    def test_index_qualified(self):
        index = map_index({"table_name": "orders", "index_name": "i"}, SALES)
        assert index.name == "sales.i"
        assert index.table_name == "sales.orders"

    def test_index_columns(self, ctx):
        row = {"table_name": "orders", "index_name": "i", "column_names": ["customer_id", "id"]}
        assert map_index(row, ctx).columns == ("customer_id", "id")
        assert map_index({"table_name": "orders", "index_name": "i"}, ctx).columns == ()

    def test_bloat_clamped(self, ctx):
        row = {
            "table_name": "orders",
            "index_name": "i",
            "index_size": 100,
            "bloat_size": -5,
            "bloat_percentage": Decimal("120.0"),
        }
        index = map_index_with_bloat(row, ctx)
        assert index.bloat_size_bytes == 0
        assert index.bloat_percentage == 100.0

    def test_unused(self, ctx):
        row = {"table_name": "orders", "index_name": "i", "index_size": 10, "index_scans": 3}
        assert map_unused_index(row, ctx).index_scans == 3

    def test_nulls(self, ctx):
        row = {"table_name": "orders", "index_name": "i", "nullable_field": "note"}
        index = map_index_with_nulls(row, ctx)
        assert index.nullable_column == Column("orders", "note")
        assert index.nullable_column.nullable

    def test_with_columns(self, ctx):
        row = {
            "table_name": "orders",
            "index_name": "i",
            "column_names": ["is_paid", "id"],
            "column_nullables": [True, False],
        }
        index = map_index_with_columns(row, ctx)
        assert [c.column_name for c in index.columns] == ["is_paid", "id"]
        assert [c.nullable for c in index.columns] == [True, False]

    def test_duplicated(self, ctx):
        row = {
            "table_name": "orders",
            "indexes": [
                {"index_name": "i_b", "index_size": 16, "column_names": ["note"]},
                {"index_name": "i_a", "index_size": 8, "column_names": ["note"]},
            ],
        }
        group = map_duplicated_indexes(row, ctx)
        assert group.index_names == ["i_a", "i_b"]
        assert group.total_size_bytes == 24
        assert [i.columns for i in group.indexes] == [("note",), ("note",)]

    def test_missing_key_raises(self, ctx):
        with pytest.raises(KeyError):
            map_index({"table_name": "orders"}, ctx)


class TestTableMappers:
    def test_table(self, ctx):
        table = map_table({"table_name": "orders", "table_size": 8192}, ctx)
        assert (table.name, table.size_bytes) == ("orders", 8192)

    def test_table_row_count(self, ctx):
        table = map_table({"table_name": "orders", "table_size": 8192, "row_count": 1500}, ctx)
        assert table.row_count == 1500

    def test_bloat(self, ctx):
        row = {"table_name": "orders", "table_size": 100, "bloat_size": 30, "bloat_percentage": 30.0}
        assert map_table_with_bloat(row, ctx).bloat_percentage == 30.0

    def test_missing_index(self, ctx):
        row = {"table_name": "orders", "table_size": 100, "seq_scan": 50, "idx_scan": 1}
        table = map_table_with_missing_index(row, ctx)
        assert (table.seq_scans, table.index_scans) == (50, 1)

    def test_columns(self):
        row = {"table_name": "orders", "column_names": "{id}", "column_nullables": "{f}"}
        table = map_table_with_columns(row, SALES)
        assert table.name == "sales.orders"
        assert table.columns == (Column("sales.orders", "id"),)


class TestColumnMappers:
    def test_column(self, ctx):
        column = map_column(
            {"table_name": "orders", "column_name": "note", "column_not_null_is_false": True}, ctx
        )
        assert column.name == "orders.note"
        assert column.nullable

    def test_typed_column(self, ctx):
        row = {"table_name": "orders", "column_name": "payload", "column_type": "json"}
        assert map_column_with_type(row, ctx).column_type == "json"

    def test_serial_column(self):
        row = {
            "table_name": "orders",
            "column_name": "id",
            "column_type": "serial",
            "sequence_name": "orders_id_seq",
        }
        column = map_column_with_serial_type(row, SALES)
        assert column.serial_type == "serial"
        assert column.sequence_name == "sales.orders_id_seq"


class TestConstraintMappers:
    def test_foreign_key(self, ctx):
        row = {
            "table_name": "orders",
            "constraint_name": "fk_customer",
            "column_names": ["customer_id"],
            "column_nullables": [True],
        }
        fk = map_foreign_key(row, ctx)
        assert fk.name == "fk_customer"
        assert fk.columns == (Column("orders", "customer_id"),)
        assert fk.columns[0].nullable

    def test_constraint_name_not_qualified(self):
        row = {"table_name": "orders", "constraint_name": "c_amount", "constraint_type": "c"}
        constraint = map_constraint(row, SALES)
        assert constraint.name == "c_amount"
        assert constraint.table_name == "sales.orders"

    def test_duplicated_foreign_keys(self, ctx):
        row = {
            "table_name": "orders",
            "foreign_keys": [
                {"constraint_name": "fk_b", "column_names": ["customer_id"]},
                {"constraint_name": "fk_a", "column_names": ["customer_id"]},
            ],
        }
        assert map_duplicated_foreign_keys(row, ctx).constraint_names == ["fk_a", "fk_b"]


class TestOtherMappers:
    def test_sequence(self, ctx):
        row = {"sequence_name": "orders_seq", "data_type": "integer", "remaining_percentage": 5.5}
        sequence = map_sequence_state(row, ctx)
        assert (sequence.name, sequence.data_type, sequence.remaining_percentage) == (
            "orders_seq",
            "integer",
            5.5,
        )

    def test_function(self):
        row = {"function_name": "add", "function_signature": "add(a integer, b integer)"}
        function = map_stored_function(row, SALES)
        assert function.name == "sales.add"
        assert function.signature == "add(a integer, b integer)"

    def test_any_object(self, ctx):
        row = {"object_name": "Orders", "object_type": "materialized view"}
        obj = map_any_object(row, ctx)
        assert obj.object_type is PgObjectType.MATERIALIZED_VIEW
        assert obj.name == "Orders"
