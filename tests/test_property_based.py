"""Property-based tests for merging, filtering, ordering and index naming.

Properties checked:

1. Statistical merge keeps exactly the objects every host reported
2. The merged set does not depend on host order
3. A predicate that excludes everything leaves nothing, and adding an
   exclusion never brings an object back
4. Ordering of findings is deterministic whatever the input order
5. Generated index names never exceed the identifier limit
"""

from __future__ import annotations

import hypothesis.strategies as st
from hypothesis import given, settings

from pg_health.generator import (
    MAX_IDENTIFIER_LENGTH,
    GeneratingOptions,
    IndexNameGenerator,
    java_string_hash,
)
from pg_health.models import Column, ForeignKey, IdxPosition, UnusedIndex, object_sort_key
from pg_health.predicates import EXCLUDE_ALL, all_of, skip_indexes_by_name, skip_small_indexes
from pg_health.scanner import merge_statistical

INDEX_NAMES = [f"idx_{n}" for n in ("a", "b", "c", "d", "e", "f", "g", "h")]

identifiers = st.text(alphabet="abcdefghijklmnopqrstuvwxyz_0123456789", min_size=1, max_size=70)

unused_index = st.builds(
    UnusedIndex,
    table_name=st.sampled_from(["orders", "items"]),
    name=st.sampled_from(INDEX_NAMES),
    size_bytes=st.integers(min_value=0, max_value=10**9),
    index_scans=st.integers(min_value=0, max_value=100),
)

host_answers = st.lists(
    st.lists(unused_index, max_size=12, unique_by=lambda i: (i.table_name, i.name)),
    min_size=1,
    max_size=5,
)


class TestStatisticalMerge:
    @given(per_host=host_answers)
    @settings(max_examples=200)
    def test_intersection(self, per_host):
        merged = merge_statistical(per_host)
        expected = set(per_host[0])
        for objects in per_host[1:]:
            expected &= set(objects)
        assert set(merged) == expected
        assert len(merged) == len(set(merged))

    @given(per_host=host_answers, data=st.data())
    def test_host_order_independent(self, per_host, data):
        shuffled = data.draw(st.permutations(per_host))
        assert set(merge_statistical(shuffled)) == set(merge_statistical(per_host))

    @given(per_host=host_answers)
    def test_metrics_from_first_host(self, per_host):
        first = {(o.table_name, o.name): o for o in per_host[0]}
        for obj in merge_statistical(per_host):
            assert obj.index_scans == first[(obj.table_name, obj.name)].index_scans


class TestExclusions:
    @given(objects=st.lists(unused_index, max_size=20))
    def test_exclude_all_wins(self, objects):
        keep = all_of(skip_small_indexes(1), EXCLUDE_ALL)
        assert [o for o in objects if keep(o)] == []

    @given(
        objects=st.lists(unused_index, max_size=20),
        skipped=st.lists(st.sampled_from(INDEX_NAMES), min_size=1, max_size=3),
        threshold=st.integers(min_value=0, max_value=10**9),
    )
    def test_adding_exclusion_never_adds_objects(self, objects, skipped, threshold):
        base = skip_small_indexes(threshold)
        narrower = base & skip_indexes_by_name(skipped)
        kept = [o for o in objects if base(o)]
        kept_narrower = [o for o in objects if narrower(o)]
        assert set(kept_narrower) <= set(kept)
        assert not any(o.name in skipped for o in kept_narrower)


class TestOrdering:
    @given(objects=st.lists(unused_index, max_size=20), data=st.data())
    def test_sort_is_deterministic(self, objects, data):
        shuffled = data.draw(st.permutations(objects))
        assert [object_sort_key(o) for o in sorted(objects, key=object_sort_key)] == [
            object_sort_key(o) for o in sorted(shuffled, key=object_sort_key)
        ]


class TestIndexNaming:
    @given(
        table=identifiers,
        columns=st.lists(st.tuples(identifiers, st.booleans()), min_size=1, max_size=4),
        position=st.sampled_from(list(IdxPosition)),
    )
    def test_truncated_name_fits(self, table, columns, position):
        fk = ForeignKey(
            table_name=table,
            name="fk",
            columns=tuple(Column(table, name, nullable=nullable) for name, nullable in columns),
        )
        names = IndexNameGenerator(fk, GeneratingOptions(idx_position=position))
        full = names.full_name()
        name = full if len(full) <= MAX_IDENTIFIER_LENGTH else names.truncated_name()
        assert len(name) <= MAX_IDENTIFIER_LENGTH

    @given(text=st.text(alphabet=st.characters(max_codepoint=0xFFFF, exclude_categories=("Cs",))))
    def test_hash_matches_polynomial(self, text):
        expected = 0
        for char in text:
            expected = expected * 31 + ord(char)
        expected %= 2**32
        if expected >= 2**31:
            expected -= 2**32
        assert java_string_hash(text) == expected
