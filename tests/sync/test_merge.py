"""
Tests for the merge engine and RecordStore.
"""

from hypothesis import given
from hypothesis import strategies as st

from streamsync.core.types import Record
from streamsync.sync.merge import RecordStore, merge


def rec(record_id: str, ts: int, **attributes) -> Record:
    return Record(id=record_id, timestamp=ts, attributes=attributes)


records_strategy = st.lists(
    st.builds(
        rec,
        record_id=st.sampled_from([f"id-{i}" for i in range(12)]),
        ts=st.integers(min_value=0, max_value=50),
    ),
    max_size=30,
)


class TestRecordStore:
    """Tests for RecordStore."""

    def test_sorted_newest_first(self):
        store = RecordStore([rec("a", 10), rec("b", 30), rec("c", 20)])
        assert [r.id for r in store] == ["b", "c", "a"]

    def test_timestamp_ties_break_on_id(self):
        store = RecordStore([rec("b", 10), rec("a", 10)])
        assert [r.id for r in store.records] == ["a", "b"]

    def test_first_occurrence_wins(self):
        store = RecordStore([rec("a", 10, v=1), rec("a", 99, v=2)])
        assert len(store) == 1
        assert store.get("a").attributes == {"v": 1}

    def test_snapshot_is_a_copy(self):
        store = RecordStore([rec("a", 1)])
        snapshot = store.snapshot()
        snapshot.clear()
        assert len(store) == 1

    def test_membership(self):
        store = RecordStore([rec("a", 1)])
        assert "a" in store
        assert "z" not in store
        assert store.get("z") is None

    def test_empty(self):
        assert len(RecordStore.empty()) == 0


class TestMerge:
    """Tests for merge()."""

    def test_adds_new_records(self):
        store = RecordStore([rec("a", 10)])
        result = merge(store, [rec("b", 20), rec("c", 5)])

        assert [r.id for r in result.store] == ["b", "a", "c"]
        assert [r.id for r in result.added] == ["b", "c"]
        assert result.changed is True

    def test_existing_id_is_a_duplicate_not_an_update(self):
        """A record whose id is known is dropped even if its content differs."""
        store = RecordStore([rec("a", 100, v=5)])
        result = merge(store, [rec("a", 100, v=9)])

        assert result.added == ()
        assert result.store is store
        assert result.store.get("a").attributes == {"v": 5}

    def test_duplicates_within_batch(self):
        result = merge(RecordStore.empty(), [rec("a", 1, v=1), rec("a", 1, v=2)])
        assert len(result.added) == 1
        assert result.store.get("a").attributes == {"v": 1}

    def test_input_store_untouched(self):
        store = RecordStore([rec("a", 1)])
        merge(store, [rec("b", 2)])
        assert [r.id for r in store] == ["a"]

    def test_empty_batch(self):
        store = RecordStore([rec("a", 1)])
        result = merge(store, [])
        assert result.store is store
        assert result.changed is False


class TestMergeProperties:
    """Properties that must hold for any sequence of batches."""

    @given(records_strategy, records_strategy)
    def test_idempotent(self, existing, batch):
        """Merging the same batch twice adds nothing the second time."""
        once = merge(RecordStore(existing), batch)
        twice = merge(once.store, batch)
        assert twice.added == ()
        assert twice.store.records == once.store.records

    @given(records_strategy, records_strategy)
    def test_ids_unique_and_sorted(self, existing, batch):
        store = merge(RecordStore(existing), batch).store
        ids = [r.id for r in store]
        assert len(ids) == len(set(ids))
        keys = [(-r.timestamp, r.id) for r in store]
        assert keys == sorted(keys)

    @given(records_strategy, records_strategy)
    def test_union_of_ids(self, existing, batch):
        store = merge(RecordStore(existing), batch).store
        assert {r.id for r in store} == {r.id for r in existing} | {r.id for r in batch}

    @given(records_strategy, records_strategy)
    def test_added_are_exactly_the_unknown_ids(self, existing, batch):
        before = RecordStore(existing)
        result = merge(before, batch)
        expected = {r.id for r in batch} - {r.id for r in existing}
        assert {r.id for r in result.added} == expected
        assert len(result.store) == len(before) + len(result.added)

    @given(st.lists(records_strategy, max_size=5))
    def test_order_of_batches_does_not_change_ids(self, batches):
        forward = RecordStore.empty()
        for batch in batches:
            forward = merge(forward, batch).store
        backward = RecordStore.empty()
        for batch in reversed(batches):
            backward = merge(backward, batch).store
        assert {r.id for r in forward} == {r.id for r in backward}
