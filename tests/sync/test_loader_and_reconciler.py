"""
Tests for the bulk loader and the catch-up reconciler.
"""

import pytest

from streamsync.codec.codec import RecordCodec
from streamsync.codec.schema import RecordSchema
from streamsync.core.filter import AcceptAll, ThresholdFilter
from streamsync.core.types import Record
from streamsync.errors import CursorStallError, TransientNetworkError
from streamsync.remote.memory import InMemoryRemoteLog
from streamsync.sync.loader import BulkLoader
from streamsync.sync.merge import RecordStore
from streamsync.sync.reconciler import CatchUpReconciler


@pytest.fixture
def simple_codec():
    """Codec for a minimal ``id, ts, v`` schema."""
    return RecordCodec(RecordSchema.parse("string id, uint64 ts, uint8 v", timestamp_field="ts"))


def simple(record_id: str, ts: int, v: int) -> Record:
    return Record(id=record_id, timestamp=ts, attributes={"v": v})


class TestBulkLoader:
    """Tests for BulkLoader."""

    @pytest.mark.asyncio
    async def test_filters_and_sorts(self, simple_codec):
        """a(100, v5), b(50, v1), c(10, v3) with v >= 2 loads as [a, c]."""
        remote = InMemoryRemoteLog(simple_codec.encode(r) for r in [
            simple("a", 100, 5),
            simple("b", 50, 1),
            simple("c", 10, 3),
        ])
        loader = BulkLoader(remote, simple_codec, ThresholdFilter("v", 2))

        result = await loader.load()

        assert [(r.id, r.timestamp, r.attributes["v"]) for r in result.records] == [
            ("a", 100, 5),
            ("c", 10, 3),
        ]
        assert result.remote_total == 3
        assert result.rejected == 1
        assert result.skipped == 0

    @pytest.mark.asyncio
    async def test_empty_log(self, simple_codec):
        remote = InMemoryRemoteLog()
        result = await BulkLoader(remote, simple_codec, AcceptAll()).load()
        assert result.records == ()
        assert result.remote_total == 0
        assert remote.calls == [("count",)]

    @pytest.mark.asyncio
    async def test_skips_undecodable_entries(self, simple_codec):
        remote = InMemoryRemoteLog([
            simple_codec.encode(simple("a", 1, 5)),
            b"garbage",
            simple_codec.encode(simple("c", 3, 5)),
        ])
        result = await BulkLoader(remote, simple_codec, AcceptAll()).load()
        assert [r.id for r in result.records] == ["c", "a"]
        assert result.skipped == 1
        assert result.remote_total == 3

    @pytest.mark.asyncio
    async def test_index_mode(self, simple_codec):
        remote = InMemoryRemoteLog(simple_codec.encode(simple(f"r{i}", i, 5)) for i in range(3))
        result = await BulkLoader(remote, simple_codec, AcceptAll(), mode="index").load()

        assert [r.id for r in result.records] == ["r2", "r1", "r0"]
        assert [c[0] for c in remote.calls] == ["count", "fetch_by_index", "fetch_by_index", "fetch_by_index"]

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, simple_codec):
        remote = InMemoryRemoteLog([simple_codec.encode(simple("a", 1, 5))])
        remote.fail_next(1)
        with pytest.raises(TransientNetworkError):
            await BulkLoader(remote, simple_codec, AcceptAll()).load()

    @pytest.mark.asyncio
    async def test_short_range_aborts(self, make_log, codec):
        """A range missing entries fails the load instead of reporting the full count."""
        remote = make_log(5)

        async def short_fetch(start, end):
            return list(remote.entries[start:end + 1])[:-2]

        remote.fetch_range = short_fetch
        with pytest.raises(TransientNetworkError, match="expected 5 entries, got 3"):
            await BulkLoader(remote, codec, AcceptAll()).load()

    def test_unknown_mode(self, simple_codec):
        with pytest.raises(ValueError):
            BulkLoader(InMemoryRemoteLog(), simple_codec, AcceptAll(), mode="stream")


class TestCatchUpReconciler:
    """Tests for CatchUpReconciler."""

    @pytest.mark.asyncio
    async def test_gap_repair(self, make_log, make_record, codec):
        """Remote 0..9, local 0..6 with cursor 7: catch-up merges 7, 8, 9."""
        remote = make_log(10)
        store = RecordStore(make_record(i) for i in range(7))
        reconciler = CatchUpReconciler(remote, codec, AcceptAll())

        result = await reconciler.reconcile(7, store)

        assert result.cursor == 10
        assert [r.id for r in result.added] == ["eq-9", "eq-8", "eq-7"]
        assert {r.id for r in result.store} == {f"eq-{i}" for i in range(10)}
        assert ("fetch_range", 7, 9) in remote.calls

    @pytest.mark.asyncio
    async def test_up_to_date(self, make_log, codec):
        remote = make_log(4)
        store = RecordStore.empty()
        result = await CatchUpReconciler(remote, codec, AcceptAll()).reconcile(4, store)

        assert result.cursor == 4
        assert result.added == ()
        assert result.store is store
        assert remote.calls == [("count",)]

    @pytest.mark.asyncio
    async def test_remote_behind_cursor(self, make_log, codec):
        """A head behind the cursor is treated as nothing to do."""
        result = await CatchUpReconciler(make_log(2), codec, AcceptAll()).reconcile(5, RecordStore.empty())
        assert result.cursor == 5

    @pytest.mark.asyncio
    async def test_already_known_records_not_added(self, make_log, make_record, codec):
        """Records that arrived by push before the catch-up are not re-added."""
        remote = make_log(5)
        store = RecordStore([make_record(i) for i in range(3)] + [make_record(4)])

        result = await CatchUpReconciler(remote, codec, AcceptAll()).reconcile(3, store)

        assert [r.id for r in result.added] == ["eq-3"]
        assert result.cursor == 5

    @pytest.mark.asyncio
    async def test_count_failure_stalls(self, make_log, codec):
        remote = make_log(5)
        remote.fail_next(1)
        with pytest.raises(CursorStallError) as exc_info:
            await CatchUpReconciler(remote, codec, AcceptAll()).reconcile(2, RecordStore.empty())
        assert exc_info.value.cursor == 2
        assert exc_info.value.remote_total is None

    @pytest.mark.asyncio
    async def test_range_failure_stalls(self, make_log, codec):
        """A failed range fetch leaves the cursor where it was."""
        remote = make_log(5)
        reconciler = CatchUpReconciler(remote, codec, AcceptAll())
        original_fetch = remote.fetch_range

        async def failing_fetch(start, end):
            raise TransientNetworkError("reset by peer")

        remote.fetch_range = failing_fetch
        with pytest.raises(CursorStallError) as exc_info:
            await reconciler.reconcile(2, RecordStore.empty())
        assert exc_info.value.remote_total == 5
        assert "Catch-up stalled at cursor 2" in str(exc_info.value)

        remote.fetch_range = original_fetch
        result = await reconciler.reconcile(2, RecordStore.empty())
        assert result.cursor == 5

    @pytest.mark.asyncio
    async def test_short_range_stalls(self, make_log, codec):
        remote = make_log(5)

        async def short_fetch(start, end):
            return []

        remote.fetch_range = short_fetch
        with pytest.raises(CursorStallError, match="expected 3 entries"):
            await CatchUpReconciler(remote, codec, AcceptAll()).reconcile(2, RecordStore.empty())

    @pytest.mark.asyncio
    async def test_filter_applied(self, codec, make_record):
        remote = InMemoryRemoteLog([
            codec.encode(make_record(0, magnitude=1.5)),
            codec.encode(make_record(1, magnitude=4.0)),
        ])
        result = await CatchUpReconciler(remote, codec, ThresholdFilter("magnitude", 2.0)).reconcile(
            0, RecordStore.empty()
        )
        assert [r.id for r in result.added] == ["eq-1"]
        assert result.cursor == 2

    @pytest.mark.asyncio
    async def test_undecodable_entries_still_advance_cursor(self, codec, make_record):
        remote = InMemoryRemoteLog([b"garbage", codec.encode(make_record(1))])
        result = await CatchUpReconciler(remote, codec, AcceptAll()).reconcile(0, RecordStore.empty())
        assert result.cursor == 2
        assert result.skipped == 1
