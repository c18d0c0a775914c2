"""
Tests for the push subscription state machine.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from streamsync.core.filter import AcceptAll, ThresholdFilter
from streamsync.push.channel import BundleDirective, BundleKind
from streamsync.push.manager import PushSubscriptionManager, SessionState
from streamsync.push.memory import InMemoryPushChannel

EVENT = "EarthquakeDetected"

IDLE = SessionState.IDLE
CONNECTING = SessionState.CONNECTING
ACTIVE = SessionState.ACTIVE
DEGRADED = SessionState.DEGRADED
CLOSED = SessionState.CLOSED


class Harness:
    """Manager wired to an in-memory channel with mocked owner callbacks."""

    def __init__(self, remote, codec, directive=None, record_filter=None, **kwargs):
        self.remote = remote
        self.channel = InMemoryPushChannel(remote)
        self.directive = directive or BundleDirective.latest("earthquakes")
        self.ingest = MagicMock()
        self.request_catch_up = MagicMock()
        self.on_active = MagicMock()
        self.transitions: list[tuple[SessionState, SessionState]] = []
        options = {"channel_error_retry": 0.01, "subscribe_retry": 0.01, "subscribe_timeout": 1.0}
        options.update(kwargs)
        self.manager = PushSubscriptionManager(
            channel=self.channel,
            event_name=EVENT,
            directive_provider=lambda: self.directive,
            codec=codec,
            record_filter=record_filter or AcceptAll(),
            ingest=self.ingest,
            request_catch_up=self.request_catch_up,
            on_active=self.on_active,
            **options,
        )
        self.manager.add_state_listener(lambda old, new: self.transitions.append((old, new)))

    def ingested_ids(self) -> list[str]:
        return [r.id for call in self.ingest.call_args_list for r in call.args[0]]


@pytest.fixture
def harness(make_log, codec):
    def _make(count=3, **kwargs):
        return Harness(make_log(count), codec, **kwargs)

    return _make


class TestLifecycle:
    """Tests for start, reconnect and close."""

    @pytest.mark.asyncio
    async def test_start_reaches_active(self, harness, eventually):
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        assert h.transitions == [(IDLE, CONNECTING), (CONNECTING, ACTIVE)]
        h.on_active.assert_called_once_with(False)
        assert len(h.channel.subscriptions) == 1
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_start_twice(self, harness):
        h = harness()
        await h.manager.start()
        with pytest.raises(RuntimeError):
            await h.manager.start()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_three_subscribe_failures_then_success(self, harness, eventually):
        """Each failed subscribe degrades, waits and tries again."""
        h = harness()
        h.channel.fail_next_subscribe(3)
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        assert h.transitions == [
            (IDLE, CONNECTING),
            (CONNECTING, DEGRADED), (DEGRADED, CONNECTING),
            (CONNECTING, DEGRADED), (DEGRADED, CONNECTING),
            (CONNECTING, DEGRADED), (DEGRADED, CONNECTING),
            (CONNECTING, ACTIVE),
        ]
        assert h.channel.subscribe_calls == 4
        h.on_active.assert_called_once_with(False)
        h.ingest.assert_not_called()
        assert h.manager.get_stats()["failures"] == 3
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_subscribe_timeout_degrades(self, harness, eventually):
        """A subscribe that never answers is abandoned after the timeout."""
        h = harness(subscribe_timeout=0.05)
        h.channel.hang_next_subscribe(1)
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        assert (CONNECTING, DEGRADED) in h.transitions
        assert h.channel.subscribe_calls == 2
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_channel_error_reconnects(self, harness, eventually):
        """A channel error releases the handle and resubscribes after the delay."""
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)
        first = h.channel.subscriptions[0]

        h.channel.emit_error()
        assert h.manager.state is DEGRADED
        await eventually(lambda: h.manager.state is ACTIVE)

        assert first.closed is True
        assert len(h.channel.subscriptions) == 1
        assert h.on_active.call_args_list[-1].args == (True,)
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_repeated_errors_schedule_one_reconnect(self, harness, eventually):
        h = harness(channel_error_retry=0.05)
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)
        subscription = h.channel.subscriptions[0]

        subscription.on_error(RuntimeError("first"))
        subscription.on_error(RuntimeError("second"))
        await eventually(lambda: h.manager.state is ACTIVE)

        assert h.transitions.count((ACTIVE, DEGRADED)) == 1
        assert h.channel.subscribe_calls == 2
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_close_releases_and_is_idempotent(self, harness, eventually):
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)
        subscription = h.channel.subscriptions[0]

        await h.manager.close()
        await h.manager.close()

        assert h.manager.state is CLOSED
        assert subscription.closed is True
        assert h.channel.subscriptions == []

    @pytest.mark.asyncio
    async def test_close_cancels_pending_reconnect(self, harness):
        h = harness(subscribe_retry=0.05)
        h.channel.fail_next_subscribe(1)
        await h.manager.start()
        await asyncio.sleep(0.01)
        assert h.manager.state is DEGRADED

        await h.manager.close()
        await asyncio.sleep(0.1)
        assert h.channel.subscribe_calls == 1
        assert h.manager.state is CLOSED

    @pytest.mark.asyncio
    async def test_close_during_subscribe(self, harness):
        h = harness()
        h.channel.hang_next_subscribe(1)
        await h.manager.start()
        await asyncio.sleep(0.01)

        await h.manager.close()
        assert h.manager.state is CLOSED
        assert h.channel.subscriptions == []


class TestNotifications:
    """Tests for bundled payload handling."""

    @pytest.mark.asyncio
    async def test_latest_payload_ingested(self, harness, eventually):
        h = harness(count=3)
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish(EVENT)
        await h.manager.join()

        assert h.ingested_ids() == ["eq-2"]
        assert h.ingest.call_args.args[1] == "latest"
        assert h.manager.last_event_at is not None
        h.request_catch_up.assert_not_called()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_snapshot_payload_ingested(self, harness, eventually):
        h = harness(count=3, directive=BundleDirective.snapshot("earthquakes"))
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish(EVENT)
        await h.manager.join()

        assert sorted(h.ingested_ids()) == ["eq-0", "eq-1", "eq-2"]
        assert h.ingest.call_args.args[1] == "snapshot"
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_undecodable_payload_requests_catch_up(self, harness, eventually):
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish_raw(EVENT, (b"garbage",))
        await h.manager.join()

        h.ingest.assert_not_called()
        h.request_catch_up.assert_called_once()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_missing_payload_requests_catch_up(self, harness, eventually):
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish_raw(EVENT, None)
        await h.manager.join()

        h.request_catch_up.assert_called_once()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_partial_snapshot_ingests_and_requests_catch_up(self, harness, codec, make_record, eventually):
        h = harness(directive=BundleDirective.snapshot("earthquakes"))
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish_raw(EVENT, (codec.encode(make_record(7)), b"garbage"))
        await h.manager.join()

        assert h.ingested_ids() == ["eq-7"]
        h.request_catch_up.assert_called_once()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_filtered_payload_not_ingested(self, harness, eventually):
        """Records below the threshold are dropped here exactly as in the other paths."""
        h = harness(record_filter=ThresholdFilter("magnitude", 5.0))
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish(EVENT)
        await h.manager.join()

        h.ingest.assert_not_called()
        h.request_catch_up.assert_not_called()
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_superseded_generation_ignored(self, harness, eventually):
        """Callbacks held by a replaced subscription no longer reach the owner."""
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)
        old = h.channel.subscriptions[0]

        h.channel.emit_error()
        await eventually(lambda: h.manager.state is ACTIVE)

        old.on_data(MagicMock())
        old.on_error(RuntimeError("late"))
        await h.manager.join()

        h.ingest.assert_not_called()
        assert h.manager.state is ACTIVE
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_no_delivery_after_close(self, harness, eventually):
        h = harness()
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)
        subscription = h.channel.subscriptions[0]

        await h.manager.close()
        subscription.on_data(MagicMock())
        await asyncio.sleep(0.01)
        h.ingest.assert_not_called()


class TestAtIndexDirective:
    """AT_INDEX subscriptions move forward only by resubscribing."""

    @pytest.mark.asyncio
    async def test_resubscribes_with_next_index(self, harness, codec, make_record, eventually):
        h = harness(count=2, directive=BundleDirective.at_index("earthquakes", 2))
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.remote.append(codec.encode(make_record(2)))
        h.channel.publish(EVENT)
        await h.manager.join()
        await eventually(lambda: h.manager.state is ACTIVE and h.channel.subscribe_calls == 2)

        assert h.ingested_ids() == ["eq-2"]
        assert h.channel.directives[-1].kind is BundleKind.AT_INDEX
        assert h.channel.directives[-1].index == 3
        assert len(h.channel.subscriptions) == 1
        await h.manager.close()

    @pytest.mark.asyncio
    async def test_empty_index_requests_catch_up(self, harness, eventually):
        """Nothing at the pinned index yet: fall back to catch-up, keep the subscription."""
        h = harness(count=2, directive=BundleDirective.at_index("earthquakes", 2))
        await h.manager.start()
        await eventually(lambda: h.manager.state is ACTIVE)

        h.channel.publish(EVENT)
        await h.manager.join()

        h.request_catch_up.assert_called_once()
        assert h.channel.subscribe_calls == 1
        await h.manager.close()
