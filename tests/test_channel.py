"""Tests for the live update channel."""

from unittest.mock import MagicMock

from conftest import running_machine
from shopfloor_twin.channel import MACHINE_UPDATE, LiveChannel, machine_update


class TestLiveChannel:
    def test_subscriber_receives_message(self):
        channel = LiveChannel()
        sub = channel.subscribe()

        channel.publish({"type": "ping"})

        assert sub.get(timeout=1) == {"type": "ping"}
        assert channel.messages_published == 1

    def test_no_replay_for_late_subscribers(self):
        channel = LiveChannel()
        channel.publish({"n": 1})

        sub = channel.subscribe()
        channel.publish({"n": 2})

        assert sub.drain() == [{"n": 2}]

    def test_full_queue_drops_without_blocking(self):
        channel = LiveChannel(max_queue=2)
        slow = channel.subscribe()
        fast = channel.subscribe()

        for n in range(5):
            channel.publish({"n": n})
            fast.drain()

        assert [m["n"] for m in slow.drain()] == [0, 1]
        assert slow.dropped == 3
        assert fast.dropped == 0

    def test_unsubscribe(self):
        channel = LiveChannel()
        sub = channel.subscribe()
        assert channel.subscriber_count == 1

        channel.unsubscribe(sub)
        channel.publish({"n": 1})

        assert channel.subscriber_count == 0
        assert sub.get(timeout=0.01) is None

    def test_sink_failure_is_isolated(self):
        channel = LiveChannel()
        broken = MagicMock(side_effect=RuntimeError("broker gone"))
        healthy = MagicMock()
        channel.add_sink(broken)
        channel.add_sink(healthy)
        sub = channel.subscribe()

        channel.publish({"n": 1})

        healthy.assert_called_once_with({"n": 1})
        assert sub.get(timeout=1) == {"n": 1}


class TestMachineUpdate:
    def test_snapshot_message(self):
        message = machine_update([running_machine("M1"), running_machine("M2")])

        assert message["type"] == MACHINE_UPDATE
        assert [m["id"] for m in message["machines"]] == ["M1", "M2"]
        assert message["machines"][0]["status"] == "Running"
