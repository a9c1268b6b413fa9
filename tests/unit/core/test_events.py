"""
Tests for core.events (ProgressBus).
"""

from unittest.mock import Mock

from picnexus.core.events import ProgressBus, ProgressEvent


class TestProgressBus:
    """Test suite for publish/subscribe of progress events."""

    def test_subscribe_and_publish(self):
        bus = ProgressBus()
        handler = Mock()
        bus.subscribe(handler)

        event = ProgressEvent(item_id="i1", service_id="alpha", percent=40.0)
        bus.publish(event)

        handler.assert_called_once_with(event)

    def test_unsubscribe(self):
        bus = ProgressBus()
        handler = Mock()
        sub_id = bus.subscribe(handler)

        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        bus.publish(ProgressEvent("i1", "alpha", 10.0))

        handler.assert_not_called()
        assert bus.subscription_count == 0

    def test_failing_handler_does_not_block_others(self):
        bus = ProgressBus()
        bus.subscribe(Mock(side_effect=RuntimeError("boom")))
        good = Mock()
        bus.subscribe(good)

        bus.publish(ProgressEvent("i1", "alpha", 10.0))

        good.assert_called_once()

    def test_reporter_clamps_percent(self):
        bus = ProgressBus()
        received = []
        bus.subscribe(received.append)

        report = bus.reporter("i1", "beta")
        report(150)
        report(-5)

        assert [e.percent for e in received] == [100.0, 0.0]
        assert all(e.item_id == "i1" and e.service_id == "beta" for e in received)
