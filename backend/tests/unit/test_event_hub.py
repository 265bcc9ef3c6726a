"""
Unit tests for the session event hub.

WHAT: Test fan-out by audience, sequence numbers and history
WHY: Both parties must see mutations in the order they were applied
HOW: Subscribe plain asyncio queues and inspect what lands in them
"""

import asyncio

import pytest

from mandi.models.session import Role
from mandi.realtime.hub import SessionEventHub, event_names, payload_of


@pytest.mark.unit
class TestSessionEventHub:

    def test_publish_respects_audience(self):
        hub = SessionEventHub()
        vendor = hub.subscribe("ABC123", Role.VENDOR)
        customer = hub.subscribe("ABC123", Role.CUSTOMER)

        hub.publish("ABC123", "to-all", {"n": 1}, "all")
        hub.publish("ABC123", "to-vendor", {"n": 2}, "vendor")
        hub.publish("ABC123", "to-customer", {"n": 3}, "customer")

        assert vendor.qsize() == 2
        assert customer.qsize() == 2
        assert [vendor.get_nowait().event for _ in range(2)] == ["to-all", "to-vendor"]
        assert [customer.get_nowait().event for _ in range(2)] == ["to-all", "to-customer"]

    def test_sequence_is_per_session_and_increasing(self):
        hub = SessionEventHub()
        first = hub.publish("AAAAAA", "a", {})
        second = hub.publish("AAAAAA", "b", {}, "vendor")
        other = hub.publish("BBBBBB", "c", {})

        assert (first.seq, second.seq) == (1, 2)
        assert other.seq == 1
        assert hub.last_seq("AAAAAA") == 2

    def test_other_sessions_are_isolated(self):
        hub = SessionEventHub()
        queue = hub.subscribe("AAAAAA", Role.VENDOR)
        hub.publish("BBBBBB", "elsewhere", {})
        assert queue.empty()

    def test_unsubscribe(self):
        hub = SessionEventHub()
        queue = hub.subscribe("AAAAAA", Role.VENDOR)
        hub.unsubscribe("AAAAAA", Role.VENDOR, queue)
        hub.publish("AAAAAA", "x", {})
        assert queue.empty()
        assert hub.subscriber_count("AAAAAA") == 0

    def test_reply_has_no_sequence(self):
        queue = asyncio.Queue()
        outbound = SessionEventHub.reply(queue, "cart-error", {"code": "X"}, "AAAAAA")
        frame = queue.get_nowait().to_frame()

        assert outbound.seq is None
        assert frame["seq"] is None
        assert frame["event"] == "cart-error"
        assert frame["session_code"] == "AAAAAA"

    def test_history_by_role(self):
        hub = SessionEventHub()
        hub.publish("AAAAAA", "a", {"x": 1}, "vendor")
        hub.publish("AAAAAA", "b", {"x": 2}, "customer")
        hub.publish("AAAAAA", "c", {"x": 3}, "all")

        assert event_names(hub.events_for("AAAAAA", Role.VENDOR)) == ["a", "c"]
        assert event_names(hub.events_for("AAAAAA", Role.CUSTOMER)) == ["b", "c"]
        assert payload_of(hub.events_for("AAAAAA"), "b") == {"x": 2}

    def test_history_is_bounded(self):
        hub = SessionEventHub(history_limit=3)
        for i in range(5):
            hub.publish("AAAAAA", f"e{i}", {})
        assert event_names(hub.events_for("AAAAAA")) == ["e2", "e3", "e4"]

    def test_drop_session(self):
        hub = SessionEventHub()
        hub.subscribe("AAAAAA", Role.VENDOR)
        hub.publish("AAAAAA", "a", {})
        hub.drop_session("AAAAAA")
        assert hub.events_for("AAAAAA") == []
        assert hub.last_seq("AAAAAA") == 0
        assert hub.subscriber_count("AAAAAA") == 0
