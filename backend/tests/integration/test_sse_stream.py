"""
Integration tests for the SSE session stream.

WHAT: Test connected/replay/live/heartbeat events of the SSE generator and endpoint guards
WHY: Read-only clients depend on the same ordering guarantees as sockets
HOW: Drive session_event_generator directly with a scripted disconnect check
"""

import json

import pytest

from mandi.api.v1.endpoints.streaming import session_event_generator
from mandi.models.session import Role


class DisconnectAfter:
    """is_disconnected() that turns True after `checks` calls."""

    def __init__(self, checks: int):
        self.remaining = checks

    async def __call__(self) -> bool:
        self.remaining -= 1
        return self.remaining < 0


async def collect(generator):
    return [event async for event in generator]


@pytest.mark.integration
class TestSessionEventGenerator:

    @pytest.mark.asyncio
    async def test_connected_event_first(self, runtime, live):
        events = await collect(session_event_generator(runtime, live.code, Role.CUSTOMER, DisconnectAfter(0)))

        assert events[0]["event"] == "connected"
        data = json.loads(events[0]["data"])
        assert data["role"] == "customer"
        assert data["last_seq"] == runtime.hub.last_seq(live.code)
        assert runtime.hub.subscriber_count(live.code) == 0

    @pytest.mark.asyncio
    async def test_replay_after_sequence(self, runtime, live):
        since = runtime.hub.last_seq(live.code)
        runtime.cart.add_item(live.code, live.customer_token, "tomato", 1)
        runtime.ledger.edit_price(live.code, live.vendor_token, "onion", 52)

        events = await collect(
            session_event_generator(runtime, live.code, Role.VENDOR, DisconnectAfter(0), since=since)
        )

        replayed = events[1:]
        assert [e["event"] for e in replayed] == ["customer-cart-updated", "inventory-updated"]
        assert all(int(e["id"]) > since for e in replayed)
        frame = json.loads(replayed[0]["data"])
        assert frame["event"] == "customer-cart-updated"
        assert frame["seq"] == int(replayed[0]["id"])

    @pytest.mark.asyncio
    async def test_live_events_follow_audience(self, runtime, live):
        stream = session_event_generator(runtime, live.code, Role.CUSTOMER, DisconnectAfter(5), heartbeat_interval=1.0)
        assert (await stream.__anext__())["event"] == "connected"

        runtime.cart.add_item(live.code, live.customer_token, "tomato", 1)  # vendor only
        runtime.ledger.edit_price(live.code, live.vendor_token, "tomato", 48)

        event = await stream.__anext__()
        await stream.aclose()

        assert event["event"] == "inventory-updated"
        assert json.loads(event["data"])["data"]["products"][0]["vendor_price"] == 48
        assert runtime.hub.subscriber_count(live.code, Role.CUSTOMER) == 0

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self, runtime, live):
        events = await collect(
            session_event_generator(runtime, live.code, Role.VENDOR, DisconnectAfter(2), heartbeat_interval=0.01)
        )
        assert [e["event"] for e in events] == ["connected", "heartbeat", "heartbeat"]


@pytest.mark.integration
class TestStreamEndpointGuards:

    def test_invalid_token(self, client, live):
        response = client.get(f"/api/v1/sessions/{live.code}/events", params={"token": "guess"})
        assert response.status_code == 403

    def test_unknown_session(self, client):
        response = client.get("/api/v1/sessions/NOPE42/events", params={"token": "guess"})
        assert response.status_code == 404

    def test_disconnected_session(self, client, runtime, live):
        runtime.store.mark_disconnected(live.code, Role.CUSTOMER)
        response = client.get(f"/api/v1/sessions/{live.code}/events", params={"token": live.vendor_token})
        assert response.status_code == 409
