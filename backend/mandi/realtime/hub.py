"""
Session-scoped event hub.

WHAT: Fan-out of state-change events to the vendor and customer of a session
WHY: Both parties must observe mutations in the order they were applied
HOW: Synchronous publish into per-(session, role) asyncio queues, stamped with a per-session sequence number
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from ..models.session import Role
from ..utils.logger import get_logger

logger = get_logger(__name__)

Audience = Literal["all", "vendor", "customer"]


@dataclass
class OutboundEvent:
    """An event on its way to one or both parties."""
    event: str
    data: dict
    session_code: str | None
    seq: int | None
    audience: Audience
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_frame(self) -> dict:
        return {
            "event": self.event,
            "data": self.data,
            "seq": self.seq,
            "session_code": self.session_code,
            "timestamp": self.timestamp.isoformat(),
        }


class Broadcaster(Protocol):
    """What the core services need from the transport side."""

    def publish(self, session_code: str, event: str, data: dict, audience: Audience = "all") -> OutboundEvent:
        ...


def _roles_for(audience: Audience) -> tuple[Role, ...]:
    if audience == "vendor":
        return (Role.VENDOR,)
    if audience == "customer":
        return (Role.CUSTOMER,)
    return (Role.VENDOR, Role.CUSTOMER)


class SessionEventHub:
    """
    In-process publish/subscribe keyed by session code and role.

    publish() never awaits, so an event is queued in the same event-loop step
    as the mutation that produced it.
    """

    def __init__(self, history_limit: int = 500):
        self._subscribers: dict[tuple[str, Role], list[asyncio.Queue]] = {}
        self._sequence: dict[str, int] = {}
        self._history: dict[str, deque] = {}
        self._history_limit = history_limit

    def subscribe(self, session_code: str, role: Role, queue: asyncio.Queue | None = None) -> asyncio.Queue:
        """Register a queue for a session role; returns the queue."""
        queue = queue if queue is not None else asyncio.Queue()
        self._subscribers.setdefault((session_code, role), []).append(queue)
        logger.debug(f"Subscribed {role.value} queue to session {session_code}")
        return queue

    def unsubscribe(self, session_code: str, role: Role, queue: asyncio.Queue):
        key = (session_code, role)
        queues = [q for q in self._subscribers.get(key, []) if q is not queue]
        if queues:
            self._subscribers[key] = queues
        else:
            self._subscribers.pop(key, None)

    def subscriber_count(self, session_code: str, role: Role | None = None) -> int:
        roles = (role,) if role else (Role.VENDOR, Role.CUSTOMER)
        return sum(len(self._subscribers.get((session_code, r), [])) for r in roles)

    def publish(self, session_code: str, event: str, data: dict, audience: Audience = "all") -> OutboundEvent:
        """Stamp and deliver an event to every subscriber of the audience."""
        seq = self._sequence.get(session_code, 0) + 1
        self._sequence[session_code] = seq
        outbound = OutboundEvent(event=event, data=data, session_code=session_code, seq=seq, audience=audience)

        history = self._history.setdefault(session_code, deque(maxlen=self._history_limit))
        history.append(outbound)

        delivered = 0
        for role in _roles_for(audience):
            for queue in self._subscribers.get((session_code, role), []):
                queue.put_nowait(outbound)
                delivered += 1

        logger.debug(f"[{session_code}] #{seq} {event} -> {audience} ({delivered} subscribers)")
        return outbound

    @staticmethod
    def reply(queue: asyncio.Queue, event: str, data: dict, session_code: str | None = None) -> OutboundEvent:
        """Send an event to one connection only (acks and errors)."""
        outbound = OutboundEvent(event=event, data=data, session_code=session_code, seq=None, audience="all")
        queue.put_nowait(outbound)
        return outbound

    def events_for(self, session_code: str, role: Role | None = None) -> list[OutboundEvent]:
        """Recent events of a session, optionally those a given role would see."""
        events = list(self._history.get(session_code, ()))
        if role is None:
            return events
        return [e for e in events if role in _roles_for(e.audience)]

    def last_seq(self, session_code: str) -> int:
        return self._sequence.get(session_code, 0)

    def drop_session(self, session_code: str):
        for key in [k for k in self._subscribers if k[0] == session_code]:
            del self._subscribers[key]
        self._history.pop(session_code, None)
        self._sequence.pop(session_code, None)


def event_names(events: list[OutboundEvent]) -> list[str]:
    """Names of events in order; handy for assertions and logs."""
    return [e.event for e in events]


def payload_of(events: list[OutboundEvent], name: str) -> Any:
    """Data of the last event with the given name, or None."""
    for outbound in reversed(events):
        if outbound.event == name:
            return outbound.data
    return None
