"""Tests for the relay pool, with scripted websocket connections."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from burrow.core.exceptions import RelayError
from burrow.nostr.events import NostrEvent, sign_event
from burrow.nostr.relay import Filter, RelayPool, _parse_event

RELAYS = ["wss://one", "wss://two"]


class ScriptedConnection:
    """Answers each sent message with canned relay frames. ``None`` closes the socket."""

    def __init__(self, url: str, respond: Callable[[list[Any]], list[Any]]):
        self.url = url
        self.respond = respond
        self.sent: list[list[Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: list[Any]) -> None:
        self.sent.append(message)
        for frame in self.respond(message):
            self._inbox.put_nowait(frame)

    async def receive(self) -> list[Any] | None:
        return await self._inbox.get()

    async def close(self) -> None:
        self.closed = True


def scripted_pool(monkeypatch, responders: dict[str, Callable | None], timeout: float = 1.0):
    """RelayPool whose connections are scripted. A None responder fails to connect."""
    pool = RelayPool(list(responders), timeout=timeout)
    connections: list[ScriptedConnection] = []

    async def fake_connect(url: str) -> ScriptedConnection:
        respond = responders[url]
        if respond is None:
            raise RelayError("Failed to connect: refused", relay=url)
        conn = ScriptedConnection(url, respond)
        connections.append(conn)
        return conn

    monkeypatch.setattr(pool, "_connect", fake_connect)
    return pool, connections


def ok(accepted: bool = True):
    def respond(message):
        if message[0] == "EVENT":
            return [["OK", message[1]["id"], accepted, "" if accepted else "blocked: spam"]]
        return []

    return respond


def serve(*events: NostrEvent, close: bool = False):
    """Answer REQ with the given events, then EOSE (or a socket close)."""

    def respond(message):
        if message[0] != "REQ":
            return []
        sub_id = message[1]
        frames: list[Any] = [["EVENT", sub_id, e.to_dict()] for e in events]
        frames.append(None if close else ["EOSE", sub_id])
        return frames

    return respond


@pytest.fixture
def make_event(alice):
    def _make(content: str, created_at: int, kind: int = 445) -> NostrEvent:
        return sign_event(NostrEvent(kind=kind, content=content, tags=[["h", "ab" * 32]], created_at=created_at), alice)

    return _make


class TestFilter:
    def test_to_dict(self):
        flt = Filter(kinds=[445], tags={"h": ["ab" * 32]}, since=10, limit=5)
        assert flt.to_dict() == {"kinds": [445], "#h": ["ab" * 32], "since": 10, "limit": 5}

    def test_empty_filter(self):
        assert Filter().to_dict() == {}

    def test_matches_kind_and_tag(self, make_event):
        event = make_event("x", 100)
        assert Filter(kinds=[445], tags={"h": ["ab" * 32]}).matches(event)
        assert not Filter(kinds=[444]).matches(event)
        assert not Filter(tags={"h": ["cd" * 32]}).matches(event)

    def test_matches_time_window(self, make_event):
        event = make_event("x", 100)
        assert Filter(since=100, until=100).matches(event)
        assert not Filter(since=101).matches(event)
        assert not Filter(until=99).matches(event)

    def test_matches_authors(self, make_event, alice, bob):
        event = make_event("x", 100)
        assert Filter(authors=[alice.public_key_hex]).matches(event)
        assert not Filter(authors=[bob.public_key_hex]).matches(event)


class TestPublish:
    @pytest.mark.asyncio
    async def test_counts_acceptances(self, monkeypatch, make_event):
        pool, conns = scripted_pool(monkeypatch, {"wss://one": ok(True), "wss://two": ok(False)})
        assert await pool.publish(make_event("x", 100)) == 1
        assert all(c.closed for c in conns)

    @pytest.mark.asyncio
    async def test_unreachable_relay_counts_as_failure(self, monkeypatch, make_event):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": ok(True), "wss://two": None})
        assert await pool.publish(make_event("x", 100)) == 1

    @pytest.mark.asyncio
    async def test_no_acceptance_raises(self, monkeypatch, make_event):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": ok(False), "wss://two": None})
        with pytest.raises(RelayError, match="Failed to publish to any relay"):
            await pool.publish(make_event("x", 100))

    @pytest.mark.asyncio
    async def test_close_before_ack(self, monkeypatch, make_event):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": lambda m: [None], "wss://two": ok(True)})
        assert await pool.publish(make_event("x", 100)) == 1

    @pytest.mark.asyncio
    async def test_ack_timeout(self, monkeypatch, make_event):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": lambda m: [], "wss://two": ok(True)}, timeout=0.05)
        assert await pool.publish(make_event("x", 100)) == 1


class TestQuery:
    @pytest.mark.asyncio
    async def test_merges_dedupes_and_sorts(self, monkeypatch, make_event):
        old, mid, new = make_event("old", 100), make_event("mid", 200), make_event("new", 300)
        pool, conns = scripted_pool(monkeypatch, {"wss://one": serve(new, old), "wss://two": serve(mid, old)})

        events = await pool.query(Filter(kinds=[445]))

        assert [e.content for e in events] == ["old", "mid", "new"]
        assert all(["CLOSE", c.sent[0][1]] in c.sent for c in conns)

    @pytest.mark.asyncio
    async def test_limit_keeps_newest(self, monkeypatch, make_event):
        batch = [make_event(str(i), 100 + i) for i in range(5)]
        pool, _ = scripted_pool(monkeypatch, {"wss://one": serve(*batch)})
        events = await pool.query(Filter(kinds=[445], limit=2))
        assert [e.content for e in events] == ["3", "4"]

    @pytest.mark.asyncio
    async def test_drops_invalid_events(self, monkeypatch, make_event):
        good, bad = make_event("good", 100), make_event("bad", 200)
        bad.content = "tampered"
        pool, _ = scripted_pool(monkeypatch, {"wss://one": serve(good, bad)})
        assert [e.content for e in await pool.query(Filter())] == ["good"]

    @pytest.mark.asyncio
    async def test_unreachable_relays_yield_nothing(self, monkeypatch):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": None, "wss://two": None})
        assert await pool.query(Filter(kinds=[443])) == []


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_yields_unique_events_until_closed(self, monkeypatch, make_event):
        first, second = make_event("first", 100), make_event("second", 200)
        pool, conns = scripted_pool(
            monkeypatch,
            {"wss://one": serve(first, second, close=True), "wss://two": serve(first, close=True)},
        )
        connected: list[list[str]] = []
        received = []

        with pytest.raises(RelayError, match="All relay connections closed"):
            async for event in pool.subscribe(Filter(kinds=[445]), on_connected=connected.append):
                received.append(event.content)

        assert sorted(received) == ["first", "second"]
        assert connected == [RELAYS]
        assert all(c.closed for c in conns)

    @pytest.mark.asyncio
    async def test_drops_events_failing_filter_or_signature(self, monkeypatch, make_event):
        good = make_event("good", 100)
        forged = make_event("forged", 100)
        forged.sig = "00" * 64
        other_kind = make_event("other", 100, kind=1)
        pool, _ = scripted_pool(monkeypatch, {"wss://one": serve(forged, other_kind, good, close=True)})

        received = []
        with pytest.raises(RelayError):
            async for event in pool.subscribe(Filter(kinds=[445])):
                received.append(event.content)
        assert received == ["good"]

    @pytest.mark.asyncio
    async def test_no_relay_reachable(self, monkeypatch):
        pool, _ = scripted_pool(monkeypatch, {"wss://one": None, "wss://two": None})
        with pytest.raises(RelayError, match="Could not connect to any relay"):
            async for _ in pool.subscribe(Filter(kinds=[445])):
                pass

    @pytest.mark.asyncio
    async def test_sends_filter_to_relay(self, monkeypatch):
        pool, conns = scripted_pool(monkeypatch, {"wss://one": serve(close=True)})
        flt = Filter(kinds=[445], tags={"h": ["ab" * 32]})
        with pytest.raises(RelayError):
            async for _ in pool.subscribe(flt):
                pass
        assert conns[0].sent[0][0] == "REQ"
        assert conns[0].sent[0][2] == flt.to_dict()

    @pytest.mark.asyncio
    async def test_overflowing_timestamp_is_dropped(self, monkeypatch, make_event):
        good = make_event("good", 100)
        poisoned = {**make_event("bad", 100).to_dict(), "created_at": float("inf")}

        def respond(message):
            if message[0] != "REQ":
                return []
            return [["EVENT", message[1], poisoned], ["EVENT", message[1], good.to_dict()], None]

        pool, _ = scripted_pool(monkeypatch, {"wss://one": respond})
        received = []
        with pytest.raises(RelayError, match="All relay connections closed"):
            async for event in pool.subscribe(Filter(kinds=[445])):
                received.append(event.content)
        assert received == ["good"]

    @pytest.mark.asyncio
    async def test_dedupe_window_is_bounded(self, monkeypatch, make_event):
        monkeypatch.setattr("burrow.nostr.relay.SEEN_EVENTS_LIMIT", 2)
        one, two, three = make_event("1", 100), make_event("2", 101), make_event("3", 102)
        pool, _ = scripted_pool(monkeypatch, {"wss://one": serve(one, two, one, three, one, close=True)})

        received = []
        with pytest.raises(RelayError):
            async for event in pool.subscribe(Filter(kinds=[445])):
                received.append(event.content)

        # "1" is suppressed while remembered, then forgotten once "3" pushes it out
        assert received == ["1", "2", "3", "1"]


class TestParseEvent:
    def test_valid_event(self, make_event):
        event = make_event("x", 100)
        assert _parse_event(event.to_dict()) == event

    @pytest.mark.parametrize("field, value", [("created_at", float("inf")), ("kind", 1e400), ("created_at", None)])
    def test_unusable_fields(self, make_event, field, value):
        assert _parse_event({**make_event("x", 100).to_dict(), field: value}) is None

    def test_not_an_object(self):
        assert _parse_event(["EVENT"]) is None
