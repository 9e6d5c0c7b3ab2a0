# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Nostr relay client.

A small NIP-01 client over aiohttp websockets:
- publish: send ``EVENT`` to every relay, count ``OK`` acceptances
- query: one-shot ``REQ`` until ``EOSE`` (or timeout) on every relay
- subscribe: long-lived ``REQ`` merged across relays as an async iterator

Events that fail id/signature verification are dropped. Duplicate events
arriving from several relays are yielded once.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp import WSMsgType

from ..core.exceptions import RelayError
from .events import NostrEvent, verify_event

logger = logging.getLogger(__name__)

_CLOSED = object()

# Event ids remembered per subscription to drop copies from other relays
SEEN_EVENTS_LIMIT = 4096


@dataclass
class Filter:
    """A NIP-01 subscription filter.

    ``tags`` maps single-letter tag names to accepted values, e.g.
    ``{"h": [group_id]}`` becomes ``"#h": [group_id]`` on the wire.
    """

    kinds: list[int] | None = None
    authors: list[str] | None = None
    ids: list[str] | None = None
    tags: dict[str, list[str]] = field(default_factory=dict)
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.ids is not None:
            data["ids"] = self.ids
        if self.authors is not None:
            data["authors"] = self.authors
        if self.kinds is not None:
            data["kinds"] = [int(k) for k in self.kinds]
        for name, values in self.tags.items():
            data[f"#{name}"] = values
        if self.since is not None:
            data["since"] = self.since
        if self.until is not None:
            data["until"] = self.until
        if self.limit is not None:
            data["limit"] = self.limit
        return data

    def matches(self, event: NostrEvent) -> bool:
        """Client-side check; relays are not trusted to filter correctly."""
        if self.ids is not None and event.id not in self.ids:
            return False
        if self.authors is not None and event.pubkey not in self.authors:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        for name, values in self.tags.items():
            if not any(v in values for v in event.tag_values(name)):
                return False
        return True


class RelayConnection:
    """One websocket to one relay, speaking NIP-01 JSON arrays."""

    def __init__(self, url: str, session: aiohttp.ClientSession, websocket: aiohttp.ClientWebSocketResponse):
        self.url = url
        self.session = session
        self.websocket = websocket

    async def send(self, message: list[Any]) -> None:
        await self.websocket.send_str(json.dumps(message, separators=(",", ":"), ensure_ascii=False))

    async def receive(self) -> list[Any] | None:
        """Next relay message, or None once the socket is closed."""
        while True:
            msg = await self.websocket.receive()
            if msg.type == WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except (json.JSONDecodeError, RecursionError):
                    logger.debug(f"Ignoring non-JSON frame from {self.url}")
                    continue
                if isinstance(data, list) and data:
                    return data
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR):
                return None

    async def close(self) -> None:
        try:
            if not self.websocket.closed:
                await self.websocket.close()
        finally:
            await self.session.close()


class RelayPool:
    """Publish, query and subscribe across a set of relays.

    Example:
        >>> pool = RelayPool(["wss://nos.lol"])
        >>> accepted = await pool.publish(event)
        >>> async for event in pool.subscribe(Filter(kinds=[445], tags={"h": [gid]})):
        ...     handle(event)
    """

    def __init__(self, relays: list[str], timeout: float = 10.0):
        self.relays = list(relays)
        self.timeout = timeout

    async def _connect(self, url: str) -> RelayConnection:
        session = aiohttp.ClientSession()
        try:
            websocket = await asyncio.wait_for(session.ws_connect(url, heartbeat=30), timeout=self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await session.close()
            raise RelayError(f"Failed to connect: {e or type(e).__name__}", relay=url) from e
        logger.debug(f"Connected to {url}")
        return RelayConnection(url, session, websocket)

    # -------------------------------------------------------------------------
    # Publish
    # -------------------------------------------------------------------------

    async def _publish_one(self, url: str, event: NostrEvent) -> bool:
        try:
            conn = await self._connect(url)
        except RelayError as e:
            logger.warning(f"Publish to {url} failed: {e.message}")
            return False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        try:
            await conn.send(["EVENT", event.to_dict()])
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                msg = await asyncio.wait_for(conn.receive(), timeout=remaining)
                if msg is None:
                    logger.warning(f"{url} closed before acknowledging {event.id[:16]}")
                    return False
                if msg[0] == "OK" and len(msg) >= 3 and msg[1] == event.id:
                    if not msg[2]:
                        reason = msg[3] if len(msg) > 3 else ""
                        logger.warning(f"{url} rejected {event.id[:16]}: {reason}")
                    return bool(msg[2])
                if msg[0] == "NOTICE" and len(msg) > 1:
                    logger.info(f"Notice from {url}: {msg[1]}")
        except asyncio.TimeoutError:
            logger.warning(f"{url} did not acknowledge {event.id[:16]} within {self.timeout}s")
            return False
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Publish to {url} failed: {e}")
            return False
        finally:
            await conn.close()

    async def publish(self, event: NostrEvent) -> int:
        """Publish to every relay concurrently.

        Returns:
            Number of relays that accepted the event

        Raises:
            RelayError: If no relay accepted it
        """
        results = await asyncio.gather(*(self._publish_one(url, event) for url in self.relays))
        accepted = sum(1 for ok in results if ok)
        if accepted == 0:
            raise RelayError("Failed to publish to any relay", relay=",".join(self.relays))
        logger.info(f"Published kind {event.kind} event {event.id[:16]} to {accepted}/{len(self.relays)} relays")
        return accepted

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    async def _query_one(self, url: str, flt: Filter, timeout: float) -> list[dict[str, Any]]:
        try:
            conn = await self._connect(url)
        except RelayError as e:
            logger.warning(f"Query to {url} failed: {e.message}")
            return []
        sub_id = secrets.token_hex(8)
        collected: list[dict[str, Any]] = []
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            await conn.send(["REQ", sub_id, flt.to_dict()])
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                msg = await asyncio.wait_for(conn.receive(), timeout=remaining)
                if msg is None:
                    break
                if msg[0] == "EVENT" and len(msg) >= 3 and msg[1] == sub_id:
                    collected.append(msg[2])
                elif msg[0] in ("EOSE", "CLOSED") and len(msg) >= 2 and msg[1] == sub_id:
                    break
            await conn.send(["CLOSE", sub_id])
        except asyncio.TimeoutError:
            logger.debug(f"Query to {url} timed out after {len(collected)} events")
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Query to {url} failed: {e}")
        finally:
            await conn.close()
        return collected

    async def query(self, flt: Filter, timeout: float | None = None) -> list[NostrEvent]:
        """Fetch stored events matching ``flt`` from all relays, oldest first."""
        timeout = self.timeout if timeout is None else timeout
        batches = await asyncio.gather(*(self._query_one(url, flt, timeout) for url in self.relays))
        events: dict[str, NostrEvent] = {}
        for batch in batches:
            for raw in batch:
                event = _parse_event(raw)
                if event is None or event.id in events or not flt.matches(event):
                    continue
                events[event.id] = event
        ordered = sorted(events.values(), key=lambda e: (e.created_at, e.id))
        if flt.limit is not None:
            ordered = ordered[-flt.limit :] if flt.limit else []
        return ordered

    # -------------------------------------------------------------------------
    # Subscribe
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        flt: Filter,
        on_connected: Callable[[list[str]], None] | None = None,
    ) -> AsyncIterator[NostrEvent]:
        """Yield matching events from all relays until every connection drops.

        ``on_connected`` is called with the reachable relay URLs once their
        websockets are open.

        Raises:
            RelayError: If no relay could be reached, or all connections closed
        """
        results = await asyncio.gather(*(self._connect(url) for url in self.relays), return_exceptions=True)
        conns = []
        for url, result in zip(self.relays, results):
            if isinstance(result, BaseException):
                logger.warning(f"Subscribe to {url} failed: {result}")
            else:
                conns.append(result)
        if not conns:
            raise RelayError("Could not connect to any relay", relay=",".join(self.relays))

        sub_id = secrets.token_hex(8)
        queue: asyncio.Queue = asyncio.Queue()

        async def pump(conn: RelayConnection) -> None:
            try:
                await conn.send(["REQ", sub_id, flt.to_dict()])
                while True:
                    msg = await conn.receive()
                    if msg is None:
                        logger.info(f"{conn.url} closed the connection")
                        break
                    if msg[0] == "EVENT" and len(msg) >= 3 and msg[1] == sub_id:
                        await queue.put(msg[2])
                    elif msg[0] == "CLOSED" and len(msg) >= 2 and msg[1] == sub_id:
                        logger.warning(f"{conn.url} closed subscription: {msg[2] if len(msg) > 2 else ''}")
                        break
                    elif msg[0] == "NOTICE" and len(msg) > 1:
                        logger.info(f"Notice from {conn.url}: {msg[1]}")
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Subscription on {conn.url} failed: {e}")
            finally:
                queue.put_nowait(_CLOSED)

        tasks = [asyncio.create_task(pump(conn)) for conn in conns]
        if on_connected is not None:
            on_connected([c.url for c in conns])
        open_count = len(tasks)
        seen: OrderedDict[str, None] = OrderedDict()
        try:
            while open_count:
                item = await queue.get()
                if item is _CLOSED:
                    open_count -= 1
                    continue
                event = _parse_event(item)
                if event is None or event.id in seen or not flt.matches(event):
                    continue
                seen[event.id] = None
                if len(seen) > SEEN_EVENTS_LIMIT:
                    seen.popitem(last=False)
                yield event
            raise RelayError("All relay connections closed", relay=",".join(c.url for c in conns))
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await asyncio.gather(*(conn.close() for conn in conns), return_exceptions=True)


def _parse_event(raw: Any) -> NostrEvent | None:
    """Decode and verify a relay-supplied event; None if unusable."""
    if not isinstance(raw, dict):
        return None
    try:
        event = NostrEvent.from_dict(raw)
    except (KeyError, TypeError, ValueError):
        return None
    if not verify_event(event):
        logger.debug(f"Dropping event with bad id or signature: {str(raw.get('id', ''))[:16]}")
        return None
    return event
