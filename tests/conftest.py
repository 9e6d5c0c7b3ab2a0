"""Global test fixtures for the Burrow test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import pytest

from burrow.core.config import BurrowSettings, clear_config_cache
from burrow.core.exceptions import RelayError
from burrow.crypto.identity import NostrIdentity
from burrow.groups.engine import AdmitResult, GroupEngine, GroupInfo
from burrow.groups.key_package import generate_key_package
from burrow.handlers import BurrowContext
from burrow.nostr.events import NostrEvent
from burrow.nostr.relay import Filter
from burrow.security.access_control import create_default_config

TEST_RELAYS = ["wss://relay.test.one", "wss://relay.test.two"]

_BURROW_ENV = (
    "BURROW_DATA_DIR",
    "BURROW_KEY_PATH",
    "BURROW_RELAYS",
    "BURROW_RELAY_TIMEOUT",
    "BURROW_RECONNECT_DELAY",
    "BURROW_OWNER_HEX",
    "BURROW_OWNER_NPUB",
    "BURROW_LOG_LEVEL",
    "BURROW_LOG_FORMAT",
    "BURROW_LOG_FILE",
)


# ============================================================================
# Environment isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env out of every test."""
    for name in _BURROW_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings(monkeypatch) -> BurrowSettings:
    """Settings with test relays and a short reconnect delay."""
    monkeypatch.setenv("BURROW_RELAYS", ",".join(TEST_RELAYS))
    monkeypatch.setenv("BURROW_RECONNECT_DELAY", "0.05")
    monkeypatch.setenv("BURROW_RELAY_TIMEOUT", "1")
    clear_config_cache()
    return BurrowSettings()


# ============================================================================
# Identities and groups
# ============================================================================


@pytest.fixture
def alice() -> NostrIdentity:
    return NostrIdentity.generate()


@pytest.fixture
def bob() -> NostrIdentity:
    return NostrIdentity.generate()


@pytest.fixture
def carol() -> NostrIdentity:
    return NostrIdentity.generate()


@pytest.fixture
def engine() -> GroupEngine:
    return GroupEngine()


@dataclass
class SharedGroup:
    """One MLS group as seen by each of its members."""

    engine: GroupEngine
    info: GroupInfo
    states: dict[str, bytes] = field(default_factory=dict)

    @property
    def nostr_group_id(self) -> str:
        return self.info.nostr_group_id.hex()

    def state(self, identity: NostrIdentity) -> bytes:
        return self.states[identity.public_key_hex]

    def add(self, adder: NostrIdentity, newcomer: NostrIdentity) -> AdmitResult:
        """Admit ``newcomer`` and bring every existing member to the new epoch."""
        kp = generate_key_package(newcomer, backend=self.engine.backend)
        admitted = self.engine.admit_member(self.state(adder), kp.serialized)
        for pubkey, state in list(self.states.items()):
            if pubkey != adder.public_key_hex:
                _, self.states[pubkey] = self.engine.process_incoming_message(state, admitted.commit)
        self.states[adder.public_key_hex] = admitted.state
        _, self.states[newcomer.public_key_hex] = self.engine.join_from_welcome(
            admitted.welcome, kp.private.to_bytes()
        )
        return admitted


@pytest.fixture
def group_factory(engine) -> Callable[..., SharedGroup]:
    """Create a group owned by ``creator``, optionally with initial members."""

    def _create(
        creator: NostrIdentity,
        *members: NostrIdentity,
        name: str = "Test Group",
        relays: list[str] | None = None,
    ) -> SharedGroup:
        info, state = engine.create_group(creator, name, "A group for tests", relays or list(TEST_RELAYS))
        group = SharedGroup(engine=engine, info=info, states={creator.public_key_hex: state})
        for member in members:
            group.add(creator, member)
        return group

    return _create


# ============================================================================
# In-memory relays
# ============================================================================


class FakeRelayHub:
    """Events shared by every FakeRelayPool created from it."""

    def __init__(self) -> None:
        self.events: list[NostrEvent] = []
        self.published: list[tuple[list[str], NostrEvent]] = []
        self.fail_publish_kinds: set[int] = set()
        self.subscriptions: list[tuple[Filter, asyncio.Queue]] = []
        self.pools: list[FakeRelayPool] = []

    def pool(self, relays: list[str]) -> FakeRelayPool:
        pool = FakeRelayPool(self, relays)
        self.pools.append(pool)
        return pool

    def deliver(self, event: NostrEvent) -> None:
        self.events.append(event)
        for flt, queue in self.subscriptions:
            if flt.matches(event):
                queue.put_nowait(event)

    def drop_connections(self) -> None:
        """Simulate every relay closing its websocket."""
        for _, queue in self.subscriptions:
            queue.put_nowait(None)

    def of_kind(self, kind: int) -> list[NostrEvent]:
        return [e for e in self.events if e.kind == kind]


class FakeRelayPool:
    """Stands in for RelayPool; same publish/query/subscribe surface."""

    def __init__(self, hub: FakeRelayHub, relays: list[str]):
        self.hub = hub
        self.relays = list(relays)

    async def publish(self, event: NostrEvent) -> int:
        if event.kind in self.hub.fail_publish_kinds:
            raise RelayError("Failed to publish to any relay", relay=",".join(self.relays))
        self.hub.published.append((self.relays, event))
        self.hub.deliver(event)
        return len(self.relays)

    async def query(self, flt: Filter, timeout: float | None = None) -> list[NostrEvent]:
        matching = [e for e in self.hub.events if flt.matches(e)]
        return sorted(matching, key=lambda e: (e.created_at, e.id))

    async def subscribe(
        self,
        flt: Filter,
        on_connected: Callable[[list[str]], None] | None = None,
    ) -> AsyncIterator[NostrEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        entry = (flt, queue)
        self.hub.subscriptions.append(entry)
        if on_connected is not None:
            on_connected(self.relays)
        try:
            for event in [e for e in self.hub.events if flt.matches(e)]:
                yield event
            while True:
                item = await queue.get()
                if item is None:
                    raise RelayError("All relay connections closed")
                yield item
        finally:
            self.hub.subscriptions.remove(entry)


@pytest.fixture
def relay_hub() -> FakeRelayHub:
    return FakeRelayHub()


# ============================================================================
# Handler contexts
# ============================================================================


@pytest.fixture
def context_factory(tmp_path, settings, relay_hub) -> Callable[..., BurrowContext]:
    """Build a BurrowContext with its own data dir, wired to the fake relays."""

    def _create(identity: NostrIdentity, name: str, owner: str | None = None) -> BurrowContext:
        data_dir = tmp_path / name
        ctx = BurrowContext(
            settings=settings,
            data_dir=data_dir,
            key_path=data_dir / "secret.key",
            relays=list(TEST_RELAYS),
            engine=GroupEngine(),
            pool_factory=relay_hub.pool,
        )
        ctx.identity = identity
        if owner is not None:
            create_default_config(data_dir, owner)
        return ctx

    return _create

