# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Long-running relay listener.

One task per allowed group subscribes to that group's kind-445 events and
feeds them through the :class:`~burrow.daemon.pipeline.MessagePipeline`.
A shared shutdown event, set by SIGINT/SIGTERM or :meth:`request_shutdown`,
stops every task; an event already received is processed to completion
first. Lost subscriptions are retried after a fixed delay, without bound.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from collections import OrderedDict
from collections.abc import Callable

from ..core.config import BurrowSettings, get_config
from ..core.exceptions import BurrowException, RelayError
from ..crypto.identity import NostrIdentity
from ..groups.engine import GroupEngine
from ..nostr.events import Kind, NostrEvent
from ..nostr.relay import SEEN_EVENTS_LIMIT, Filter, RelayPool
from ..security.access_control import AccessControl
from ..security.audit import AuditEventType, AuditLog
from ..storage.file_store import FileStore
from ..storage.models import StoredGroup
from .pipeline import Emitter, MessagePipeline

logger = logging.getLogger(__name__)

PoolFactory = Callable[[list[str]], RelayPool]


class BurrowDaemon:
    """Listen on every allowed group until shut down.

    Example:
        >>> daemon = BurrowDaemon(identity, store, acl, audit, Emitter())
        >>> exit_code = await daemon.run()
    """

    def __init__(
        self,
        identity: NostrIdentity,
        store: FileStore,
        acl: AccessControl,
        audit: AuditLog,
        emitter: Emitter,
        engine: GroupEngine | None = None,
        settings: BurrowSettings | None = None,
        pool_factory: PoolFactory | None = None,
    ):
        self.identity = identity
        self.store = store
        self.acl = acl
        self.audit = audit
        self.emitter = emitter
        self.settings = settings or get_config()
        self.pool_factory = pool_factory or (lambda relays: RelayPool(relays, timeout=self.settings.relay_timeout))
        self.pipeline = MessagePipeline(identity, store, engine or GroupEngine(), acl, audit, emitter)
        self._shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def reconnect_delay(self) -> float:
        return self.settings.reconnect_delay

    def request_shutdown(self) -> None:
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
        self._shutdown.set()

    def _install_signal_handlers(self) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name} on this platform")
        return installed

    def _admit_group(self, group: StoredGroup) -> bool:
        if self.acl.is_group_allowed(group.nostr_group_id):
            return True
        self.audit.log_group_rejected(group.nostr_group_id, group.name, "Group not in allowlist, skipping")
        self.emitter.status("group_skipped", f'"{group.name}" not in allowlist, skipping')
        return False

    async def run(self) -> int:
        """Run until shutdown. Returns a process exit code."""
        short_id = self.identity.public_key_hex[:16]
        self.audit.log_daemon_event(AuditEventType.DAEMON_START, f"Identity: {short_id}..., ACL: enabled")
        self.emitter.status("starting", f"Burrow daemon starting, identity: {short_id}..., ACL: enabled")

        groups = self.store.list_groups()
        if not groups:
            self.emitter.status("error", "No groups found. Create a group first with `burrow create-group`.")
            return 1
        monitored = [g for g in groups if self._admit_group(g)]
        if not monitored:
            self.emitter.status("error", "No groups in the allowlist. Add one with `burrow acl add-group <id>`.")
            return 1

        self.emitter.status(
            "ready",
            f"Listening on {len(monitored)} group(s): {', '.join(g.name for g in monitored)}",
        )
        installed = self._install_signal_handlers()
        try:
            self._tasks = []
            for group in monitored:
                task = asyncio.create_task(self._listen_group(group), name=f"group-{group.nostr_group_id[:8]}")
                task.add_done_callback(self._on_listener_done)
                self._tasks.append(task)
            # Listeners are independent; one dying leaves the rest running
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
            clean = self._shutdown.is_set()
            self.audit.log_daemon_event(
                AuditEventType.DAEMON_STOP, "Clean shutdown" if clean else "All listeners stopped"
            )
            logger.info("Daemon stopped")
        return 0 if clean else 1

    def _on_listener_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error(f"Listener {task.get_name()} died", exc_info=exc)
        self.audit.log_error(f"Listener {task.get_name()} died: {type(exc).__name__}: {exc}")
        self.emitter.status("error", f"Listener {task.get_name()} stopped: {type(exc).__name__}: {exc}")

    # -------------------------------------------------------------------------
    # Per-group loop
    # -------------------------------------------------------------------------

    async def _wait_shutdown(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _listen_group(self, group: StoredGroup) -> None:
        gid = group.nostr_group_id
        relays = group.relays or self.settings.relay_list
        since = int(time.time())
        seen: OrderedDict[str, None] = OrderedDict()

        while not self._shutdown.is_set():
            self.emitter.status("connecting", f'Connecting to "{group.name}" ({gid[:16]}...)')
            pool = self.pool_factory(relays)
            subscription = pool.subscribe(
                Filter(kinds=[Kind.GROUP_MESSAGE], tags={"h": [gid]}, since=since),
                on_connected=lambda urls: self.emitter.status(
                    "connected", f'Listening on "{group.name}" via {len(urls)} relay(s)'
                ),
            )
            try:
                while True:
                    next_event = asyncio.ensure_future(anext(subscription))
                    stop = asyncio.ensure_future(self._shutdown.wait())
                    done, _ = await asyncio.wait({next_event, stop}, return_when=asyncio.FIRST_COMPLETED)
                    if next_event not in done:
                        next_event.cancel()
                        await asyncio.gather(next_event, return_exceptions=True)
                        return
                    stop.cancel()
                    event = next_event.result()
                    # A future-dated event must not push the resume point past now
                    since = max(since, min(event.created_at, int(time.time())))
                    if event.id in seen:
                        continue
                    seen[event.id] = None
                    if len(seen) > SEEN_EVENTS_LIMIT:
                        seen.popitem(last=False)
                    group = self._handle_event(event, group)
            except (RelayError, StopAsyncIteration) as e:
                reason = e.message if isinstance(e, RelayError) else "subscription ended"
                self._reconnecting(group, reason)
            except Exception as e:
                logger.exception(f"Subscription for {gid[:16]} failed")
                self._reconnecting(group, f"{type(e).__name__}: {e}")
            finally:
                await subscription.aclose()

            if await self._wait_shutdown(self.reconnect_delay):
                return

    def _reconnecting(self, group: StoredGroup, reason: str) -> None:
        self.emitter.status(
            "reconnecting",
            f"{group.name}: {reason}. Reconnecting in {self.reconnect_delay:g}s...",
        )

    def _handle_event(self, event: NostrEvent, group: StoredGroup) -> StoredGroup:
        """Run one event through the pipeline; failures stay with that event."""
        gid = group.nostr_group_id
        try:
            group = self.store.get_group(gid) or group
            self.pipeline.process_event(event, group)
        except BurrowException as e:
            logger.error(f"Failed to handle {event.id[:16]} in {gid[:16]}: {e.message}")
            self.audit.log_error(e.message, group_id=gid)
            self.emitter.status("error", f"{group.name}: {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected failure handling {event.id[:16]} in {gid[:16]}")
            self.audit.log_error(f"{type(e).__name__}: {e}", group_id=gid)
            self.emitter.status("error", f"{group.name}: {type(e).__name__}: {e}")
        return group
