# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Burrow operations as structured handlers.

Every handler takes a :class:`BurrowContext` and returns a
:class:`HandlerResult`; none of them print or exit. The CLI renders results,
and anything embedding Burrow can call the handlers directly.

Ordering rule for anything that publishes: MLS state is persisted only after
the relay accepted the event that depends on it.
"""

from __future__ import annotations

import base64
import binascii
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from . import __version__
from .core.config import BurrowSettings, get_config
from .core.exceptions import (
    BurrowException,
    ConfigException,
    CryptoError,
    NotFoundError,
    RelayError,
    ValidationException,
)
from .crypto.identity import NostrIdentity, generate_identity, load_identity
from .crypto.mls import KeyPackage, MLSDecodeError, MLSInvalidKeyPackageError, NativeMLSBackend
from .crypto.nip19 import resolve_pubkey_hex
from .crypto.nip44 import encrypt_group_message
from .daemon.pipeline import Emitter
from .daemon.service import BurrowDaemon
from .groups.engine import GroupEngine
from .groups.key_package import generate_key_package, parse_key_package_event
from .nostr.events import (
    Kind,
    NostrEvent,
    build_group_event,
    build_inner_chat_message,
    build_key_package_event,
    build_welcome_rumor,
)
from .nostr.gift_wrap import unwrap_gift, wrap_gift
from .nostr.relay import Filter, RelayPool
from .security.access_control import CONFIG_FILENAME, AccessControl, create_default_config
from .security.audit import AuditLog, read_audit_log
from .storage.file_store import FileStore
from .storage.models import GroupMessage, StoredGroup, StoredKeyPackage

logger = logging.getLogger(__name__)

CLIENT_NAME = f"Burrow/{__version__}"


# =============================================================================
# Results and context
# =============================================================================


@dataclass
class HandlerResult:
    """Outcome of a handler.

    ``formatted`` is a human-readable rendering for text output; ``data``
    holds the machine-readable fields.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    formatted: str | None = None
    exit_code: int | None = None

    @property
    def code(self) -> int:
        if self.exit_code is not None:
            return self.exit_code
        return 0 if self.success else 1

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, **self.data}
        if self.error is not None:
            result["error"] = self.error
        if self.formatted is not None:
            result["formatted"] = self.formatted
        return result


class BurrowContext:
    """Resolved paths, relays and lazily-opened resources for one invocation."""

    def __init__(
        self,
        settings: BurrowSettings | None = None,
        data_dir: str | Path | None = None,
        key_path: str | Path | None = None,
        relays: list[str] | None = None,
        engine: GroupEngine | None = None,
        pool_factory: Callable[[list[str]], RelayPool] | None = None,
    ):
        self.settings = settings or get_config()
        self.data_dir = Path(data_dir).expanduser() if data_dir else self.settings.data_path
        self.key_path = Path(key_path).expanduser() if key_path else self.settings.key_file
        self.relays = list(relays) if relays else self.settings.relay_list
        self.engine = engine or GroupEngine(NativeMLSBackend())
        self._pool_factory = pool_factory
        self._store: FileStore | None = None
        self._identity: NostrIdentity | None = None
        self._audit: AuditLog | None = None

    @property
    def store(self) -> FileStore:
        if self._store is None:
            self._store = FileStore(self.data_dir)
        return self._store

    @property
    def identity(self) -> NostrIdentity:
        if self._identity is None:
            self._identity = load_identity(self.key_path)
        return self._identity

    @identity.setter
    def identity(self, value: NostrIdentity) -> None:
        self._identity = value

    @property
    def audit(self) -> AuditLog:
        if self._audit is None:
            self._audit = AuditLog(self.data_dir)
        return self._audit

    def access_control(self) -> AccessControl:
        return AccessControl(self.data_dir, audit=self.audit, settings=self.settings)

    def pool(self, relays: list[str] | None = None) -> RelayPool:
        urls = list(relays) if relays else self.relays
        if self._pool_factory is not None:
            return self._pool_factory(urls)
        return RelayPool(urls, timeout=self.settings.relay_timeout)

    def group_relays(self, group: StoredGroup) -> list[str]:
        return group.relays or self.relays

    def load_group(self, group_id: str) -> tuple[StoredGroup, bytes]:
        group = self.store.find_group(group_id)
        state = self.store.get_state(group.nostr_group_id)
        if state is None:
            raise NotFoundError("MLS state", group.nostr_group_id)
        return group, state


def _merge_relays(*lists: list[str]) -> list[str]:
    merged: list[str] = []
    for urls in lists:
        for url in urls:
            if url and url not in merged:
                merged.append(url)
    return merged


def _failure(e: BurrowException) -> HandlerResult:
    logger.debug(f"Handler failed: {e.message}", exc_info=True)
    return HandlerResult(success=False, data={"details": e.details} if e.details else {}, error=e.message)


def handler(func: Callable[..., Awaitable[HandlerResult]]) -> Callable[..., Awaitable[HandlerResult]]:
    """Turn Burrow exceptions raised by an async handler into failed results."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> HandlerResult:
        try:
            return await func(*args, **kwargs)
        except BurrowException as e:
            return _failure(e)

    return wrapper


def sync_handler(func: Callable[..., HandlerResult]) -> Callable[..., HandlerResult]:
    """As :func:`handler`, for handlers that never touch the network."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> HandlerResult:
        try:
            return func(*args, **kwargs)
        except BurrowException as e:
            return _failure(e)

    return wrapper


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationException(f"{what} is not valid base64", field=what) from e


def _age(ts: int) -> str:
    age = max(0, int(datetime.now(UTC).timestamp()) - ts)
    if age < 3600:
        return f"{age // 60}m ago"
    if age < 86400:
        return f"{age // 3600}h ago"
    return f"{age // 86400}d ago"


# =============================================================================
# Identity
# =============================================================================


@handler
async def init(
    ctx: BurrowContext,
    generate: bool = False,
    owner: str | None = None,
    client: str = CLIENT_NAME,
) -> HandlerResult:
    """Load (or generate) the identity, publish a key package and set up access control."""
    generated = False
    try:
        identity = load_identity(ctx.key_path)
    except ConfigException:
        if not generate:
            raise ConfigException(
                f"No secret key found at {ctx.key_path}. Use --generate to create one.",
                missing_vars=["BURROW_KEY_PATH"],
            )
        identity = generate_identity(ctx.key_path)
        generated = True
    ctx.identity = identity

    store = ctx.store
    kp = generate_key_package(identity, backend=ctx.engine.backend)
    event = build_key_package_event(identity, kp.serialized_base64, ctx.relays, client=client)
    accepted = await ctx.pool().publish(event)

    store.save_key_package(
        StoredKeyPackage(
            id=event.id,
            mls_key_package=kp.serialized_base64,
            private_key=base64.b64encode(kp.private.to_bytes()).decode("ascii"),
            created_at=event.created_at,
            is_last_resort=kp.is_last_resort,
        )
    )

    warnings = []
    acl_path = ctx.data_dir / CONFIG_FILENAME
    acl_created = False
    if not acl_path.exists():
        owner = owner or ctx.settings.owner_hex or ctx.settings.owner_npub or ""
        create_default_config(ctx.data_dir, owner, note="Set during init" if owner else "")
        acl_created = True
        if not owner:
            warnings.append(f"Access control created but NO OWNER SET. Set BURROW_OWNER_HEX or edit {acl_path}")
    elif owner:
        warnings.append(f"{acl_path} already exists; --owner ignored")

    lines = [
        f"{'Generated' if generated else 'Loaded'} identity: {identity.npub}",
        f"Data directory: {ctx.data_dir}",
        f"KeyPackage event: {event.id} ({accepted}/{len(ctx.relays)} relays)",
    ]
    if acl_created:
        lines.append(f"Access control: {acl_path}")
    lines.extend(f"Warning: {w}" for w in warnings)
    return HandlerResult(
        success=True,
        data={
            "pubkey": identity.public_key_hex,
            "npub": identity.npub,
            "generated": generated,
            "key_package_event_id": event.id,
            "relays_accepted": accepted,
            "access_control_created": acl_created,
            "warnings": warnings,
        },
        formatted="\n".join(lines),
    )


# =============================================================================
# Groups
# =============================================================================


@sync_handler
def create_group(
    ctx: BurrowContext,
    name: str,
    description: str = "",
    relays: list[str] | None = None,
    allow: bool = False,
) -> HandlerResult:
    """Create a group with this identity as its only member and admin."""
    if not name.strip():
        raise ValidationException("group name must not be empty", field="name")
    identity = ctx.identity
    acl = ctx.access_control() if allow else None
    relays = relays or ctx.relays
    info, state = ctx.engine.create_group(identity, name, description, relays)
    gid = info.nostr_group_id.hex()

    group = StoredGroup(
        mls_group_id=info.mls_group_id.hex(),
        nostr_group_id=gid,
        name=name,
        description=description,
        admin_pubkeys=list(info.group_data.admin_pubkeys),
        relays=list(relays),
        epoch=info.epoch,
    )
    ctx.store.commit_group_state(group, state, info.epoch)

    if acl is not None:
        acl.add_group(gid)

    return HandlerResult(
        success=True,
        data={"group": {k: v for k, v in group.to_dict().items() if k != "mls_state"}, "allowlisted": allow},
        formatted=(
            f"Group created: {name}\n"
            f"  Group ID: {gid}\n"
            f"  Admin: {identity.public_key_hex[:16]}...\n"
            f"  Relays: {', '.join(relays)}\n"
            + ("" if allow else f"  Not yet listened to; run 'burrow acl add-group {gid}'\n")
            + "  Use 'burrow invite <group> <pubkey>' to add members."
        ),
    )


@sync_handler
def list_groups(ctx: BurrowContext) -> HandlerResult:
    groups = ctx.store.list_groups()
    if not groups:
        return HandlerResult(
            success=True,
            data={"groups": [], "count": 0},
            formatted='No groups found. Create one with: burrow create-group "My Group"',
        )
    lines = [f"Groups ({len(groups)}):", ""]
    for g in groups:
        lines.append(f"  {g.name}")
        lines.append(f"     ID: {g.nostr_group_id[:16]}...")
        lines.append(f"     Created: {_age(g.created_at)} | Epoch: {g.epoch}")
    return HandlerResult(
        success=True,
        data={
            "groups": [
                {k: v for k, v in g.to_dict().items() if k != "mls_state"} for g in groups
            ],
            "count": len(groups),
        },
        formatted="\n".join(lines),
    )


async def _latest_key_package(pool: RelayPool, pubkey: str) -> tuple[NostrEvent, KeyPackage]:
    events = await pool.query(Filter(kinds=[Kind.KEY_PACKAGE], authors=[pubkey]))
    for event in reversed(events):
        try:
            return event, parse_key_package_event(event)
        except MLSInvalidKeyPackageError as e:
            logger.warning(f"Skipping unusable key package {event.id[:16]} from {pubkey[:16]}: {e.message}")
    raise NotFoundError("KeyPackage", pubkey)


@handler
async def invite(ctx: BurrowContext, group_id: str, pubkey: str) -> HandlerResult:
    """Add ``pubkey`` to a group: publish the commit, then gift-wrap the welcome."""
    identity = ctx.identity
    group, state = ctx.load_group(group_id)
    gid = group.nostr_group_id
    invitee = resolve_pubkey_hex(pubkey)
    pool = ctx.pool(ctx.group_relays(group))

    # Look for the key package on our default relays too
    lookup = ctx.pool(_merge_relays(ctx.group_relays(group), ctx.relays))
    kp_event, key_package = await _latest_key_package(lookup, invitee)
    admitted = ctx.engine.admit_member(state, key_package.to_bytes())

    # Existing members still hold the pre-commit epoch, so the commit travels under it
    commit_content = encrypt_group_message(admitted.commit, ctx.engine.derive_epoch_secret(state))
    commit_event, _ = build_group_event(gid, commit_content)
    await pool.publish(commit_event)
    ctx.store.commit_group_state(group, admitted.state, admitted.epoch)

    data: dict[str, Any] = {
        "group_id": gid,
        "invitee": invitee,
        "epoch": admitted.epoch,
        "commit_event_id": commit_event.id,
        "key_package_event_id": kp_event.id,
    }
    if admitted.welcome is None:
        return HandlerResult(success=True, data=data, formatted=f"Committed epoch {admitted.epoch}; no welcome needed")

    invitee_relays = kp_event.tag_params("relays")
    rumor = build_welcome_rumor(
        identity.public_key_hex,
        base64.b64encode(admitted.welcome).decode("ascii"),
        kp_event.id,
        ctx.group_relays(group),
    )
    wrap = wrap_gift(rumor, identity, invitee)
    try:
        await ctx.pool(_merge_relays(invitee_relays, ctx.group_relays(group))).publish(wrap)
    except RelayError as e:
        return HandlerResult(
            success=False,
            data=data,
            error=f"Commit published (epoch {admitted.epoch}) but welcome delivery failed: {e.message}",
        )
    data["welcome_event_id"] = wrap.id
    return HandlerResult(
        success=True,
        data=data,
        formatted=(
            f"Invited {invitee[:16]}... to {group.name}\n"
            f"  Epoch: {admitted.epoch}\n"
            f"  Welcome: {wrap.id}"
        ),
    )


# =============================================================================
# Welcomes
# =============================================================================


@dataclass
class PendingWelcome:
    """A welcome rumor opened from a gift wrap addressed to us."""

    wrap_id: str
    sender: str
    rumor: NostrEvent

    @property
    def key_package_event_id(self) -> str | None:
        return self.rumor.first_tag("e")

    def to_dict(self) -> dict[str, Any]:
        return {
            "wrap_id": self.wrap_id,
            "sender": self.sender,
            "key_package_event_id": self.key_package_event_id,
            "relays": self.rumor.tag_params("relays"),
            "created_at": self.rumor.created_at,
        }


async def _fetch_welcomes(ctx: BurrowContext, ids: list[str] | None = None) -> list[PendingWelcome]:
    identity = ctx.identity
    wraps = await ctx.pool().query(Filter(kinds=[Kind.GIFT_WRAP], ids=ids, tags={"p": [identity.public_key_hex]}))
    welcomes = []
    for wrap in wraps:
        try:
            gift = unwrap_gift(wrap, identity)
        except CryptoError as e:
            logger.debug(f"Cannot open gift wrap {wrap.id[:16]}: {e.message}")
            continue
        if gift.rumor.kind == Kind.WELCOME:
            welcomes.append(PendingWelcome(wrap_id=wrap.id, sender=gift.sender_pubkey, rumor=gift.rumor))
    return welcomes


@handler
async def list_welcomes(ctx: BurrowContext) -> HandlerResult:
    """Pending welcomes gift-wrapped to this identity."""
    welcomes = await _fetch_welcomes(ctx)
    if not welcomes:
        return HandlerResult(success=True, data={"welcomes": [], "count": 0}, formatted="No pending welcomes.")
    lines = [f"Welcomes ({len(welcomes)}):", ""]
    for w in welcomes:
        lines.append(f"  {w.wrap_id}")
        lines.append(f"     From: {w.sender[:16]}... | {_age(w.rumor.created_at)}")
    return HandlerResult(
        success=True,
        data={"welcomes": [w.to_dict() for w in welcomes], "count": len(welcomes)},
        formatted="\n".join(lines),
    )


def _find_key_package(ctx: BurrowContext, welcome: bytes, hint: str | None) -> StoredKeyPackage:
    if hint:
        try:
            stored = ctx.store.get_key_package(hint)
        except ValidationException:
            stored = None
        if stored is not None:
            return stored
    refs = set(NativeMLSBackend.welcome_refs(welcome))
    for stored in ctx.store.list_key_packages():
        try:
            kp = KeyPackage.from_bytes(_b64decode(stored.mls_key_package, "key package"))
        except (MLSDecodeError, ValidationException) as e:
            logger.warning(f"Skipping unreadable stored key package {stored.id[:16]}: {e.message}")
            continue
        if kp.ref() in refs:
            return stored
    raise NotFoundError("KeyPackage", hint or "welcome")


@handler
async def accept_welcome(ctx: BurrowContext, wrap_id: str, allow: bool = False) -> HandlerResult:
    """Join the group a welcome invites us to."""
    acl = ctx.access_control() if allow else None
    wrap_id = wrap_id.strip().lower()
    matches = await _fetch_welcomes(ctx, ids=[wrap_id])
    if not matches:
        raise NotFoundError("Welcome", wrap_id)
    rumor = matches[0].rumor
    if rumor.first_tag("encoding") not in (None, "base64"):
        raise ValidationException(f"unsupported welcome encoding: {rumor.first_tag('encoding')}", field="encoding")
    welcome = _b64decode(rumor.content, "welcome")

    stored_kp = _find_key_package(ctx, welcome, rumor.first_tag("e"))
    info, state = ctx.engine.join_from_welcome(welcome, _b64decode(stored_kp.private_key, "key package private"))
    gid = info.nostr_group_id.hex()
    if ctx.store.get_group(gid) is not None:
        raise ValidationException(f"Already a member of group {gid[:16]}", field="group_id", value=gid)

    data = info.group_data
    group = StoredGroup(
        mls_group_id=info.mls_group_id.hex(),
        nostr_group_id=gid,
        name=data.name,
        description=data.description,
        admin_pubkeys=list(data.admin_pubkeys),
        relays=list(data.relays) or rumor.tag_params("relays"),
        epoch=info.epoch,
        image_hash=data.image_hash.hex(),
        image_key=data.image_key.hex(),
        image_nonce=data.image_nonce.hex(),
    )
    ctx.store.commit_group_state(group, state, info.epoch)
    if not stored_kp.is_last_resort:
        ctx.store.delete_key_package(stored_kp.id)
    if acl is not None:
        acl.add_group(gid)

    return HandlerResult(
        success=True,
        data={"group_id": gid, "name": data.name, "epoch": info.epoch, "members": info.members, "allowlisted": allow},
        formatted=(
            f"Joined {data.name}\n"
            f"  Group ID: {gid}\n"
            f"  Epoch: {info.epoch} | Members: {len(info.members)}"
        ),
    )


# =============================================================================
# Messages
# =============================================================================


@handler
async def send_message(ctx: BurrowContext, group_id: str, text: str, reply_to: str | None = None) -> HandlerResult:
    """Encrypt ``text`` for a group and publish it as a kind-445 event."""
    identity = ctx.identity
    group, state = ctx.load_group(group_id)
    gid = group.nostr_group_id

    inner = build_inner_chat_message(identity.public_key_hex, text, reply_to)
    mls_message, new_state = ctx.engine.encrypt_application_message(state, inner.to_json().encode("utf-8"))
    content = encrypt_group_message(mls_message, ctx.engine.derive_epoch_secret(state))
    event, _ = build_group_event(gid, content)
    await ctx.pool(ctx.group_relays(group)).publish(event)

    ctx.store.commit_group_state(group, new_state, ctx.engine.epoch(new_state), last_message_at=inner.created_at)
    ctx.store.save_message(
        GroupMessage(
            id=event.id,
            group_id=gid,
            sender_pubkey=identity.public_key_hex,
            content=text,
            kind=inner.kind,
            created_at=inner.created_at,
            tags=inner.tags,
        )
    )
    ctx.audit.log_sent_message(gid, group.name, text)
    return HandlerResult(
        success=True,
        data={"group_id": gid, "event_id": event.id, "inner_id": inner.id},
        formatted=f"Sent to {group.name} ({event.id[:16]}...)",
    )


@sync_handler
def read_messages(ctx: BurrowContext, group_id: str, limit: int = 50) -> HandlerResult:
    group = ctx.store.find_group(group_id)
    messages = ctx.store.get_messages(group.nostr_group_id, limit)
    if not messages:
        formatted = f'No messages in "{group.name}" yet.'
    else:
        lines = [f"{group.name} ({len(messages)} messages):", ""]
        for msg in messages:
            when = datetime.fromtimestamp(msg.created_at, UTC).strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"  [{when}] {msg.sender_pubkey[:8]}...: {msg.content}")
        formatted = "\n".join(lines)
    return HandlerResult(
        success=True,
        data={"group_id": group.nostr_group_id, "messages": [m.to_dict() for m in messages], "count": len(messages)},
        formatted=formatted,
    )


# =============================================================================
# Access control
# =============================================================================


@sync_handler
def acl_show(ctx: BurrowContext) -> HandlerResult:
    config = ctx.access_control().get_config()
    lines = [
        "Burrow Access Control",
        "=====================",
        f"Owner: {config.owner.npub or config.owner.hex}",
        f"       {config.owner.hex}",
        f"Policy: {config.default_policy}",
        "",
        f"Allowed Contacts ({len(config.allowed_contacts)}):",
        *([f"  - {c}" for c in config.allowed_contacts] or ["  (none; only the owner can send messages)"]),
        "",
        f"Allowed Groups ({len(config.allowed_groups)}):",
        *([f"  - {g}" for g in config.allowed_groups] or ["  (none)"]),
        "",
        "Settings:",
        f"  Log rejected content: {str(config.settings.log_rejected_content).lower()}",
        f"  Audit enabled: {str(config.settings.audit_enabled).lower()}",
    ]
    return HandlerResult(success=True, data={"config": config.to_dict()}, formatted="\n".join(lines))


def _acl_change(ctx: BurrowContext, action: str, value: str) -> HandlerResult:
    acl = ctx.access_control()
    changed = getattr(acl, action)(value)
    noun = "contact" if action.endswith("contact") else "group"
    verb = "Added" if action.startswith("add") else "Removed"
    if changed:
        formatted = f"{verb} {noun}: {value}"
    elif action.startswith("add"):
        formatted = f"{noun.capitalize()} already allowed: {value}"
    else:
        formatted = f"{noun.capitalize()} was not in the allowlist: {value}"
    return HandlerResult(success=True, data={"action": action, "value": value, "changed": changed}, formatted=formatted)


@sync_handler
def acl_add_contact(ctx: BurrowContext, pubkey: str) -> HandlerResult:
    return _acl_change(ctx, "add_contact", resolve_pubkey_hex(pubkey))


@sync_handler
def acl_remove_contact(ctx: BurrowContext, pubkey: str) -> HandlerResult:
    return _acl_change(ctx, "remove_contact", resolve_pubkey_hex(pubkey))


@sync_handler
def acl_add_group(ctx: BurrowContext, group_id: str) -> HandlerResult:
    return _acl_change(ctx, "add_group", ctx.store.find_group(group_id).nostr_group_id)


@sync_handler
def acl_remove_group(ctx: BurrowContext, group_id: str) -> HandlerResult:
    # The group record may already be gone, so accept a full id without lookup
    gid = group_id.strip().lower()
    if len(gid) != 64:
        gid = ctx.store.find_group(gid).nostr_group_id
    return _acl_change(ctx, "remove_group", gid)


@sync_handler
def acl_audit(ctx: BurrowContext, days: int = 7) -> HandlerResult:
    entries = read_audit_log(ctx.data_dir, days=days)
    if not entries:
        formatted = f"No audit entries in the last {days} day(s)."
    else:
        lines = [f"Audit log ({len(entries)} entries, last {days} day(s)):", ""]
        for entry in entries:
            flag = "ALLOW" if entry.allowed else "DENY "
            who = f" {entry.sender_pubkey[:19]}" if entry.sender_pubkey else ""
            where = f" [{entry.group_name or entry.group_id[:16]}]" if entry.group_id else ""
            detail = f" {entry.details}" if entry.details else ""
            lines.append(f"  {entry.timestamp[:19]} {flag} {entry.type.value}{who}{where}{detail}")
        formatted = "\n".join(lines)
    return HandlerResult(
        success=True,
        data={"entries": [e.to_dict() for e in entries], "count": len(entries)},
        formatted=formatted,
    )


# =============================================================================
# Daemon
# =============================================================================


async def run_daemon(ctx: BurrowContext, log_file: str | Path | None = None, emitter: Emitter | None = None) -> HandlerResult:
    """Run the relay daemon until SIGINT/SIGTERM.

    Configuration problems (no key, no access control, no owner) are
    reported on the output stream and yield exit code 1.
    """
    emitter = emitter or Emitter(log_file=log_file)
    try:
        identity = ctx.identity
        acl = ctx.access_control()
    except ConfigException as e:
        emitter.status("error", f"Access control failed: {e.message}")
        return HandlerResult(success=False, error=e.message, exit_code=1)

    daemon = BurrowDaemon(
        identity,
        ctx.store,
        acl,
        acl.audit,
        emitter,
        engine=ctx.engine,
        settings=ctx.settings,
        pool_factory=lambda relays: ctx.pool(relays),
    )
    code = await daemon.run()
    return HandlerResult(success=code == 0, exit_code=code)
