#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors
"""
Burrow CLI - encrypted group messaging over Nostr (Marmot).

Commands:
  burrow init                      Load/generate identity, publish a KeyPackage
  burrow create-group <name>       Create an encrypted group
  burrow groups                    List groups
  burrow invite <group> <pubkey>   Add a member and send them a welcome
  burrow welcomes                  List pending welcomes
  burrow accept <wrap-id>          Join a group from a welcome
  burrow send <group> <message>    Send a message
  burrow read <group>              Show stored messages
  burrow acl ...                   Manage the access-control allowlist
  burrow daemon                    Listen on all allowed groups (JSONL output)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable

from .. import __version__, handlers
from ..core.logging import configure_logging
from ..handlers import BurrowContext, HandlerResult
from .output import output_error, output_result

logger = logging.getLogger(__name__)


def _context(args: argparse.Namespace) -> BurrowContext:
    return BurrowContext(data_dir=args.data_dir, key_path=args.key_path, relays=args.relay)


def _render(result: HandlerResult, args: argparse.Namespace) -> int:
    if result.success:
        output_result(result.to_dict(), "json" if args.json else "text")
    elif args.json:
        output_result(result.to_dict(), "json")
    else:
        output_error(result.error or "command failed")
    return result.code


# ============================================================================
# Commands
# ============================================================================


def cmd_init(args: argparse.Namespace) -> int:
    """Load or generate the identity and publish a KeyPackage."""
    return _render(asyncio.run(handlers.init(_context(args), generate=args.generate, owner=args.owner)), args)


def cmd_create_group(args: argparse.Namespace) -> int:
    result = handlers.create_group(
        _context(args),
        args.name,
        description=args.description or "",
        relays=args.group_relay,
        allow=args.allow,
    )
    return _render(result, args)


def cmd_groups(args: argparse.Namespace) -> int:
    return _render(handlers.list_groups(_context(args)), args)


def cmd_invite(args: argparse.Namespace) -> int:
    return _render(asyncio.run(handlers.invite(_context(args), args.group, args.pubkey)), args)


def cmd_welcomes(args: argparse.Namespace) -> int:
    return _render(asyncio.run(handlers.list_welcomes(_context(args))), args)


def cmd_accept(args: argparse.Namespace) -> int:
    return _render(asyncio.run(handlers.accept_welcome(_context(args), args.wrap_id, allow=args.allow)), args)


def cmd_send(args: argparse.Namespace) -> int:
    result = asyncio.run(handlers.send_message(_context(args), args.group, args.message, reply_to=args.reply_to))
    return _render(result, args)


def cmd_read(args: argparse.Namespace) -> int:
    return _render(handlers.read_messages(_context(args), args.group, limit=args.limit), args)


def cmd_acl(args: argparse.Namespace) -> int:
    """Dispatch acl subcommands."""
    ctx = _context(args)
    acl_commands: dict[str, Callable[[], HandlerResult]] = {
        "show": lambda: handlers.acl_show(ctx),
        "add-contact": lambda: handlers.acl_add_contact(ctx, args.pubkey),
        "remove-contact": lambda: handlers.acl_remove_contact(ctx, args.pubkey),
        "add-group": lambda: handlers.acl_add_group(ctx, args.group),
        "remove-group": lambda: handlers.acl_remove_group(ctx, args.group),
        "audit": lambda: handlers.acl_audit(ctx, days=args.days),
    }
    return _render(acl_commands[args.acl_command](), args)


def cmd_daemon(args: argparse.Namespace) -> int:
    """Run the relay daemon. Output is always JSONL on stdout."""
    result = asyncio.run(handlers.run_daemon(_context(args), log_file=args.log_file))
    if result.error:
        logger.error(result.error)
    return result.code


# ============================================================================
# Parser
# ============================================================================


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="burrow",
        description="Encrypted group messaging over Nostr (MLS / Marmot)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  burrow init --generate --owner npub1...      First-time setup
  burrow create-group "Ops" --allow            Create and allowlist a group
  burrow invite 3fa2 npub1...                  Invite by group id prefix
  burrow welcomes                              See who invited you
  burrow accept <wrap-id> --allow              Join and allowlist
  burrow send 3fa2 "hello"                     Send a message
  burrow read 3fa2 -n 20                       Show recent messages
  burrow daemon --log-file ~/.burrow/out.jsonl Listen on allowed groups

Access control:
  burrow acl show                              Show owner and allowlists
  burrow acl add-contact npub1...              Allow a sender
  burrow acl audit --days 1                    Recent audit entries
        """,
    )
    parser.add_argument("--version", action="version", version=f"burrow {__version__}")
    parser.add_argument("--data-dir", help="Data directory (default: BURROW_DATA_DIR or ~/.burrow)")
    parser.add_argument("--key-path", help="Secret key file (default: BURROW_KEY_PATH or ~/.clawstr/secret.key)")
    parser.add_argument(
        "--relay",
        action="append",
        help="Relay URL (repeatable; default: BURROW_RELAYS)",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    init_parser = subparsers.add_parser("init", help="Initialize identity and publish a KeyPackage")
    init_parser.add_argument("--generate", action="store_true", help="Generate a key if none exists")
    init_parser.add_argument("--owner", help="Owner pubkey (hex or npub) for a new access-control.json")

    # create-group
    create_parser = subparsers.add_parser("create-group", help="Create a new encrypted group")
    create_parser.add_argument("name", help="Group name")
    create_parser.add_argument("--description", "-d", help="Group description")
    create_parser.add_argument(
        "--group-relay",
        action="append",
        help="Relay stored in the group data (repeatable; default: the active relays)",
    )
    create_parser.add_argument("--allow", action="store_true", help="Add the group to the allowlist")

    # groups
    subparsers.add_parser("groups", help="List groups")

    # invite
    invite_parser = subparsers.add_parser("invite", help="Invite a member to a group")
    invite_parser.add_argument("group", help="Group id or unique prefix")
    invite_parser.add_argument("pubkey", help="Invitee pubkey (hex or npub)")

    # welcomes / accept
    subparsers.add_parser("welcomes", help="List pending welcomes")
    accept_parser = subparsers.add_parser("accept", help="Join a group from a welcome")
    accept_parser.add_argument("wrap_id", help="Gift wrap event id (from 'burrow welcomes')")
    accept_parser.add_argument("--allow", action="store_true", help="Add the group to the allowlist")

    # send / read
    send_parser = subparsers.add_parser("send", help="Send a message to a group")
    send_parser.add_argument("group", help="Group id or unique prefix")
    send_parser.add_argument("message", help="Message text")
    send_parser.add_argument("--reply-to", help="Inner event id being replied to")

    read_parser = subparsers.add_parser("read", help="Read stored messages")
    read_parser.add_argument("group", help="Group id or unique prefix")
    read_parser.add_argument("--limit", "-n", type=int, default=50, help="Max messages (default: 50)")

    # acl
    acl_parser = subparsers.add_parser("acl", help="Manage access control")
    acl_subparsers = acl_parser.add_subparsers(dest="acl_command", required=True)
    acl_subparsers.add_parser("show", help="Show access-control configuration")
    for name, help_text in (("add-contact", "Allow a contact"), ("remove-contact", "Disallow a contact")):
        p = acl_subparsers.add_parser(name, help=help_text)
        p.add_argument("pubkey", help="Contact pubkey (hex or npub)")
    for name, help_text in (("add-group", "Allow a group"), ("remove-group", "Disallow a group")):
        p = acl_subparsers.add_parser(name, help=help_text)
        p.add_argument("group", help="Group id or unique prefix")
    audit_parser = acl_subparsers.add_parser("audit", help="Show recent audit entries")
    audit_parser.add_argument("--days", type=int, default=7, help="Days to include (default: 7)")

    # daemon
    daemon_parser = subparsers.add_parser("daemon", help="Listen on all allowed groups")
    daemon_parser.add_argument("--log-file", help="Also append JSONL output to this file")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    configure_logging(level="DEBUG" if args.verbose else None)

    commands = {
        "init": cmd_init,
        "create-group": cmd_create_group,
        "groups": cmd_groups,
        "invite": cmd_invite,
        "welcomes": cmd_welcomes,
        "accept": cmd_accept,
        "send": cmd_send,
        "read": cmd_read,
        "acl": cmd_acl,
        "daemon": cmd_daemon,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
