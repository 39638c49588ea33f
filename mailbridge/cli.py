"""CLI entry point for mailbridge."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .commands import (
    copy_cmd,
    delete_cmd,
    flags_cmd,
    list_envelopes_cmd,
    list_folders_cmd,
    move_cmd,
    read_cmd,
    run_notify,
    run_sync,
    run_watch,
    search_cmd,
)
from .commands.daemon import DEFAULT_KEEPALIVE
from .config import BACKENDS, load_config
from .errors import MailBridgeError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mailbridge")


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add common arguments to a parser."""
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=Path("config.toml"),
        help="Path to configuration file",
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=BACKENDS,
        help="Override the account's backend",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages",
    )


def add_page_args(parser: argparse.ArgumentParser) -> None:
    """Add pagination arguments to a parser."""
    parser.add_argument(
        "--page",
        type=int,
        default=0,
        help="0-based page number (default: 0)",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        help="Envelopes per page, 0 for all (default: account setting)",
    )


def add_keepalive_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("folder", nargs="?", help="Folder to watch (default: inbox)")
    parser.add_argument(
        "--keepalive",
        type=int,
        default=DEFAULT_KEEPALIVE,
        help=f"Seconds between IDLE renewals (default: {DEFAULT_KEEPALIVE})",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Mailbridge: one mail interface over IMAP, Maildir and Notmuch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_common_args(parser)
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # folders - List folders
    folders_parser = subparsers.add_parser("folders", help="List folders")
    add_common_args(folders_parser)

    # envelopes - List envelopes in a folder
    envelopes_parser = subparsers.add_parser("envelopes", help="List envelopes in a folder")
    add_common_args(envelopes_parser)
    envelopes_parser.add_argument("folder", help="Folder name")
    add_page_args(envelopes_parser)

    # search - Search envelopes
    search_parser = subparsers.add_parser("search", help="Search envelopes in a folder")
    add_common_args(search_parser)
    search_parser.add_argument("folder", help="Folder name")
    search_parser.add_argument("query", help="Backend query (IMAP SEARCH, notmuch query or terms)")
    search_parser.add_argument(
        "--sort",
        type=str,
        help="Sort criteria, e.g. 'date:desc from' (default: newest first)",
    )
    add_page_args(search_parser)

    # read - Read a message
    read_parser = subparsers.add_parser("read", help="Read and display a message")
    add_common_args(read_parser)
    read_parser.add_argument("folder", help="Folder name")
    read_parser.add_argument("id", help="Message id")

    # flags - Change message flags
    flags_parser = subparsers.add_parser("flags", help="Add, set or remove message flags")
    add_common_args(flags_parser)
    flags_parser.add_argument("action", choices=["add", "set", "remove"], help="Flag operation")
    flags_parser.add_argument("folder", help="Folder name")
    flags_parser.add_argument("id", help="Message id")
    flags_parser.add_argument("flags", nargs="+", help="Flags (seen, answered, flagged, ...)")

    # delete - Delete a message
    delete_parser = subparsers.add_parser("delete", help="Delete a message")
    add_common_args(delete_parser)
    delete_parser.add_argument("folder", help="Folder name")
    delete_parser.add_argument("id", help="Message id")

    # copy - Copy a message
    copy_parser = subparsers.add_parser("copy", help="Copy a message to another folder")
    add_common_args(copy_parser)
    copy_parser.add_argument("folder", help="Source folder")
    copy_parser.add_argument("id", help="Message id")
    copy_parser.add_argument("dest", help="Destination folder")

    # move - Move a message
    move_parser = subparsers.add_parser("move", help="Move a message to another folder")
    add_common_args(move_parser)
    move_parser.add_argument("folder", help="Source folder")
    move_parser.add_argument("id", help="Message id")
    move_parser.add_argument("dest", help="Destination folder")

    # notify - IDLE and run notify_cmd on new mail
    notify_parser = subparsers.add_parser("notify", help="Notify about new messages (IMAP IDLE)")
    add_common_args(notify_parser)
    add_keepalive_arg(notify_parser)

    # watch - IDLE and run watch_cmds on change
    watch_parser = subparsers.add_parser("watch", help="Run watch commands on changes (IMAP IDLE)")
    add_common_args(watch_parser)
    add_keepalive_arg(watch_parser)

    # sync - Two-way sync with the local replica
    sync_parser = subparsers.add_parser("sync", help="Synchronize with the local Maildir replica")
    add_common_args(sync_parser)
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without changing anything",
    )
    strategy = sync_parser.add_mutually_exclusive_group()
    strategy.add_argument(
        "-i", "--include",
        action="append",
        metavar="FOLDER",
        help="Only sync this folder (repeatable)",
    )
    strategy.add_argument(
        "-x", "--exclude",
        action="append",
        metavar="FOLDER",
        help="Do not sync this folder (repeatable)",
    )

    return parser


def run_command(args: argparse.Namespace) -> None:
    """Load the configuration and dispatch to the command implementation."""
    config = load_config(args.config)
    backend = getattr(args, "backend", None)

    if args.command == "folders":
        list_folders_cmd(config, backend)
    elif args.command == "envelopes":
        list_envelopes_cmd(config, args.folder, args.page, args.page_size, backend)
    elif args.command == "search":
        search_cmd(config, args.folder, args.query, args.sort, args.page, args.page_size, backend)
    elif args.command == "read":
        read_cmd(config, args.folder, args.id, backend)
    elif args.command == "flags":
        flags_cmd(config, args.action, args.folder, args.id, args.flags, backend)
    elif args.command == "delete":
        delete_cmd(config, args.folder, args.id, backend)
    elif args.command == "copy":
        copy_cmd(config, args.folder, args.id, args.dest, backend)
    elif args.command == "move":
        move_cmd(config, args.folder, args.id, args.dest, backend)
    elif args.command == "notify":
        run_notify(config, args.folder, args.keepalive)
    elif args.command == "watch":
        run_watch(config, args.folder, args.keepalive)
    elif args.command == "sync":
        if backend:
            config.account.backend = backend
        report = run_sync(config, args.dry_run, args.include, args.exclude)
        if not report.ok:
            sys.exit(2)


def main() -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    # Show help if no command specified
    if not args.command:
        parser.print_help()
        sys.exit(0)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.config.exists():
        logger.error(f"Configuration file not found: {args.config}")
        sys.exit(1)

    try:
        run_command(args)
    except (MailBridgeError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
