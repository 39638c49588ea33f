"""Mail operation commands - folder listing, envelopes, messages and flags."""

from __future__ import annotations

import logging

from ..config import Config
from ..flags import Flags
from .utils import open_backend, print_envelopes

logger = logging.getLogger("mailbridge")


def list_folders_cmd(config: Config, backend_type: str | None = None) -> None:
    """List the folders of the configured backend.

    Args:
        config: Application configuration
        backend_type: 'imap', 'maildir' or 'notmuch'; defaults to the account's
    """
    with open_backend(config, backend_type) as backend:
        folders = backend.list_folders()

    print(f"{'Folder':<40} {'Description':<60}")
    print("-" * 101)
    for folder in folders:
        print(f"{folder.name[:38]:<40} {folder.description[:58]:<60}")
    print(f"\nTotal: {len(folders)} folders")


def list_envelopes_cmd(
    config: Config,
    folder: str,
    page: int = 0,
    page_size: int | None = None,
    backend_type: str | None = None,
) -> None:
    """List one page of envelopes, newest first.

    Args:
        config: Application configuration
        folder: Folder name or alias
        page: 0-based page number
        page_size: Envelopes per page (0 for all); defaults to the account's
        backend_type: Backend override
    """
    if page_size is None:
        page_size = config.account.default_page_size
    with open_backend(config, backend_type) as backend:
        envelopes = backend.list_envelopes(folder, page_size, page)
    print_envelopes(envelopes)


def search_cmd(
    config: Config,
    folder: str,
    query: str,
    sort: str | None = None,
    page: int = 0,
    page_size: int | None = None,
    backend_type: str | None = None,
) -> None:
    """Search a folder and print one page of matching envelopes."""
    if page_size is None:
        page_size = config.account.default_page_size
    with open_backend(config, backend_type) as backend:
        envelopes = backend.search_envelopes(folder, query, sort, page_size, page)
    print_envelopes(envelopes)


def read_cmd(config: Config, folder: str, id: str, backend_type: str | None = None) -> None:
    """Read and display a message."""
    with open_backend(config, backend_type) as backend:
        message = backend.get_message(folder, id)

    print(f"From: {message.sender}")
    print(f"Subject: {message.subject}")
    print(f"Message-ID: {message.message_id}")
    if message.date:
        print(f"Date: {message.date}")
    print(f"Folder: {folder}")
    print(f"ID: {id}")
    print("-" * 60)
    print(message.body_text or "(no body)")


def flags_cmd(
    config: Config,
    action: str,
    folder: str,
    id: str,
    flags: list[str],
    backend_type: str | None = None,
) -> None:
    """Add, set or remove flags of a message.

    Args:
        config: Application configuration
        action: 'add', 'set' or 'remove'
        folder: Folder name or alias
        id: Message id as shown in listings
        flags: Flag names (seen, answered, flagged, deleted, draft or custom)
    """
    parsed = Flags.parse(flags)
    with open_backend(config, backend_type) as backend:
        if action == "add":
            backend.add_flags(folder, id, parsed)
        elif action == "set":
            backend.set_flags(folder, id, parsed)
        elif action == "remove":
            backend.remove_flags(folder, id, parsed)
        else:
            raise ValueError(f"Unknown flags action {action!r}")
    print(f"Flags of {folder}:{id} updated ({action} {parsed})")


def delete_cmd(config: Config, folder: str, id: str, backend_type: str | None = None) -> None:
    """Delete a message."""
    with open_backend(config, backend_type) as backend:
        backend.delete_message(folder, id)
    print(f"Deleted message {id} from {folder}")


def copy_cmd(config: Config, folder: str, id: str, dest: str,
             backend_type: str | None = None) -> None:
    """Copy a message to another folder."""
    with open_backend(config, backend_type) as backend:
        new_id = backend.copy_message(folder, dest, id)
    print(f"Copied message {id} from {folder} to {dest} (new id {new_id})")


def move_cmd(config: Config, folder: str, id: str, dest: str,
             backend_type: str | None = None) -> None:
    """Move a message to another folder."""
    with open_backend(config, backend_type) as backend:
        new_id = backend.move_message(folder, dest, id)
    print(f"Moved message {id} from {folder} to {dest} (new id {new_id})")
