"""Maildir backend built on the standard library ``mailbox`` module.

Messages are referenced by IdMapper aliases of their Maildir keys. Flags
live in the filename info suffix (``<key>:2,FRS``) and are changed by
renaming the file, so the message bytes on disk are never rewritten.
"""

import glob
import logging
import mailbox
import os
import shlex
import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from mailbridge.config import AccountConfig, MaildirConfig
from mailbridge.email import (
    Envelope,
    Folder,
    Message,
    decode_mime_header,
    format_sender,
    normalize_message_id,
    parse_date,
)
from mailbridge.errors import MailBridgeError, NotFoundError
from mailbridge.flags import MAILDIR_FLAGS, Flag, FlagLike, Flags
from mailbridge.id_mapper import DummyIdMapper, IdMapper

from .base import paginate, parse_sort_criteria

logger = logging.getLogger("mailbridge")

DELIMITER = "/"
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _timestamp(date: datetime | None) -> float:
    return (date or _EPOCH).timestamp()


class _Entry:
    """A listed message before it gets its alias."""

    def __init__(self, key: str, msg: mailbox.MaildirMessage):
        self.key = key
        self.msg = msg
        self.flags = Flags.from_maildir(msg.get_flags())
        self.subject = decode_mime_header(msg.get("Subject"))
        self.sender = format_sender(msg.get("From"))
        self.date = parse_date(msg.get("Date")) or datetime.fromtimestamp(
            msg.get_date(), tz=timezone.utc
        )
        self.message_id = normalize_message_id(msg.get("Message-ID"))

    def envelope(self, alias: str) -> Envelope:
        return Envelope(
            id=alias,
            flags=self.flags,
            subject=self.subject,
            sender=self.sender,
            date=self.date,
            message_id=self.message_id,
        )

    def header(self, name: str) -> str:
        return decode_mime_header(self.msg.get(name)).lower()

    def matches(self, term: str) -> bool:
        negate = term.startswith("-")
        if negate:
            term = term[1:]
        name, sep, value = term.partition(":")
        value = value.lower()
        if not sep:
            needle = term.lower()
            found = needle in self.subject.lower() or needle in self.header("From")
        elif name == "subject":
            found = value in self.subject.lower()
        elif name == "from":
            found = value in self.header("From")
        elif name in ("to", "cc"):
            found = value in self.header(name.capitalize())
        elif name == "flag":
            found = all(flag in self.flags for flag in Flags.parse(value))
        else:
            raise ValueError(f"Unknown search term {name!r}")
        return found != negate


_SORT_KEYS: dict[str, Callable[[_Entry], object]] = {
    "arrival": lambda e: e.msg.get_date(),
    "cc": lambda e: e.header("Cc"),
    "date": lambda e: _timestamp(e.date),
    "from": lambda e: e.sender.lower(),
    "size": lambda e: len(e.msg.as_bytes()),
    "subject": lambda e: e.subject.lower(),
    "to": lambda e: e.header("To"),
}


def sort_entries(entries: list[_Entry], sort: str | None) -> list[_Entry]:
    """Sort by the given criteria, newest first when there are none."""
    criteria = parse_sort_criteria(sort) or [("date", True)]
    entries = list(entries)
    for name, descending in reversed(criteria):
        entries.sort(key=_SORT_KEYS[name], reverse=descending)
    return entries


class MaildirBackend:
    """Maildir implementation of the Backend protocol.

    The root directory is the inbox; other folders are Maildir++ subfolders
    (``.Sent``, ``.Archive.2024``) whose ``.`` separator is shown as
    ``delimiter`` (``/`` unless told otherwise).
    """

    def __init__(
        self,
        account: AccountConfig,
        config: MaildirConfig,
        id_mapper_path: str | Path | None = None,
        list_aliases: bool = True,
        create: bool = False,
        delimiter: str = DELIMITER,
    ):
        self.account = account
        self.delimiter = delimiter
        self.root = Path(config.root_dir).expanduser()
        self.id_mapper_path = Path(id_mapper_path) if id_mapper_path else None
        self.list_aliases = list_aliases
        if create:
            mailbox.Maildir(self.root, create=True)

    @property
    def backend_type(self) -> str:
        return "maildir"

    def supports_flag(self, flag: FlagLike) -> bool:
        return flag in MAILDIR_FLAGS

    def id_mapper(self, folder: str) -> IdMapper | DummyIdMapper:
        if self.id_mapper_path is None:
            return DummyIdMapper()
        return IdMapper(self.id_mapper_path, self.account.name, self.account.folder_alias(folder))

    def folder_path(self, folder: str) -> Path:
        """Resolve a folder name to its directory.

        Tried in order: inbox, absolute path, relative to the root, relative to
        the working directory, Maildir++ subfolder of the root.

        Raises:
            NotFoundError: If no candidate is an existing directory
        """
        if self.account.is_inbox(folder):
            return self.root
        name = self.account.folder_alias(folder)
        candidates = []
        path = Path(name).expanduser()
        if path.is_absolute():
            candidates.append(path)
        candidates += [
            self.root / name,
            Path.cwd() / name,
            self.root / self._subfolder_dirname(name),
        ]
        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        raise NotFoundError(f"Folder {folder} not found in {self.root}")

    def _subfolder_dirname(self, name: str) -> str:
        return "." + name.replace(self.delimiter, ".")

    def _open(self, folder: str) -> tuple[mailbox.Maildir, Path]:
        path = self.folder_path(folder)
        try:
            return mailbox.Maildir(path, factory=None, create=False), path
        except mailbox.NoSuchMailboxError as e:
            raise NotFoundError(f"Folder {folder} is not a Maildir: {e}") from e

    @staticmethod
    def _locate(root: Path, key: str) -> Path:
        """Current path of a message file, wherever its flags moved it."""
        for subdir in ("cur", "new"):
            for path in (root / subdir).glob(glob.escape(key) + "*"):
                if path.name.split(mailbox.Maildir.colon)[0] == key:
                    return path
        raise NotFoundError(f"Message {key} not found in {root}")

    def _store_flags(self, root: Path, key: str, flags: Flags) -> None:
        source = self._locate(root, key)
        target = root / "cur" / f"{key}{mailbox.Maildir.colon}2,{flags.to_maildir()}"
        if source != target:
            os.rename(source, target)

    def _current_flags(self, root: Path, key: str) -> Flags:
        name = self._locate(root, key).name
        _, sep, info = name.partition(mailbox.Maildir.colon + "2,")
        return Flags.from_maildir(info if sep else "")

    def _key(self, folder: str, id: str) -> str:
        return self.id_mapper(folder).get_id(id)

    def add_folder(self, name: str) -> None:
        if self.account.is_inbox(name):
            mailbox.Maildir(self.root, create=True)
            return
        folder = self.account.folder_alias(name)
        mailbox.Maildir(self.root, create=True).add_folder(folder.replace(self.delimiter, "."))
        logger.info(f"Created folder {folder} in {self.root}")

    def delete_folder(self, name: str) -> None:
        folder = self.account.folder_alias(name)
        path = self.root / self._subfolder_dirname(folder)
        if not path.is_dir():
            raise NotFoundError(f"Folder {name} not found in {self.root}")
        shutil.rmtree(path)
        logger.info(f"Deleted folder {folder} from {self.root}")

    def list_folders(self) -> list[Folder]:
        try:
            root = mailbox.Maildir(self.root, create=False)
            subfolders = root.list_folders()
        except (mailbox.NoSuchMailboxError, OSError) as e:
            raise NotFoundError(f"Maildir root {self.root} not found: {e}") from e

        folders = [Folder(self.account.inbox_folder, self.delimiter, str(self.root))]
        for name in sorted(subfolders):
            folders.append(
                Folder(
                    name.replace(".", self.delimiter),
                    self.delimiter,
                    str(self.root / ("." + name)),
                )
            )
        if self.list_aliases:
            listed = {folder.name for folder in folders}
            for alias, target in sorted(self.account.folder_aliases.items()):
                if alias not in listed:
                    folders.append(Folder(alias, self.delimiter, target))
        return folders

    def _entries(self, folder: str) -> list[_Entry]:
        mdir, _ = self._open(folder)
        return [_Entry(key, msg) for key, msg in mdir.iteritems()]

    def _page(self, folder: str, entries: list[_Entry], page_size: int, page: int) -> list[Envelope]:
        entries = paginate(entries, page_size, page)
        aliases = self.id_mapper(folder).get_or_create_aliases(e.key for e in entries)
        return [entry.envelope(alias) for entry, alias in zip(entries, aliases)]

    def list_envelopes(self, folder: str, page_size: int, page: int) -> list[Envelope]:
        entries = sort_entries(self._entries(folder), None)
        return self._page(folder, entries, page_size, page)

    def search_envelopes(
        self,
        folder: str,
        query: str,
        sort: str,
        page_size: int,
        page: int,
    ) -> list[Envelope]:
        """Filter with ``subject:``, ``from:``, ``to:``, ``cc:``, ``flag:`` or bare words.

        Terms are ANDed; a leading ``-`` negates one. ``all`` matches everything.
        """
        terms = [t for t in shlex.split(query or "") if t.lower() != "all"]
        entries = [e for e in self._entries(folder) if all(e.matches(t) for t in terms)]
        return self._page(folder, sort_entries(entries, sort), page_size, page)

    def add_message(self, folder: str, raw: bytes, flags: Flags) -> str:
        """Store the raw bytes and return the alias of the new Maildir key."""
        mdir, path = self._open(folder)
        try:
            key = mdir.add(raw)
            self._store_flags(path, key, flags)
        except OSError as e:
            raise MailBridgeError(f"Cannot add message to {folder}: {e}") from e
        return self.id_mapper(folder).get_or_create_alias(key)

    def get_message(self, folder: str, id: str) -> Message:
        key = self._key(folder, id)
        mdir, _ = self._open(folder)
        try:
            return Message(mdir.get_bytes(key))
        except KeyError:
            raise NotFoundError(f"Message {id} not found in {folder}") from None

    def copy_message(self, src: str, dst: str, id: str) -> str:
        raw = self.get_message(src, id).raw
        return self.add_message(dst, raw, Flags([Flag.SEEN]))

    def move_message(self, src: str, dst: str, id: str) -> str:
        new_id = self.copy_message(src, dst, id)
        self.add_flags(src, id, Flags([Flag.DELETED, Flag.SEEN]))
        return new_id

    def delete_message(self, folder: str, id: str) -> None:
        self.add_flags(folder, id, Flags([Flag.DELETED]))

    def add_flags(self, folder: str, id: str, flags: Flags) -> None:
        key = self._key(folder, id)
        path = self.folder_path(folder)
        self._store_flags(path, key, self._current_flags(path, key) | flags)

    def set_flags(self, folder: str, id: str, flags: Flags) -> None:
        key = self._key(folder, id)
        self._store_flags(self.folder_path(folder), key, flags)

    def remove_flags(self, folder: str, id: str, flags: Flags) -> None:
        key = self._key(folder, id)
        path = self.folder_path(folder)
        self._store_flags(path, key, self._current_flags(path, key) - flags)

    def expunge(self, folder: str) -> None:
        mdir, _ = self._open(folder)
        removed = 0
        for key, msg in list(mdir.iteritems()):
            if "T" in msg.get_flags():
                mdir.discard(key)
                removed += 1
        if removed:
            logger.info(f"Expunged {removed} message(s) from {folder}")

    def disconnect(self) -> None:
        pass
