"""Notmuch backend driving the ``notmuch`` command line.

Folders are virtual: each name in the account's folder alias table maps to
a notmuch query. Message bytes are stored through a MaildirBackend rooted at
the notmuch mail directory and then indexed with ``notmuch new``.
"""

import hashlib
import json
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path

from mailbridge import process
from mailbridge.config import DEFAULT_INBOX_FOLDER, AccountConfig, MaildirConfig, NotmuchConfig
from mailbridge.email import (
    Envelope,
    Folder,
    Message,
    decode_mime_header,
    format_sender,
    normalize_message_id,
)
from mailbridge.errors import MailBridgeError, NotFoundError, UnsupportedOperationError
from mailbridge.flags import CustomFlag, Flag, FlagLike, Flags
from mailbridge.id_mapper import DummyIdMapper, IdMapper

from .base import paginate, parse_sort_criteria
from .maildir import MaildirBackend

logger = logging.getLogger("mailbridge")

DEFAULT_QUERY = "all"

_FLAG_TAGS = {
    Flag.ANSWERED: "replied",
    Flag.FLAGGED: "flagged",
    Flag.DELETED: "deleted",
    Flag.DRAFT: "draft",
}
_TAG_FLAGS = {tag: flag for flag, tag in _FLAG_TAGS.items()}


def flags_from_tags(tags: Iterable[str]) -> Flags:
    """Seen is the absence of ``unread``; other known tags map to flags."""
    tags = set(tags)
    flags = [] if "unread" in tags else [Flag.SEEN]
    for tag in tags - {"unread"}:
        flags.append(_TAG_FLAGS.get(tag, CustomFlag(tag)))
    return Flags(flags)


def tags_from_flags(flags: Flags) -> list[str]:
    """Tags carried by the flags, not counting Seen (which is ``-unread``)."""
    tags = []
    for flag in flags:
        if isinstance(flag, CustomFlag):
            tags.append(flag.name)
        elif flag in _FLAG_TAGS:
            tags.append(_FLAG_TAGS[flag])
    return tags


def id_query(message_id: str) -> str:
    return 'id:"{}"'.format(message_id.replace('"', '""'))


def notmuch_message_id(raw: bytes) -> str:
    """The id notmuch assigns: Message-ID without brackets, else a sha1 of the file."""
    message_id = normalize_message_id(Message(raw).parsed.get("Message-ID"))
    if message_id:
        return message_id
    return "notmuch-sha1-" + hashlib.sha1(raw).hexdigest()


class NotmuchDatabase:
    """Thin wrapper over the notmuch command line, JSON output only."""

    def __init__(self, config: NotmuchConfig, executable: str = "notmuch"):
        self.config = config
        self.executable = executable

    def _run(self, *args: str) -> bytes:
        argv = [self.executable]
        if self.config.config_path is not None:
            argv.append(f"--config={self.config.config_path}")
        argv.extend(args)
        env = {**os.environ, "NOTMUCH_DATABASE": str(self.config.database_path)}
        return process.run_argv(argv, env=env)

    def _json(self, *args: str):
        output = self._run(*args)
        try:
            return json.loads(output or b"[]")
        except json.JSONDecodeError as e:
            raise MailBridgeError(f"Unexpected notmuch output for {args[0]}: {e}") from e

    def show(self, query: str) -> list[dict]:
        """Headers, tags and filenames of every message matching ``query``."""
        threads = self._json(
            "show", "--format=json", "--body=false", "--entire-thread=false", query
        )
        return list(_walk_show(threads))

    def files(self, message_id: str) -> list[str]:
        return self._json("search", "--format=json", "--output=files", id_query(message_id))

    def tag(self, query: str, add: Iterable[str] = (), remove: Iterable[str] = (),
            remove_all: bool = False) -> None:
        changes = [f"+{tag}" for tag in add] + [f"-{tag}" for tag in remove]
        if not changes and not remove_all:
            return
        args = ["tag"]
        if remove_all:
            args.append("--remove-all")
        self._run(*args, *changes, "--", query)

    def index(self) -> None:
        self._run("new", "--quiet")


def _walk_show(node) -> Iterator[dict]:
    """Flatten ``notmuch show`` output: threads of [message, replies] pairs."""
    if isinstance(node, dict):
        if node.get("match", True):
            yield node
    elif isinstance(node, list):
        for child in node:
            yield from _walk_show(child)


class _Entry:
    def __init__(self, data: dict):
        headers = data.get("headers", {})
        filenames = data.get("filename", [])
        self.message_id: str = data["id"]
        self.headers = headers
        self.filename = filenames[0] if isinstance(filenames, list) and filenames else filenames
        self.flags = flags_from_tags(data.get("tags", []))
        self.subject = decode_mime_header(headers.get("Subject"))
        self.sender = format_sender(headers.get("From"))
        self.date = datetime.fromtimestamp(data.get("timestamp", 0), tz=timezone.utc)

    def envelope(self, alias: str) -> Envelope:
        return Envelope(
            id=alias,
            flags=self.flags,
            subject=self.subject,
            sender=self.sender,
            date=self.date,
            message_id=self.message_id,
        )


_SORT_KEYS: dict[str, Callable[[_Entry], object]] = {
    "arrival": lambda e: e.date.timestamp(),
    "cc": lambda e: e.headers.get("Cc", "").lower(),
    "date": lambda e: e.date.timestamp(),
    "from": lambda e: e.sender.lower(),
    "size": lambda e: os.path.getsize(e.filename) if e.filename else 0,
    "subject": lambda e: e.subject.lower(),
    "to": lambda e: e.headers.get("To", "").lower(),
}


class NotmuchBackend:
    """Notmuch implementation of the Backend protocol."""

    def __init__(
        self,
        account: AccountConfig,
        config: NotmuchConfig,
        id_mapper_path: str | Path | None = None,
        maildir: MaildirBackend | None = None,
        database: NotmuchDatabase | None = None,
    ):
        self.account = account
        self.config = config
        self.id_mapper_path = Path(id_mapper_path) if id_mapper_path else None
        self.database = database or NotmuchDatabase(config)
        # Folder aliases are notmuch queries, not directories.
        self.maildir = maildir or MaildirBackend(
            AccountConfig(name=account.name, backend="maildir"),
            MaildirConfig(root_dir=config.database_path),
            list_aliases=False,
        )

    @property
    def backend_type(self) -> str:
        return "notmuch"

    def supports_flag(self, flag: FlagLike) -> bool:
        return True

    def id_mapper(self, folder: str) -> IdMapper | DummyIdMapper:
        if self.id_mapper_path is None:
            return DummyIdMapper()
        return IdMapper(self.id_mapper_path, self.account.name, folder.lower())

    def folder_query(self, folder: str) -> str:
        return self.account.folder_aliases.get(folder.lower(), DEFAULT_QUERY)

    def _message_id(self, folder: str, id: str) -> str:
        return self.id_mapper(folder).get_id(id)

    def add_folder(self, name: str) -> None:
        raise UnsupportedOperationError("notmuch", "add folder")

    def delete_folder(self, name: str) -> None:
        raise UnsupportedOperationError("notmuch", "delete folder")

    def list_folders(self) -> list[Folder]:
        return [
            Folder(name=name, description=query)
            for name, query in sorted(self.account.folder_aliases.items())
        ]

    def _envelopes(self, folder: str, query: str, sort: str | None,
                   page_size: int, page: int) -> list[Envelope]:
        entries = [_Entry(data) for data in self.database.show(query)]
        criteria = parse_sort_criteria(sort) or [("date", True)]
        for name, descending in reversed(criteria):
            entries.sort(key=_SORT_KEYS[name], reverse=descending)
        entries = paginate(entries, page_size, page)
        aliases = self.id_mapper(folder).get_or_create_aliases(e.message_id for e in entries)
        return [entry.envelope(alias) for entry, alias in zip(entries, aliases)]

    def list_envelopes(self, folder: str, page_size: int, page: int) -> list[Envelope]:
        return self._envelopes(folder, self.folder_query(folder), None, page_size, page)

    def search_envelopes(
        self,
        folder: str,
        query: str,
        sort: str,
        page_size: int,
        page: int,
    ) -> list[Envelope]:
        """Run a notmuch query restricted to the folder's query."""
        folder_query = self.folder_query(folder)
        if query and query.strip():
            folder_query = f"({folder_query}) and ({query})"
        return self._envelopes(folder, folder_query, sort, page_size, page)

    def add_message(self, folder: str, raw: bytes, flags: Flags) -> str:
        """Store in the mail directory, index it and return its alias in ``folder``."""
        self.maildir.add_message(DEFAULT_INBOX_FOLDER, raw, flags)
        self.database.index()
        message_id = notmuch_message_id(raw)
        logger.info(f"Indexed new message {message_id}")
        self._add_tags(message_id, flags)
        return self.id_mapper(folder).get_or_create_alias(message_id)

    def get_message(self, folder: str, id: str) -> Message:
        message_id = self._message_id(folder, id)
        files = self.database.files(message_id)
        if not files:
            raise NotFoundError(f"Message {id} not found in {folder}")
        try:
            return Message(Path(files[0]).read_bytes())
        except FileNotFoundError:
            raise NotFoundError(f"Message file {files[0]} is missing") from None

    def copy_message(self, src: str, dst: str, id: str) -> str:
        raise UnsupportedOperationError("notmuch", "copy message")

    def move_message(self, src: str, dst: str, id: str) -> str:
        raise UnsupportedOperationError("notmuch", "move message")

    def delete_message(self, folder: str, id: str) -> None:
        self.add_flags(folder, id, Flags([Flag.DELETED]))

    def _add_tags(self, message_id: str, flags: Flags) -> None:
        self.database.tag(
            id_query(message_id),
            add=tags_from_flags(flags),
            remove=["unread"] if Flag.SEEN in flags else [],
        )

    def add_flags(self, folder: str, id: str, flags: Flags) -> None:
        self._add_tags(self._message_id(folder, id), flags)

    def set_flags(self, folder: str, id: str, flags: Flags) -> None:
        message_id = self._message_id(folder, id)
        tags = tags_from_flags(flags)
        if Flag.SEEN not in flags:
            tags.append("unread")
        self.database.tag(id_query(message_id), add=tags, remove_all=True)

    def remove_flags(self, folder: str, id: str, flags: Flags) -> None:
        message_id = self._message_id(folder, id)
        self.database.tag(
            id_query(message_id),
            add=["unread"] if Flag.SEEN in flags else [],
            remove=tags_from_flags(flags),
        )

    def expunge(self, folder: str) -> None:
        raise UnsupportedOperationError("notmuch", "expunge")

    def disconnect(self) -> None:
        pass
