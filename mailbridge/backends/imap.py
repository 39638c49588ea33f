"""IMAP backend built on imapclient.

Messages are addressed by sequence number: the client runs with
``use_uid=False`` so envelope ids match what the server shows in listings.
Only the notify loop switches to UIDs, since it has to remember messages
across wakes while other clients may expunge.
"""

import contextlib
import logging
import queue
import ssl
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from mailbridge import process
from mailbridge.config import DEFAULT_NOTIFY_CMD, AccountConfig, ImapConfig
from mailbridge.email import Envelope, Folder, Message, decode_mime_header, normalize_message_id
from mailbridge.errors import (
    AuthError,
    ImapConnectionError,
    MailBridgeError,
    NotFoundError,
    ProtocolError,
)
from mailbridge.flags import Flag, FlagLike, Flags

from .base import parse_sort_criteria

logger = logging.getLogger("mailbridge")

ENVELOPE_ITEMS = ["ENVELOPE", "FLAGS", "INTERNALDATE"]
BODY_ITEM = "BODY.PEEK[]"
# Mailbox attributes of folders that cannot be selected (RFC 3501, RFC 5258)
NOSELECT_ATTRIBUTES = {"\\noselect", "\\nonexistent"}


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATED = "authenticated"
    SELECTED = "selected"
    EXAMINED = "examined"
    IDLING = "idling"


@contextlib.contextmanager
def imap_errors(operation: str, target: str | None = None) -> Iterator[None]:
    """Turn imapclient and socket failures into ProtocolError."""
    try:
        yield
    except (IMAPClientError, OSError) as e:
        raise ProtocolError(operation, target, e) from e


def page_range(last_sequence: int, page_size: int, page: int) -> str | None:
    """Sequence set holding one page of the newest messages.

    Returns None for an empty mailbox, where nothing needs fetching.
    """
    if last_sequence == 0:
        return None
    if page_size == 0:
        return "1:*"
    cursor = page * page_size
    begin = max(1, last_sequence - cursor)
    end = begin - min(begin, page_size) + 1
    return f"{end}:{begin}"


def slice_page(seqs: Sequence[int], page_size: int, page: int) -> list[int]:
    """Slice a SEARCH/SORT result; ``page_size == 0`` keeps everything."""
    if page_size == 0:
        return list(seqs)
    begin = page * page_size
    end = min(begin + page_size - 1, len(seqs) - 1)
    return list(seqs[begin:end + 1])


def sort_criteria_to_imap(sort: str | None) -> list[str]:
    """Translate ``"date:desc subject"`` into SORT criteria (``REVERSE DATE``, ``SUBJECT``)."""
    return [
        f"REVERSE {name.upper()}" if descending else name.upper()
        for name, descending in parse_sort_criteria(sort)
    ]


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def format_address(address) -> str:
    """Display name of an ENVELOPE address, falling back to mailbox@host."""
    if address.name:
        return decode_mime_header(address.name)
    mailbox = _decode(address.mailbox)
    host = _decode(address.host)
    return f"{mailbox}@{host}" if host else mailbox


def envelope_from_fetch(msg_id: int, data: dict) -> Envelope:
    """Build an Envelope from one FETCH (ENVELOPE FLAGS INTERNALDATE) response."""
    envelope = data.get(b"ENVELOPE")
    subject = ""
    sender = ""
    date = data.get(b"INTERNALDATE")
    message_id = None
    if envelope is not None:
        subject = decode_mime_header(envelope.subject)
        addresses = envelope.from_ or envelope.sender
        if addresses:
            sender = format_address(addresses[0])
        message_id = normalize_message_id(envelope.message_id)
        if date is None:
            date = envelope.date
    return Envelope(
        id=str(msg_id),
        flags=Flags.from_imap(data.get(b"FLAGS", ())),
        subject=subject,
        sender=sender,
        date=date,
        message_id=message_id,
    )


class ImapSession:
    """An authenticated IMAP connection.

    Obtained from ``ImapSession.open`` (or ``ImapBackend.connect``); there is
    no unconnected session object. Commands run strictly one after the other
    and every message operation selects its folder first.
    """

    def __init__(self, client: IMAPClient, host: str):
        self.client = client
        self.host = host
        self.state = SessionState.AUTHENTICATED
        self.folder: str | None = None

    @classmethod
    def open(cls, config: ImapConfig) -> "ImapSession":
        """Connect, negotiate TLS and log in.

        Raises:
            ImapConnectionError: If the socket or TLS setup fails
            AuthError: If the credential is unavailable or login is rejected
        """
        password = config.get_password()

        ssl_context = ssl.create_default_context()
        if config.insecure:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        logger.info(f"Connecting to {config.host}:{config.port} ({config.encryption})")
        try:
            if config.encryption == "tls":
                client = IMAPClient(
                    config.host,
                    port=config.port,
                    use_uid=False,
                    ssl=True,
                    ssl_context=ssl_context,
                )
            else:
                client = IMAPClient(config.host, port=config.port, use_uid=False, ssl=False)
                if config.encryption == "start-tls":
                    client.starttls(ssl_context)
        except (IMAPClientError, OSError) as e:
            raise ImapConnectionError(
                f"Cannot connect to {config.host}:{config.port}: {e}"
            ) from e

        try:
            client.login(config.login, password)
        except (LoginError, IMAPClientError) as e:
            raise AuthError(f"Login rejected for {config.login}@{config.host}: {e}") from e
        return cls(client, config.host)

    def select(self, folder: str) -> int:
        """Select a folder read-write and return its message count."""
        with imap_errors("select folder", folder):
            response = self.client.select_folder(folder)
        self.state = SessionState.SELECTED
        self.folder = folder
        return int(response.get(b"EXISTS", 0))

    def examine(self, folder: str) -> int:
        """Select a folder read-only and return its message count."""
        with imap_errors("examine folder", folder):
            response = self.client.select_folder(folder, readonly=True)
        self.state = SessionState.EXAMINED
        self.folder = folder
        return int(response.get(b"EXISTS", 0))

    def fetch(self, messages, items: list[str]) -> dict:
        with imap_errors("fetch messages", f"{self.folder}:{messages}"):
            return self.client.fetch(messages, items)

    def search(self, query: str) -> list[int]:
        with imap_errors("search", self.folder):
            return list(self.client.search(query or "ALL"))

    def sort(self, criteria: list[str], query: str) -> list[int]:
        with imap_errors("sort", self.folder):
            return list(self.client.sort(criteria, query or "ALL", charset="UTF-8"))

    @contextlib.contextmanager
    def uid_mode(self) -> Iterator[None]:
        """Address messages by UID instead of sequence number."""
        previous = self.client.use_uid
        self.client.use_uid = True
        try:
            yield
        finally:
            self.client.use_uid = previous

    def idle_wait(self, timeout: int) -> list:
        """Enter IDLE, wait up to ``timeout`` seconds for a push, then leave IDLE."""
        previous = self.state
        with imap_errors("idle", self.folder):
            self.client.idle()
            self.state = SessionState.IDLING
            try:
                return self.client.idle_check(timeout=timeout)
            finally:
                self.client.idle_done()
                self.state = previous

    def logout(self) -> None:
        with imap_errors("logout", self.host):
            self.client.logout()
        self.state = SessionState.DISCONNECTED
        self.folder = None


@dataclass
class WatchOutcome:
    """Result of the watch commands run after one IDLE wake."""
    wake: int
    error: BaseException | None = None


class ImapBackend:
    """IMAP implementation of the Backend protocol.

    The session is opened by the first operation that needs it and reused
    until ``disconnect``.
    """

    def __init__(self, account: AccountConfig, config: ImapConfig):
        self.account = account
        self.config = config
        self._session: ImapSession | None = None

    @property
    def backend_type(self) -> str:
        return "imap"

    def supports_flag(self, flag: FlagLike) -> bool:
        return True

    def connect(self) -> ImapSession:
        """Return the connected session, opening it on first use."""
        if self._session is None:
            self._session = ImapSession.open(self.config)
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.DISCONNECTED

    def disconnect(self) -> None:
        """Log out if a session is open, a no-op otherwise."""
        if self._session is None:
            return
        session, self._session = self._session, None
        session.logout()
        logger.info(f"Disconnected from {self.config.host}")

    def __enter__(self) -> "ImapBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def _select(self, folder: str) -> tuple[ImapSession, int]:
        session = self.connect()
        return session, session.select(self.account.folder_alias(folder))

    def _seq(self, folder: str, id: str) -> tuple[ImapSession, int]:
        session, exists = self._select(folder)
        try:
            seq = int(id)
        except ValueError:
            raise NotFoundError(f"Invalid message id {id!r}") from None
        if not 1 <= seq <= exists:
            raise NotFoundError(f"Message {id} not found in {folder}")
        return session, seq

    def add_folder(self, name: str) -> None:
        session = self.connect()
        folder = self.account.folder_alias(name)
        with imap_errors("create folder", folder):
            session.client.create_folder(folder)

    def delete_folder(self, name: str) -> None:
        session = self.connect()
        folder = self.account.folder_alias(name)
        with imap_errors("delete folder", folder):
            session.client.delete_folder(folder)

    def list_folders(self) -> list[Folder]:
        session = self.connect()
        with imap_errors("list folders"):
            folders = session.client.list_folders()
        result = []
        for flags, delimiter, name in folders:
            attributes = [_decode(flag) for flag in flags]
            result.append(
                Folder(
                    name=name,
                    delimiter=_decode(delimiter) or None,
                    description=" ".join(attributes),
                    selectable=not NOSELECT_ATTRIBUTES & {a.lower() for a in attributes},
                )
            )
        return result

    def list_envelopes(self, folder: str, page_size: int, page: int) -> list[Envelope]:
        session, last_sequence = self._select(folder)
        seq_range = page_range(last_sequence, page_size, page)
        if seq_range is None:
            return []
        data = session.fetch(seq_range, ENVELOPE_ITEMS)
        return [envelope_from_fetch(seq, data[seq]) for seq in sorted(data, reverse=True)]

    def search_envelopes(
        self,
        folder: str,
        query: str,
        sort: str,
        page_size: int,
        page: int,
    ) -> list[Envelope]:
        """Run SEARCH (or SORT when a sort order is given) and fetch one page.

        Without a sort order results come newest first.
        """
        criteria = sort_criteria_to_imap(sort)
        session, _ = self._select(folder)
        if criteria:
            seqs = session.sort(criteria, query)
        else:
            seqs = sorted(session.search(query), reverse=True)
        seqs = slice_page(seqs, page_size, page)
        if not seqs:
            return []
        data = session.fetch(seqs, ENVELOPE_ITEMS)
        return [envelope_from_fetch(seq, data[seq]) for seq in seqs if seq in data]

    def add_message(self, folder: str, raw: bytes, flags: Flags) -> str:
        """Append a message and return its sequence number (the new EXISTS count)."""
        session = self.connect()
        folder = self.account.folder_alias(folder)
        with imap_errors("append message to", folder):
            session.client.append(folder, raw, flags=flags.to_imap())
        return str(session.select(folder))

    def get_message(self, folder: str, id: str) -> Message:
        session, seq = self._seq(folder, id)
        data = session.fetch([seq], [BODY_ITEM])
        raw = data.get(seq, {}).get(b"BODY[]")
        if raw is None:
            raise NotFoundError(f"Message {id} not found in {folder}")
        return Message(raw)

    def copy_message(self, src: str, dst: str, id: str) -> str:
        raw = self.get_message(src, id).raw
        return self.add_message(dst, raw, Flags([Flag.SEEN]))

    def move_message(self, src: str, dst: str, id: str) -> str:
        new_id = self.copy_message(src, dst, id)
        self.add_flags(src, id, Flags([Flag.DELETED, Flag.SEEN]))
        self.expunge(src)
        return new_id

    def delete_message(self, folder: str, id: str) -> None:
        self.add_flags(folder, id, Flags([Flag.DELETED]))
        self.expunge(folder)

    def add_flags(self, folder: str, id: str, flags: Flags) -> None:
        session, seq = self._seq(folder, id)
        with imap_errors("add flags to", f"{folder}:{id}"):
            session.client.add_flags([seq], flags.to_imap())

    def set_flags(self, folder: str, id: str, flags: Flags) -> None:
        session, seq = self._seq(folder, id)
        with imap_errors("set flags of", f"{folder}:{id}"):
            session.client.set_flags([seq], flags.to_imap())

    def remove_flags(self, folder: str, id: str, flags: Flags) -> None:
        session, seq = self._seq(folder, id)
        with imap_errors("remove flags from", f"{folder}:{id}"):
            session.client.remove_flags([seq], flags.to_imap())

    def expunge(self, folder: str) -> None:
        session, _ = self._select(folder)
        with imap_errors("expunge", folder):
            session.client.expunge()

    def run_notify_cmd(self, subject: str, sender: str) -> None:
        """Default notify sink: run the account's notify command.

        ``<subject>`` and ``<sender>`` are expected inside single quotes, as in
        the default command.
        """
        cmd = self.account.notify_cmd or DEFAULT_NOTIFY_CMD
        cmd = cmd.replace("<subject>", _single_quoted(subject)).replace(
            "<sender>", _single_quoted(sender)
        )
        process.run(cmd)

    def notify(
        self,
        keepalive: int,
        folder: str,
        on_new: Callable[[str, str], None] | None = None,
    ) -> None:
        """Call ``on_new(subject, sender)`` for every new message, forever.

        New means matching the account's notify query and not seen since
        the loop started.
        """
        notifier = on_new or self.run_notify_cmd
        query = self.account.notify_query
        session = self.connect()
        folder = self.account.folder_alias(folder)
        session.examine(folder)

        with session.uid_mode():
            seen = set(session.search(query))
            logger.info(f"Watching {folder} for new messages ({len(seen)} already known)")
            while True:
                session.idle_wait(keepalive)
                uids = [uid for uid in session.search(query) if uid not in seen]
                if not uids:
                    continue
                data = session.fetch(uids, ["ENVELOPE"])
                for uid in uids:
                    envelope = envelope_from_fetch(uid, data.get(uid, {}))
                    logger.info(f"New message from {envelope.sender}: {envelope.subject}")
                    try:
                        notifier(envelope.subject, envelope.sender)
                    except MailBridgeError as e:
                        logger.error(f"Notify action failed: {e}")
                    seen.add(uid)

    def watch(
        self,
        keepalive: int,
        folder: str,
        on_outcome: Callable[[WatchOutcome], None] | None = None,
    ) -> None:
        """Run the account's watch commands in the background on every IDLE wake, forever.

        Each batch reports back through a queue; outcomes are passed to
        ``on_outcome`` (logged by default) on the following wake.
        """
        report = on_outcome or self._log_watch_outcome
        cmds = list(self.account.watch_cmds)
        session = self.connect()
        folder = self.account.folder_alias(folder)
        session.examine(folder)
        logger.info(f"Watching {folder}, running {len(cmds)} command(s) on change")

        outcomes: queue.SimpleQueue[WatchOutcome] = queue.SimpleQueue()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mailbridge-watch")
        wake = 0
        try:
            while True:
                session.idle_wait(keepalive)
                self._drain_watch_outcomes(outcomes, report)
                wake += 1
                future = executor.submit(process.run_all, cmds)
                future.add_done_callback(
                    lambda f, n=wake: outcomes.put(WatchOutcome(n, _future_error(f)))
                )
        finally:
            executor.shutdown(wait=True)
            self._drain_watch_outcomes(outcomes, report)

    @staticmethod
    def _drain_watch_outcomes(
        outcomes: "queue.SimpleQueue[WatchOutcome]",
        report: Callable[[WatchOutcome], None],
    ) -> None:
        while True:
            try:
                outcome = outcomes.get_nowait()
            except queue.Empty:
                return
            report(outcome)

    @staticmethod
    def _log_watch_outcome(outcome: WatchOutcome) -> None:
        if outcome.error is None:
            logger.info(f"Watch commands for wake {outcome.wake} completed")
        else:
            logger.error(f"Watch commands for wake {outcome.wake} failed: {outcome.error}")


def _single_quoted(value: str) -> str:
    return value.replace("'", "'\\''")


def _future_error(future: Future) -> BaseException | None:
    if future.cancelled():
        return None
    return future.exception()
