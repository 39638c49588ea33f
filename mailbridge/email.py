"""Folder, envelope and message representations shared by all backends."""

import email
import email.message
import email.utils
from dataclasses import dataclass, field
from datetime import datetime
from email.header import decode_header

from .flags import Flags


@dataclass(frozen=True)
class Folder:
    name: str
    delimiter: str | None = None
    description: str = ""
    selectable: bool = True


@dataclass(frozen=True)
class Envelope:
    """Listing view of a message.

    ``id`` is an IMAP sequence number or a Maildir/Notmuch alias, always as a
    string. ``message_id`` is the Message-ID header without angle brackets and
    is what the sync engine uses to match messages across backends.
    """
    id: str
    flags: Flags = field(default_factory=Flags)
    subject: str = ""
    sender: str = ""
    date: datetime | None = None
    message_id: str | None = None


class Message:
    """A parsed message that keeps its original bytes untouched."""

    def __init__(self, raw: bytes):
        self.raw = raw
        self.parsed = email.message_from_bytes(raw)

    @property
    def subject(self) -> str:
        return decode_mime_header(self.parsed.get("Subject"))

    @property
    def sender(self) -> str:
        return decode_mime_header(self.parsed.get("From"))

    @property
    def message_id(self) -> str | None:
        return normalize_message_id(self.parsed.get("Message-ID"))

    @property
    def date(self) -> datetime | None:
        return parse_date(self.parsed.get("Date"))

    @property
    def body_text(self) -> str:
        return extract_body(self.parsed)

    def __repr__(self) -> str:
        return f"Message(subject={self.subject!r}, size={len(self.raw)})"


def decode_mime_header(header: str | bytes | None) -> str:
    """Decode a MIME-encoded email header."""
    if header is None:
        return ""
    if isinstance(header, bytes):
        header = header.decode("utf-8", errors="replace")
    decoded_parts = decode_header(str(header))
    result = []
    for part, charset in decoded_parts:
        if isinstance(part, bytes):
            try:
                result.append(part.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                result.append(part.decode("utf-8", errors="replace"))
        else:
            result.append(part)
    return "".join(result)


def normalize_message_id(value: str | bytes | None) -> str | None:
    """Strip whitespace and angle brackets from a Message-ID."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    value = str(value).strip().strip("<>").strip()
    return value or None


def parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None


def format_sender(value: str | None) -> str:
    """Display name of an address header, or the bare address if it has none."""
    name, addr = email.utils.parseaddr(decode_mime_header(value))
    return name or addr


def extract_body(msg: email.message.Message) -> str:
    """Extract plain text body from email message."""
    if msg.is_multipart():
        for content_type in ("text/plain", "text/html"):
            for part in msg.walk():
                if part.get_content_type() != content_type:
                    continue
                if "attachment" in part.get("Content-Disposition", ""):
                    continue
                payload = part.get_payload(decode=True)
                if isinstance(payload, bytes):
                    charset = part.get_content_charset() or "utf-8"
                    return payload.decode(charset, errors="replace")
    else:
        payload = msg.get_payload(decode=True)
        if isinstance(payload, bytes):
            charset = msg.get_content_charset() or "utf-8"
            return payload.decode(charset, errors="replace")
    return ""
