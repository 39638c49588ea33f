"""SQLite cache of the state both sides had at the end of the last sync."""

import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from mailbridge.email import Envelope
from mailbridge.flags import Flags

from .patch import EnvelopeHunk, FolderHunk, HunkKind, Side

SCHEMA = """
CREATE TABLE IF NOT EXISTS folders (
    account TEXT NOT NULL,
    side TEXT NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (account, side, name)
);

CREATE TABLE IF NOT EXISTS envelopes (
    account TEXT NOT NULL,
    side TEXT NOT NULL,
    folder TEXT NOT NULL,
    message_id TEXT NOT NULL,
    flags TEXT NOT NULL DEFAULT '',
    subject TEXT,
    sender TEXT,
    date TIMESTAMP,
    PRIMARY KEY (account, side, folder, message_id)
);

CREATE INDEX IF NOT EXISTS idx_envelopes_folder ON envelopes(account, side, folder);
"""


class SyncCache:
    """SQLite wrapper with connection management.

    Can be used as a context manager for automatic connection handling:

        with SyncCache(path) as cache:
            folders = cache.list_folders("personal", Side.REMOTE)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "SyncCache":
        """Connect to the cache and initialize schema."""
        self.connect()
        self.init_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def connect(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Get the active connection.

        Raises:
            RuntimeError: If the cache is not connected
        """
        if self._conn is None:
            raise RuntimeError("Sync cache not connected")
        return self._conn

    def init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def list_folders(self, account: str, side: Side) -> set[str]:
        rows = self.conn.execute(
            "SELECT name FROM folders WHERE account = ? AND side = ?",
            (account, side.value),
        )
        return {row["name"] for row in rows}

    def list_envelopes(self, account: str, side: Side, folder: str) -> dict[str, Envelope]:
        """Cached envelopes of a folder keyed by Message-ID (their ``id`` is empty)."""
        rows = self.conn.execute(
            """
            SELECT message_id, flags, subject, sender, date FROM envelopes
            WHERE account = ? AND side = ? AND folder = ?
            """,
            (account, side.value, folder),
        )
        return {
            row["message_id"]: Envelope(
                id="",
                flags=Flags.from_imap(row["flags"].split()),
                subject=row["subject"] or "",
                sender=row["sender"] or "",
                date=datetime.fromisoformat(row["date"]) if row["date"] else None,
                message_id=row["message_id"],
            )
            for row in rows
        }

    def apply_folder_hunks(self, account: str, hunks: Iterable[FolderHunk]) -> None:
        """Write folder cache changes in a single transaction."""
        with self.conn:
            for hunk in hunks:
                if hunk.kind is HunkKind.CACHE:
                    self.conn.execute(
                        "INSERT OR REPLACE INTO folders (account, side, name) VALUES (?, ?, ?)",
                        (account, hunk.side.value, hunk.folder),
                    )
                elif hunk.kind is HunkKind.UNCACHE:
                    self.conn.execute(
                        "DELETE FROM folders WHERE account = ? AND side = ? AND name = ?",
                        (account, hunk.side.value, hunk.folder),
                    )
                    self.conn.execute(
                        "DELETE FROM envelopes WHERE account = ? AND side = ? AND folder = ?",
                        (account, hunk.side.value, hunk.folder),
                    )

    def apply_envelope_hunks(self, account: str, hunks: Iterable[EnvelopeHunk]) -> None:
        """Write envelope cache changes in a single transaction."""
        with self.conn:
            for hunk in hunks:
                if hunk.kind is HunkKind.CACHE:
                    envelope = hunk.envelope or Envelope(id="")
                    self.conn.execute(
                        """
                        INSERT OR REPLACE INTO envelopes
                        (account, side, folder, message_id, flags, subject, sender, date)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            account,
                            hunk.side.value,
                            hunk.folder,
                            hunk.message_id,
                            hunk.flags.to_imap_string(),
                            envelope.subject,
                            envelope.sender,
                            envelope.date.isoformat() if envelope.date else None,
                        ),
                    )
                elif hunk.kind is HunkKind.UNCACHE:
                    self.conn.execute(
                        """
                        DELETE FROM envelopes
                        WHERE account = ? AND side = ? AND folder = ? AND message_id = ?
                        """,
                        (account, hunk.side.value, hunk.folder, hunk.message_id),
                    )
