"""Stable short aliases for filesystem-backed message identifiers.

Maildir keys and Notmuch message ids are long and awkward to type. The id
mapper assigns each one a small integer alias, scoped to an (account, folder)
pair, and remembers it in a SQLite store:

    mapper = IdMapper(path, "personal", "INBOX")
    alias = mapper.get_or_create_alias("1700000000.M1P2.host")   # "1"
    mapper.get_id(alias)                                         # "1700000000.M1P2.host"

Rows are only ever inserted. An alias handed out once keeps resolving to the
same identifier, even after the message itself is gone.
"""

import hashlib
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path

from .errors import MappingError, UnknownAliasError

logger = logging.getLogger("mailbridge")

BUSY_TIMEOUT_SECONDS = 10.0


class IdMapper:
    def __init__(self, path: str | Path, account: str, folder: str):
        self.path = Path(path)
        self.account = account
        self.folder = folder
        digest = hashlib.md5(f"{account}{folder}".encode()).hexdigest()
        self.table = f"mapping_{digest}"

    def __repr__(self) -> str:
        return f"IdMapper({str(self.path)!r}, {self.account!r}, {self.folder!r})"

    def _connect(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, timeout=BUSY_TIMEOUT_SECONDS)
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" ('
                " alias INTEGER PRIMARY KEY AUTOINCREMENT,"
                " internal_id TEXT UNIQUE NOT NULL)"
            )
        except (OSError, sqlite3.Error) as e:
            raise MappingError(f"Cannot open id mapper store {self.path}: {e}") from e
        return conn

    def _aliases(self, conn: sqlite3.Connection, internal_ids: list[str]) -> dict[str, str]:
        """Look up existing aliases and insert rows only for unknown ids."""
        aliases = {}
        for internal_id in internal_ids:
            row = conn.execute(
                f'SELECT alias FROM "{self.table}" WHERE internal_id = ?',
                (internal_id,),
            ).fetchone()
            if row is None:
                cursor = conn.execute(
                    f'INSERT INTO "{self.table}" (internal_id) VALUES (?)',
                    (internal_id,),
                )
                aliases[internal_id] = str(cursor.lastrowid)
            else:
                aliases[internal_id] = str(row[0])
        return aliases

    def get_or_create_alias(self, internal_id: str) -> str:
        """Return the alias of ``internal_id``, assigning a new one if needed."""
        conn = self._connect()
        try:
            with conn:
                aliases = self._aliases(conn, [internal_id])
        except sqlite3.Error as e:
            raise MappingError(f"Cannot create alias for {internal_id}: {e}") from e
        finally:
            conn.close()
        return aliases[internal_id]

    def get_or_create_aliases(self, internal_ids: Iterable[str]) -> list[str]:
        """Alias several identifiers in one transaction, preserving order."""
        internal_ids = list(internal_ids)
        conn = self._connect()
        try:
            with conn:
                aliases = self._aliases(conn, internal_ids)
        except sqlite3.Error as e:
            raise MappingError(f"Cannot create aliases: {e}") from e
        finally:
            conn.close()
        return [aliases[internal_id] for internal_id in internal_ids]

    def get_id(self, alias: str) -> str:
        """Resolve an alias back to the internal identifier.

        Raises:
            MappingError: If the alias was never assigned in this scope
        """
        conn = self._connect()
        try:
            row = conn.execute(
                f'SELECT internal_id FROM "{self.table}" WHERE alias = ?',
                (str(alias).strip(),),
            ).fetchone()
        except sqlite3.Error as e:
            raise MappingError(f"Cannot resolve alias {alias}: {e}") from e
        finally:
            conn.close()
        if row is None:
            raise UnknownAliasError(f"Unknown alias {alias} in {self.account}/{self.folder}")
        return row[0]

    def get_ids(self, aliases: Iterable[str]) -> list[str]:
        return [self.get_id(alias) for alias in aliases]


class DummyIdMapper:
    """Identity mapping for callers that don't need stable aliases."""

    def get_or_create_alias(self, internal_id: str) -> str:
        return internal_id

    def get_or_create_aliases(self, internal_ids: Iterable[str]) -> list[str]:
        return list(internal_ids)

    def get_id(self, alias: str) -> str:
        return alias

    def get_ids(self, aliases: Iterable[str]) -> list[str]:
        return list(aliases)
