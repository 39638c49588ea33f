"""Two-way synchronization between a local Maildir replica and a backend.

- patch: hunks and the four-way diffs producing them
- cache: SQLite record of both sides at the end of the last sync
- engine: applies the patches and reports per-hunk outcomes
"""

from mailbridge.backends.maildir import DELIMITER, MaildirBackend
from mailbridge.config import Config, MaildirConfig
from mailbridge.errors import ConfigError

from .cache import SyncCache
from .engine import HunkResult, SyncEngine, SyncEvent, SyncEventKind, SyncReport
from .patch import EnvelopeHunk, FolderHunk, FolderStrategy, HunkKind, Side

__all__ = [
    "EnvelopeHunk",
    "FolderHunk",
    "FolderStrategy",
    "HunkKind",
    "HunkResult",
    "Side",
    "SyncCache",
    "SyncEngine",
    "SyncEvent",
    "SyncEventKind",
    "SyncReport",
    "replica_backend",
]


def replica_backend(config: Config, delimiter: str = DELIMITER) -> MaildirBackend:
    """Build the local Maildir replica, creating its root if needed.

    Message ids on the replica are plain Maildir keys. ``delimiter`` should
    be the remote's hierarchy delimiter so folder names compare equal on
    both sides.

    Raises:
        ConfigError: If there is no [sync] section
    """
    if config.sync is None:
        raise ConfigError("Sync requested but not configured.\nSet dir in the [sync] section.")
    return MaildirBackend(
        config.account,
        MaildirConfig(root_dir=config.sync.dir),
        list_aliases=False,
        create=True,
        delimiter=delimiter,
    )
