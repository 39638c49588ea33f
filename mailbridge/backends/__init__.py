"""Mail backends.

This package provides one interface over three kinds of mail store:
- ImapBackend: a remote IMAP server
- MaildirBackend: a local Maildir++ tree
- NotmuchBackend: a Maildir tree indexed by notmuch, with query folders

Use select_backend() to build the backend the configuration asks for.
"""

from mailbridge.config import Config
from mailbridge.errors import ConfigError

from .base import Backend
from .imap import ImapBackend, ImapSession, SessionState
from .maildir import MaildirBackend
from .notmuch import NotmuchBackend, NotmuchDatabase

__all__ = [
    "Backend",
    "ImapBackend",
    "ImapSession",
    "MaildirBackend",
    "NotmuchBackend",
    "NotmuchDatabase",
    "SessionState",
    "select_backend",
]


def select_backend(config: Config, backend_type: str | None = None) -> Backend:
    """Build a backend from the configuration.

    Args:
        config: Application configuration
        backend_type: 'imap', 'maildir' or 'notmuch'; defaults to the
            account's configured backend

    Returns:
        A Backend instance (IMAP sessions connect lazily on first use)

    Raises:
        ConfigError: If the requested backend has no configuration section
    """
    backend_type = backend_type or config.account.backend

    if backend_type == "imap":
        if config.imap is None:
            raise ConfigError(
                "IMAP backend requested but not configured.\n"
                "Add IMAP server settings to the [imap] section."
            )
        return ImapBackend(config.account, config.imap)

    if backend_type == "maildir":
        if config.maildir is None:
            raise ConfigError(
                "Maildir backend requested but not configured.\n"
                "Set root_dir in the [maildir] section."
            )
        return MaildirBackend(config.account, config.maildir, config.get_id_mapper_path())

    if backend_type == "notmuch":
        if config.notmuch is None:
            raise ConfigError(
                "Notmuch backend requested but not configured.\n"
                "Set database_path in the [notmuch] section."
            )
        return NotmuchBackend(config.account, config.notmuch, config.get_id_mapper_path())

    raise ConfigError(f"Unknown backend {backend_type!r}")
