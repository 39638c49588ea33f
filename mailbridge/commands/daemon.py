"""Long-running IMAP IDLE commands - notify and watch."""

from __future__ import annotations

import logging

from ..backends import ImapBackend, select_backend
from ..config import Config

logger = logging.getLogger("mailbridge")

DEFAULT_KEEPALIVE = 500


def _imap_backend(config: Config) -> ImapBackend:
    """IDLE needs IMAP whatever the account's default backend is."""
    return select_backend(config, "imap")


def run_notify(config: Config, folder: str | None = None,
               keepalive: int = DEFAULT_KEEPALIVE) -> None:
    """Run the account's notify command for every new message until interrupted.

    Args:
        config: Application configuration
        folder: Folder to watch, the inbox by default
        keepalive: Seconds to stay in IDLE before re-issuing it
    """
    backend = _imap_backend(config)
    folder = folder or config.account.inbox_folder
    try:
        backend.notify(keepalive, folder)
    except KeyboardInterrupt:
        logger.info("Shutting down notify loop")
    finally:
        backend.disconnect()


def run_watch(config: Config, folder: str | None = None,
              keepalive: int = DEFAULT_KEEPALIVE) -> None:
    """Run the account's watch commands on every change until interrupted."""
    if not config.account.watch_cmds:
        logger.warning("No watch_cmds configured, changes will only be logged")
    backend = _imap_backend(config)
    folder = folder or config.account.inbox_folder
    try:
        backend.watch(keepalive, folder)
    except KeyboardInterrupt:
        logger.info("Shutting down watch loop")
    finally:
        backend.disconnect()
