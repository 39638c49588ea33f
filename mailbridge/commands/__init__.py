"""Command implementations for mailbridge CLI."""

from .daemon import run_notify, run_watch
from .mail_ops import (
    copy_cmd,
    delete_cmd,
    flags_cmd,
    list_envelopes_cmd,
    list_folders_cmd,
    move_cmd,
    read_cmd,
    search_cmd,
)
from .sync import print_report, run_sync
from .utils import open_backend, print_envelopes

__all__ = [
    # daemon
    "run_notify",
    "run_watch",
    # mail_ops
    "copy_cmd",
    "delete_cmd",
    "flags_cmd",
    "list_envelopes_cmd",
    "list_folders_cmd",
    "move_cmd",
    "read_cmd",
    "search_cmd",
    # sync
    "print_report",
    "run_sync",
    # utils
    "open_backend",
    "print_envelopes",
]
