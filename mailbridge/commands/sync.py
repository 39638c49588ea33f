"""Sync command - mirror the configured backend into the local replica."""

from __future__ import annotations

import logging

from ..backends import Backend, select_backend
from ..backends.maildir import DELIMITER
from ..config import Config
from ..errors import ConfigError
from ..sync import (
    FolderStrategy,
    SyncCache,
    SyncEngine,
    SyncEvent,
    SyncEventKind,
    SyncReport,
    replica_backend,
)

logger = logging.getLogger("mailbridge")


def folder_strategy(include: list[str] | None, exclude: list[str] | None) -> FolderStrategy:
    if include and exclude:
        raise ConfigError("Use either --include or --exclude, not both")
    if include:
        return FolderStrategy.include(include)
    if exclude:
        return FolderStrategy.exclude(exclude)
    return FolderStrategy()


def remote_delimiter(remote: Backend) -> str:
    """Hierarchy delimiter of the remote, ``/`` when it announces none."""
    for folder in remote.list_folders():
        if folder.delimiter:
            return folder.delimiter
    return DELIMITER


def _log_progress(event: SyncEvent) -> None:
    if event.kind is SyncEventKind.START_ENVELOPE_SYNC:
        logger.info(f"Syncing folder {event.index}/{event.total}: {event.folder}")


def print_report(report: SyncReport) -> None:
    """Print what a sync did, or would do on a dry run."""
    results = list(report.folders_patch)
    for folder_results in report.envelopes_patch.values():
        results += folder_results

    if report.dry_run:
        for result in results:
            print(f"[DRY RUN] Would {result.hunk}")
        print(f"\nEstimated patch length: {report.hunk_count}")
        return

    for result in results:
        if not result.ok:
            print(f"FAILED: {result.error}")
    if report.folders_cache_error:
        print(f"Folder cache not saved: {report.folders_cache_error}")
    if report.envelopes_cache_error:
        print(f"Envelope cache not saved: {report.envelopes_cache_error}")
    for folder, error in report.envelope_view_errors.items():
        print(f"Folder {folder} skipped: {error}")
    for target, error in report.expunge_errors.items():
        print(f"Expunge of {target} failed: {error}")
    print(f"\nApplied {report.hunk_count - len(report.failures)} of {report.hunk_count} hunks")


def run_sync(
    config: Config,
    dry_run: bool = False,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
) -> SyncReport:
    """Synchronize the configured backend with the local replica.

    Args:
        config: Application configuration
        dry_run: Only show what would change
        include: Only sync these folders
        exclude: Sync every folder but these

    Returns:
        The sync report, already printed
    """
    if config.sync is None:
        raise ConfigError("Sync requested but not configured.\nSet dir in the [sync] section.")
    strategy = folder_strategy(include, exclude)
    remote = select_backend(config)
    try:
        local = replica_backend(config, remote_delimiter(remote))
        with SyncCache(config.sync.cache_path) as cache:
            engine = SyncEngine(
                config.account.name,
                local,
                remote,
                cache,
                strategy=strategy,
                dry_run=dry_run,
                on_progress=_log_progress,
            )
            report = engine.sync()
    finally:
        remote.disconnect()

    print_report(report)
    return report
