"""Synchronization of a local replica with a remote backend.

The engine never aborts because one change failed: each hunk is attempted
on its own and its outcome recorded in the SyncReport. Only failing to read
the folder views stops a sync; a folder whose envelopes cannot be read is
recorded and skipped.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from mailbridge.backends.base import Backend
from mailbridge.email import Envelope
from mailbridge.errors import MailBridgeError, SyncHunkError, UnsupportedOperationError
from mailbridge.flags import Flag

from .cache import SyncCache
from .patch import (
    EnvelopeHunk,
    FolderHunk,
    FolderStrategy,
    HunkKind,
    Side,
    build_envelope_patch,
    build_folder_patch,
    with_unsupported_flags,
    without_recent,
)

logger = logging.getLogger("mailbridge")


class SyncEventKind(str, Enum):
    GET_LOCAL_CACHED_FOLDERS = "getting local cached folders"
    GET_LOCAL_FOLDERS = "getting local folders"
    GET_REMOTE_CACHED_FOLDERS = "getting remote cached folders"
    GET_REMOTE_FOLDERS = "getting remote folders"
    BUILD_FOLDER_PATCH = "building folders patch"
    PROCESS_FOLDER_HUNK = "processing folder hunk"
    APPLY_FOLDER_CACHE = "saving folders cache"
    START_ENVELOPE_SYNC = "starting envelope sync for folder"
    GET_LOCAL_CACHED_ENVELOPES = "getting local cached envelopes"
    GET_LOCAL_ENVELOPES = "getting local envelopes"
    GET_REMOTE_CACHED_ENVELOPES = "getting remote cached envelopes"
    GET_REMOTE_ENVELOPES = "getting remote envelopes"
    BUILD_ENVELOPE_PATCH = "building envelopes patch"
    PROCESS_ENVELOPE_HUNK = "processing envelope hunk"
    APPLY_ENVELOPE_CACHE = "saving envelopes cache"
    EXPUNGE_FOLDERS = "expunging folders"


@dataclass(frozen=True)
class SyncEvent:
    kind: SyncEventKind
    folder: str | None = None
    index: int = 0
    total: int = 0

    def __str__(self) -> str:
        text = self.kind.value
        if self.total:
            text += f" {self.index} of {self.total}"
        if self.folder and self.kind is not SyncEventKind.START_ENVELOPE_SYNC:
            text += f" ({self.folder})"
        elif self.folder:
            text += f": {self.folder}"
        return text


@dataclass
class HunkResult:
    hunk: FolderHunk | EnvelopeHunk
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    dry_run: bool = False
    folders_patch: list[HunkResult] = field(default_factory=list)
    folders_cache_error: Exception | None = None
    envelopes_patch: dict[str, list[HunkResult]] = field(default_factory=dict)
    envelopes_cache_error: Exception | None = None
    envelope_view_errors: dict[str, Exception] = field(default_factory=dict)
    expunge_errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def hunk_count(self) -> int:
        return len(self.folders_patch) + sum(len(r) for r in self.envelopes_patch.values())

    @property
    def failures(self) -> list[HunkResult]:
        results = list(self.folders_patch)
        for folder_results in self.envelopes_patch.values():
            results += folder_results
        return [r for r in results if not r.ok]

    @property
    def ok(self) -> bool:
        return (
            not self.failures
            and self.folders_cache_error is None
            and self.envelopes_cache_error is None
            and not self.envelope_view_errors
            and not self.expunge_errors
        )


def _hunk_error(hunk, cause: Exception) -> SyncHunkError:
    error = SyncHunkError(f"{hunk}: {cause}")
    error.__cause__ = cause
    return error


class SyncEngine:
    """Bring a local backend in line with a remote one.

    Args:
        account: Account name, the cache namespace
        local: Local replica backend
        remote: Remote backend
        cache: Connected SyncCache
        strategy: Folders taking part (all by default)
        dry_run: Build the patches without applying anything
        on_progress: Called with a SyncEvent at every checkpoint
    """

    def __init__(
        self,
        account: str,
        local: Backend,
        remote: Backend,
        cache: SyncCache,
        strategy: FolderStrategy | None = None,
        dry_run: bool = False,
        on_progress: Callable[[SyncEvent], None] | None = None,
    ):
        self.account = account
        self.local = local
        self.remote = remote
        self.cache = cache
        self.strategy = strategy or FolderStrategy()
        self.dry_run = dry_run
        self.on_progress = on_progress

    def _emit(self, kind: SyncEventKind, folder: str | None = None,
              index: int = 0, total: int = 0) -> None:
        event = SyncEvent(kind, folder, index, total)
        logger.debug(f"Sync: {event}")
        if self.on_progress is not None:
            self.on_progress(event)

    def _backend(self, side: Side) -> Backend:
        return self.local if side is Side.LOCAL else self.remote

    def sync(self) -> SyncReport:
        report = SyncReport(dry_run=self.dry_run)

        self._emit(SyncEventKind.GET_LOCAL_CACHED_FOLDERS)
        local_cache = self.cache.list_folders(self.account, Side.LOCAL)
        self._emit(SyncEventKind.GET_LOCAL_FOLDERS)
        local = {f.name for f in self.local.list_folders() if f.selectable}
        self._emit(SyncEventKind.GET_REMOTE_CACHED_FOLDERS)
        remote_cache = self.cache.list_folders(self.account, Side.REMOTE)
        self._emit(SyncEventKind.GET_REMOTE_FOLDERS)
        remote = {f.name for f in self.remote.list_folders() if f.selectable}

        self._emit(SyncEventKind.BUILD_FOLDER_PATCH)
        folder_patch = build_folder_patch(
            local_cache, local, remote_cache, remote, self.strategy
        )
        logger.info(f"Folders patch has {len(folder_patch)} hunk(s)")

        report.folders_patch = self._apply(
            folder_patch, self._apply_folder_hunk, SyncEventKind.PROCESS_FOLDER_HUNK
        )
        if not self.dry_run:
            self._emit(SyncEventKind.APPLY_FOLDER_CACHE)
            report.folders_cache_error = self._persist(
                self.cache.apply_folder_hunks, report.folders_patch
            )

        failed_creates = {
            r.hunk.folder for r in report.folders_patch
            if not r.ok and r.hunk.kind is HunkKind.CREATE
        }
        folders = self._synced_folders(local_cache, local, remote_cache, remote, failed_creates)

        envelope_results: list[HunkResult] = []
        for index, folder in enumerate(folders, 1):
            self._emit(SyncEventKind.START_ENVELOPE_SYNC, folder, index, len(folders))
            try:
                views = self._envelope_views(folder, folder in local, folder in remote)
            except (MailBridgeError, OSError) as e:
                logger.error(f"Cannot read envelopes of {folder}, skipping it: {e}")
                report.envelope_view_errors[folder] = e
                continue
            results = self._sync_envelopes(folder, *views)
            report.envelopes_patch[folder] = results
            envelope_results += results

        if not self.dry_run:
            self._emit(SyncEventKind.APPLY_ENVELOPE_CACHE)
            report.envelopes_cache_error = self._persist(
                self.cache.apply_envelope_hunks, envelope_results
            )
            self._emit(SyncEventKind.EXPUNGE_FOLDERS)
            self._expunge([f for f in folders if f not in report.envelope_view_errors], report)

        logger.info(
            f"Sync {'dry run ' if self.dry_run else ''}done: {report.hunk_count} hunk(s), "
            f"{len(report.failures)} failure(s)"
        )
        return report

    def _synced_folders(self, local_cache, local, remote_cache, remote, failed_creates) -> list[str]:
        """Folders present on both sides once the folder patch is applied."""
        folders = []
        for name in sorted(local | remote):
            if not self.strategy.matches(name) or name in failed_creates:
                continue
            if name in local and name in remote:
                folders.append(name)
            elif name in local and name not in remote_cache:
                folders.append(name)
            elif name in remote and name not in local_cache:
                folders.append(name)
        return folders

    def _live_envelopes(self, side: Side, folder: str) -> dict[str, Envelope]:
        envelopes = {}
        for envelope in self._backend(side).list_envelopes(folder, 0, 0):
            if Flag.DELETED in envelope.flags:
                continue
            if not envelope.message_id:
                logger.warning(
                    f"Skipping {side.value} message {envelope.id} in {folder}: no Message-ID"
                )
                continue
            envelopes.setdefault(
                envelope.message_id,
                Envelope(
                    id=envelope.id,
                    flags=without_recent(envelope.flags),
                    subject=envelope.subject,
                    sender=envelope.sender,
                    date=envelope.date,
                    message_id=envelope.message_id,
                ),
            )
        return envelopes

    def _envelope_views(self, folder: str, local_exists: bool, remote_exists: bool):
        """The four envelope views of ``folder``; any backend error is raised."""
        self._emit(SyncEventKind.GET_LOCAL_CACHED_ENVELOPES, folder)
        local_cache = self.cache.list_envelopes(self.account, Side.LOCAL, folder)
        self._emit(SyncEventKind.GET_LOCAL_ENVELOPES, folder)
        local = self._live_envelopes(Side.LOCAL, folder) if local_exists else {}
        self._emit(SyncEventKind.GET_REMOTE_CACHED_ENVELOPES, folder)
        remote_cache = self.cache.list_envelopes(self.account, Side.REMOTE, folder)
        self._emit(SyncEventKind.GET_REMOTE_ENVELOPES, folder)
        remote = self._live_envelopes(Side.REMOTE, folder) if remote_exists else {}
        return (
            local_cache,
            with_unsupported_flags(local, remote, self.local.supports_flag),
            remote_cache,
            with_unsupported_flags(remote, local, self.remote.supports_flag),
        )

    def _sync_envelopes(self, folder: str, local_cache, local, remote_cache, remote) -> list[HunkResult]:
        self._emit(SyncEventKind.BUILD_ENVELOPE_PATCH, folder)
        patch = build_envelope_patch(folder, local_cache, local, remote_cache, remote)
        logger.info(f"Envelopes patch for {folder} has {len(patch)} hunk(s)")
        return self._apply(patch, self._apply_envelope_hunk, SyncEventKind.PROCESS_ENVELOPE_HUNK)

    def _apply(self, patch, apply_hunk, event: SyncEventKind) -> list[HunkResult]:
        """Attempt every hunk, recording failures instead of raising them."""
        results = []
        failed = []
        for index, hunk in enumerate(patch, 1):
            self._emit(event, hunk.folder, index, len(patch))
            if self.dry_run:
                logger.debug(f"Dry run, not applying: {hunk}")
                results.append(HunkResult(hunk))
                continue
            error = None
            if hunk.requires is not None and any(hunk.requires is f for f in failed):
                error = SyncHunkError(f"{hunk}: skipped, {hunk.requires} failed")
            elif not hunk.is_cache:
                try:
                    apply_hunk(hunk)
                except (MailBridgeError, OSError) as e:
                    error = _hunk_error(hunk, e)
            if error is not None:
                logger.warning(f"Hunk failed: {error}")
                failed.append(hunk)
            results.append(HunkResult(hunk, error))
        return results

    def _apply_folder_hunk(self, hunk: FolderHunk) -> None:
        backend = self._backend(hunk.side)
        if hunk.kind is HunkKind.CREATE:
            backend.add_folder(hunk.folder)
        elif hunk.kind is HunkKind.DELETE:
            backend.delete_folder(hunk.folder)

    def _apply_envelope_hunk(self, hunk: EnvelopeHunk) -> None:
        target = self._backend(hunk.side)
        if hunk.kind is HunkKind.COPY:
            source = self._backend(hunk.side.other)
            raw = source.get_message(hunk.folder, hunk.id).raw
            target.add_message(hunk.folder, raw, hunk.flags)
        elif hunk.kind is HunkKind.SET_FLAGS:
            target.set_flags(hunk.folder, hunk.id, hunk.flags)
        elif hunk.kind is HunkKind.DELETE:
            target.delete_message(hunk.folder, hunk.id)

    def _persist(self, write, results: list[HunkResult]) -> Exception | None:
        hunks = [r.hunk for r in results if r.ok and r.hunk.is_cache]
        try:
            write(self.account, hunks)
        except (sqlite3.Error, MailBridgeError) as e:
            logger.error(f"Cannot save sync cache: {e}")
            return e
        return None

    def _expunge(self, folders: list[str], report: SyncReport) -> None:
        for folder in folders:
            for side in (Side.LOCAL, Side.REMOTE):
                try:
                    self._backend(side).expunge(folder)
                except UnsupportedOperationError:
                    logger.debug(f"{side.value} backend cannot expunge {folder}")
                except (MailBridgeError, OSError) as e:
                    logger.warning(f"Cannot expunge {side.value} {folder}: {e}")
                    report.expunge_errors[f"{side.value}:{folder}"] = e
