"""Hunks and the four-way diffs that produce them.

A sync compares four views of the same thing: what the cache remembers of
the local side, the local side itself, what the cache remembers of the
remote side, and the remote side itself. Each name (folder name or
Message-ID) present in any view gets a 4-bit presence key
``(local cache, local, remote cache, remote)`` which selects the hunks
needed to converge:

    bits  folders                          envelopes
    0001  create local, cache both         copy to local, cache both
    0010  uncache remote                   uncache remote
    0011  create local, cache local        copy to local, cache local
    0100  create remote, cache both        copy to remote, cache both
    0110  delete local, uncache remote     delete local, uncache remote
    1000  uncache local                    uncache local
    1001  delete remote, uncache local     delete remote, uncache local
    1010  uncache both                     uncache both
    1011  delete remote, uncache both      delete remote, uncache both
    1100  create remote, cache remote      copy to remote, cache remote
    1110  delete local, uncache both       delete local, uncache both
    x1x1  cache what is missing            merge flags, cache the result

Cache hunks depending on a mutation carry it in ``requires`` and must not
be persisted when that mutation fails.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum

from mailbridge.email import Envelope
from mailbridge.flags import Flag, FlagLike, Flags


class Side(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"

    @property
    def other(self) -> "Side":
        return Side.REMOTE if self is Side.LOCAL else Side.LOCAL


class HunkKind(str, Enum):
    CREATE = "create"
    COPY = "copy"
    SET_FLAGS = "set-flags"
    DELETE = "delete"
    CACHE = "cache"
    UNCACHE = "uncache"


CACHE_KINDS = (HunkKind.CACHE, HunkKind.UNCACHE)


class StrategyKind(str, Enum):
    ALL = "all"
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class FolderStrategy:
    """Which folders take part in a sync."""
    kind: StrategyKind = StrategyKind.ALL
    folders: frozenset[str] = frozenset()

    @classmethod
    def include(cls, folders) -> "FolderStrategy":
        return cls(StrategyKind.INCLUDE, frozenset(folders))

    @classmethod
    def exclude(cls, folders) -> "FolderStrategy":
        return cls(StrategyKind.EXCLUDE, frozenset(folders))

    def matches(self, folder: str) -> bool:
        if self.kind is StrategyKind.INCLUDE:
            return folder in self.folders
        if self.kind is StrategyKind.EXCLUDE:
            return folder not in self.folders
        return True


@dataclass(frozen=True)
class FolderHunk:
    kind: HunkKind
    folder: str
    side: Side
    requires: "FolderHunk | None" = field(default=None, compare=False, repr=False)

    @property
    def is_cache(self) -> bool:
        return self.kind in CACHE_KINDS

    def __str__(self) -> str:
        return f"{self.kind.value} {self.side.value} folder {self.folder}"


@dataclass(frozen=True)
class EnvelopeHunk:
    """One envelope change on ``side``.

    ``id`` is the message id on the side being read (COPY) or changed
    (SET_FLAGS, DELETE). CACHE hunks carry the envelope to remember.
    """
    kind: HunkKind
    folder: str
    message_id: str
    side: Side
    id: str | None = None
    flags: Flags = Flags()
    envelope: Envelope | None = field(default=None, compare=False, repr=False)
    requires: "EnvelopeHunk | None" = field(default=None, compare=False, repr=False)

    @property
    def is_cache(self) -> bool:
        return self.kind in CACHE_KINDS

    def __str__(self) -> str:
        if self.kind is HunkKind.COPY:
            return (
                f"copy <{self.message_id}> from {self.side.other.value} "
                f"to {self.side.value} {self.folder}"
            )
        if self.kind is HunkKind.SET_FLAGS:
            return (
                f"set flags [{self.flags}] of <{self.message_id}> "
                f"in {self.side.value} {self.folder}"
            )
        return f"{self.kind.value} <{self.message_id}> in {self.side.value} {self.folder}"


def presence(name: str, *views) -> tuple[bool, bool, bool, bool]:
    return tuple(name in view for view in views)


def build_folder_patch(
    local_cache: set[str],
    local: set[str],
    remote_cache: set[str],
    remote: set[str],
    strategy: FolderStrategy | None = None,
) -> list[FolderHunk]:
    strategy = strategy or FolderStrategy()
    names = sorted(
        name
        for name in local_cache | local | remote_cache | remote
        if strategy.matches(name)
    )
    patch: list[FolderHunk] = []
    for name in names:
        patch += _folder_hunks(name, presence(name, local_cache, local, remote_cache, remote))
    return patch


def _folder_hunks(name: str, bits: tuple[bool, bool, bool, bool]) -> list[FolderHunk]:
    def hunk(kind, side, requires=None):
        return FolderHunk(kind, name, side, requires)

    local_cached, local_exists, remote_cached, remote_exists = bits

    cached_sides = ((Side.LOCAL, local_cached), (Side.REMOTE, remote_cached))
    if local_exists and remote_exists:
        return [hunk(HunkKind.CACHE, side) for side, cached in cached_sides if not cached]

    if not local_exists and not remote_exists:
        return [hunk(HunkKind.UNCACHE, side) for side, cached in cached_sides if cached]

    # Exactly one side exists: it is either new there, or was deleted on the other.
    side = Side.LOCAL if local_exists else Side.REMOTE
    side_cached = local_cached if local_exists else remote_cached
    other_cached = remote_cached if local_exists else local_cached

    if other_cached:
        delete = hunk(HunkKind.DELETE, side)
        hunks = [delete]
        if side_cached:
            hunks.append(hunk(HunkKind.UNCACHE, side, delete))
        hunks.append(hunk(HunkKind.UNCACHE, side.other, delete))
        return hunks

    create = hunk(HunkKind.CREATE, side.other)
    hunks = [create]
    if not side_cached:
        hunks.append(hunk(HunkKind.CACHE, side, create))
    hunks.append(hunk(HunkKind.CACHE, side.other, create))
    return _ordered(hunks)


def _ordered(hunks: list[FolderHunk]) -> list[FolderHunk]:
    order = {Side.LOCAL: 0, Side.REMOTE: 1}
    head = [h for h in hunks if not h.is_cache]
    tail = sorted((h for h in hunks if h.is_cache), key=lambda h: order[h.side])
    return head + tail


def merge_flags(
    local: Flags,
    remote: Flags,
    local_base: Flags | None,
    remote_base: Flags | None,
) -> Flags:
    """Three-way merge of the flags of one message.

    A flag changed on one side since that side was last cached wins; when
    both changed, or nothing is cached, the union wins.
    """
    merged = []
    for flag in local | remote:
        in_local = flag in local
        in_remote = flag in remote
        if in_local == in_remote:
            merged.append(flag)
            continue
        local_changed = local_base is not None and (flag in local_base) != in_local
        remote_changed = remote_base is not None and (flag in remote_base) != in_remote
        if local_changed and not remote_changed:
            keep = in_local
        elif remote_changed and not local_changed:
            keep = in_remote
        else:
            keep = True
        if keep:
            merged.append(flag)
    return Flags(merged)


def _id_order(hunk: EnvelopeHunk):
    id = hunk.id or ""
    return (hunk.side.value, (1, int(id)) if id.isdigit() else (0, id))


def build_envelope_patch(
    folder: str,
    local_cache: dict[str, Envelope],
    local: dict[str, Envelope],
    remote_cache: dict[str, Envelope],
    remote: dict[str, Envelope],
) -> list[EnvelopeHunk]:
    """Diff the four envelope views of one folder, keyed by Message-ID.

    Deletions come last, highest id first, so that expunging a message
    never shifts the sequence number of one still to be handled.
    """
    changes: list[EnvelopeHunk] = []
    deletions: list[EnvelopeHunk] = []
    names = sorted(local_cache.keys() | local.keys() | remote_cache.keys() | remote.keys())
    views = {Side.LOCAL: local, Side.REMOTE: remote}
    caches = {Side.LOCAL: local_cache, Side.REMOTE: remote_cache}

    for message_id in names:
        local_cached, local_exists, remote_cached, remote_exists = presence(
            message_id, local_cache, local, remote_cache, remote
        )

        def hunk(kind, side, **kwargs):
            return EnvelopeHunk(kind, folder, message_id, side, **kwargs)

        if local_exists and remote_exists:
            changes += _flag_hunks(folder, message_id, views, caches)
            continue

        if not local_exists and not remote_exists:
            for side, cached in ((Side.LOCAL, local_cached), (Side.REMOTE, remote_cached)):
                if cached:
                    changes.append(hunk(HunkKind.UNCACHE, side))
            continue

        side = Side.LOCAL if local_exists else Side.REMOTE
        side_cached = local_cached if local_exists else remote_cached
        other_cached = remote_cached if local_exists else local_cached
        envelope = views[side][message_id]

        if other_cached:
            delete = hunk(HunkKind.DELETE, side, id=envelope.id)
            deletions.append(delete)
            if side_cached:
                deletions.append(hunk(HunkKind.UNCACHE, side, requires=delete))
            deletions.append(hunk(HunkKind.UNCACHE, side.other, requires=delete))
            continue

        copy = hunk(HunkKind.COPY, side.other, id=envelope.id, flags=envelope.flags)
        changes.append(copy)
        for cache_side in (Side.LOCAL, Side.REMOTE):
            if cache_side is side and side_cached:
                continue
            changes.append(
                hunk(HunkKind.CACHE, cache_side, flags=envelope.flags,
                     envelope=envelope, requires=copy)
            )

    return changes + _ordered_deletions(deletions)


def _ordered_deletions(hunks: list[EnvelopeHunk]) -> list[EnvelopeHunk]:
    deletes = sorted(
        (h for h in hunks if h.kind is HunkKind.DELETE), key=_id_order, reverse=True
    )
    ordered = []
    for delete in deletes:
        ordered.append(delete)
        ordered += [h for h in hunks if h.requires is delete]
    return ordered


def _flag_hunks(folder, message_id, views, caches) -> list[EnvelopeHunk]:
    local = views[Side.LOCAL][message_id]
    remote = views[Side.REMOTE][message_id]
    local_base = caches[Side.LOCAL].get(message_id)
    remote_base = caches[Side.REMOTE].get(message_id)
    merged = merge_flags(
        local.flags,
        remote.flags,
        local_base.flags if local_base else None,
        remote_base.flags if remote_base else None,
    )

    hunks = []
    for side, envelope, base in (
        (Side.LOCAL, local, local_base),
        (Side.REMOTE, remote, remote_base),
    ):
        set_flags = None
        if envelope.flags != merged:
            set_flags = EnvelopeHunk(
                HunkKind.SET_FLAGS, folder, message_id, side, id=envelope.id, flags=merged
            )
            hunks.append(set_flags)
        if base is None or base.flags != merged:
            hunks.append(
                EnvelopeHunk(
                    HunkKind.CACHE, folder, message_id, side, flags=merged,
                    envelope=envelope, requires=set_flags,
                )
            )
    return hunks


def without_recent(flags: Flags) -> Flags:
    return flags.difference([Flag.RECENT])


def with_unsupported_flags(
    view: dict[str, Envelope],
    other: dict[str, Envelope],
    supports: Callable[[FlagLike], bool],
) -> dict[str, Envelope]:
    """Give each envelope of ``view`` the flags of ``other`` its backend cannot store.

    A side that cannot hold a flag has no say about it: it takes the other
    side's value, so the flag is neither copied back nor seen as removed.
    """
    result = {}
    for message_id, envelope in view.items():
        counterpart = other.get(message_id)
        extra = [f for f in counterpart.flags if not supports(f)] if counterpart else []
        if extra:
            envelope = replace(envelope, flags=envelope.flags.union(extra))
        result[message_id] = envelope
    return result
