"""Message flags shared by every backend.

A message carries a set of standard flags plus any number of custom ones.
Each backend has its own encoding: IMAP system flags (``\\Seen``), Maildir
info characters (``S``) and Notmuch tags (``unread``). The conversions live
here so the backends only deal with ``Flags`` values.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


class Flag(str, Enum):
    """Standard message flags."""
    SEEN = "seen"
    ANSWERED = "answered"
    FLAGGED = "flagged"
    DELETED = "deleted"
    DRAFT = "draft"
    RECENT = "recent"

    @property
    def imap_token(self) -> str:
        return "\\" + self.value.capitalize()


@dataclass(frozen=True, order=True)
class CustomFlag:
    """A flag outside the standard set, e.g. an IMAP keyword or a Notmuch tag."""
    name: str

    def __str__(self) -> str:
        return self.name


FlagLike = Flag | CustomFlag

_ALIASES = {
    "seen": Flag.SEEN,
    "answered": Flag.ANSWERED,
    "replied": Flag.ANSWERED,
    "flagged": Flag.FLAGGED,
    "deleted": Flag.DELETED,
    "trashed": Flag.DELETED,
    "draft": Flag.DRAFT,
    "recent": Flag.RECENT,
}

_IMAP_TOKENS = {flag.imap_token.lower(): flag for flag in Flag}

# Maildir info characters, see https://cr.yp.to/proto/maildir.html
_MAILDIR_CHARS = {
    "R": Flag.ANSWERED,
    "S": Flag.SEEN,
    "T": Flag.DELETED,
    "D": Flag.DRAFT,
    "F": Flag.FLAGGED,
}
PASSED = CustomFlag("Passed")
MAILDIR_FLAGS = frozenset([*_MAILDIR_CHARS.values(), PASSED])


def parse_flag(token: str) -> FlagLike:
    """Parse a user supplied flag name (``seen``, ``replied``, ``$Forwarded``...)."""
    return _ALIASES.get(token.strip().lower(), CustomFlag(token.strip()))


class Flags:
    """Immutable, deduplicated set of flags.

    Order is never significant: equality is set equality and every encoder
    sorts its output.
    """

    __slots__ = ("_flags",)

    def __init__(self, flags: Iterable[FlagLike] = ()):
        self._flags = frozenset(flags)

    @classmethod
    def parse(cls, value: str | Iterable[str]) -> "Flags":
        """Build flags from a space separated string or a list of names."""
        tokens = value.split() if isinstance(value, str) else value
        return cls(parse_flag(token) for token in tokens if token.strip())

    @classmethod
    def from_imap(cls, tokens: Iterable[bytes | str]) -> "Flags":
        """Build flags from an IMAP FLAGS response."""
        flags: list[FlagLike] = []
        for token in tokens:
            if isinstance(token, bytes):
                token = token.decode("utf-8", errors="replace")
            flag = _IMAP_TOKENS.get(token.lower())
            flags.append(flag if flag is not None else CustomFlag(token))
        return cls(flags)

    @classmethod
    def from_maildir(cls, chars: str) -> "Flags":
        """Build flags from the characters after ``:2,`` in a Maildir filename."""
        flags: list[FlagLike] = []
        for char in chars:
            if char in _MAILDIR_CHARS:
                flags.append(_MAILDIR_CHARS[char])
            elif char == "P":
                flags.append(PASSED)
            elif char.isalpha():
                flags.append(CustomFlag(char))
        return cls(flags)

    def __contains__(self, flag: object) -> bool:
        return flag in self._flags

    def contains(self, flag: FlagLike) -> bool:
        return flag in self._flags

    def __iter__(self):
        return iter(self._sorted())

    def __len__(self) -> int:
        return len(self._flags)

    def __bool__(self) -> bool:
        return bool(self._flags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Flags):
            return self._flags == other._flags
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._flags)

    def __or__(self, other: "Flags") -> "Flags":
        return self.union(other)

    def __sub__(self, other: "Flags") -> "Flags":
        return self.difference(other)

    def __and__(self, other: "Flags") -> "Flags":
        return Flags(self._flags & other._flags)

    def union(self, other: Iterable[FlagLike]) -> "Flags":
        return Flags(self._flags | frozenset(other))

    def difference(self, other: Iterable[FlagLike]) -> "Flags":
        return Flags(self._flags - frozenset(other))

    def _sorted(self) -> list[FlagLike]:
        order = list(Flag)
        standard = sorted(
            (f for f in self._flags if isinstance(f, Flag)), key=order.index
        )
        custom = sorted(f for f in self._flags if isinstance(f, CustomFlag))
        return [*standard, *custom]

    def to_imap(self) -> list[str]:
        """Tokens for STORE/APPEND: ``\\Seen`` for standard flags, raw custom names.

        ``\\Recent`` is server managed and never sent.
        """
        return [
            f.imap_token if isinstance(f, Flag) else f.name
            for f in self._sorted()
            if f is not Flag.RECENT
        ]

    def to_imap_string(self) -> str:
        return " ".join(self.to_imap())

    def to_maildir(self) -> str:
        """Maildir info characters, in ASCII order as the convention requires."""
        chars = {char for char, flag in _MAILDIR_CHARS.items() if flag in self._flags}
        if PASSED in self._flags:
            chars.add("P")
        return "".join(sorted(chars))

    def to_symbols(self) -> str:
        """Three column display string: unseen, answered, flagged."""
        return (
            (" " if Flag.SEEN in self._flags else "✷")
            + ("↵" if Flag.ANSWERED in self._flags else " ")
            + ("⚑" if Flag.FLAGGED in self._flags else " ")
        )

    def __str__(self) -> str:
        return " ".join(f.value if isinstance(f, Flag) else f.name for f in self._sorted())

    def __repr__(self) -> str:
        return f"Flags({str(self)!r})"
