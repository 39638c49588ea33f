"""Base protocol for mail backends."""

from collections.abc import Sequence
from typing import Protocol, TypeVar, runtime_checkable

from mailbridge.email import Envelope, Folder, Message
from mailbridge.errors import OutOfBoundsError
from mailbridge.flags import FlagLike, Flags

T = TypeVar("T")

SORT_FIELDS = ("arrival", "cc", "date", "from", "size", "subject", "to")


@runtime_checkable
class Backend(Protocol):
    """Capabilities shared by the IMAP, Maildir and Notmuch backends.

    Message ids are strings: IMAP sequence numbers or Maildir/Notmuch aliases.
    """

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        ...

    def supports_flag(self, flag: FlagLike) -> bool:
        """Whether messages in this backend can carry ``flag``."""
        ...

    def add_folder(self, name: str) -> None:
        ...

    def delete_folder(self, name: str) -> None:
        ...

    def list_folders(self) -> list[Folder]:
        ...

    def list_envelopes(self, folder: str, page_size: int, page: int) -> list[Envelope]:
        """Return one page of envelopes, newest first.

        Args:
            folder: Folder name or alias
            page_size: Envelopes per page, 0 for everything
            page: 0-based page number
        """
        ...

    def search_envelopes(
        self,
        folder: str,
        query: str,
        sort: str,
        page_size: int,
        page: int,
    ) -> list[Envelope]:
        ...

    def add_message(self, folder: str, raw: bytes, flags: Flags) -> str:
        """Store raw bytes with the given flags and return the new message id."""
        ...

    def get_message(self, folder: str, id: str) -> Message:
        ...

    def copy_message(self, src: str, dst: str, id: str) -> str:
        ...

    def move_message(self, src: str, dst: str, id: str) -> str:
        ...

    def delete_message(self, folder: str, id: str) -> None:
        ...

    def add_flags(self, folder: str, id: str, flags: Flags) -> None:
        ...

    def set_flags(self, folder: str, id: str, flags: Flags) -> None:
        ...

    def remove_flags(self, folder: str, id: str, flags: Flags) -> None:
        ...

    def expunge(self, folder: str) -> None:
        """Permanently remove messages flagged Deleted."""
        ...

    def disconnect(self) -> None:
        ...


def paginate(items: Sequence[T], page_size: int, page: int) -> list[T]:
    """Slice an already materialized, already sorted result.

    Raises:
        OutOfBoundsError: If the page starts beyond the end of ``items``
    """
    if page_size == 0:
        return list(items)
    page_begin = page * page_size
    if page_begin > len(items):
        raise OutOfBoundsError(page_begin, len(items))
    return list(items[page_begin:page_begin + page_size])


def parse_sort_criteria(sort: str | None) -> list[tuple[str, bool]]:
    """Parse ``"date:desc subject"`` into ``[("date", True), ("subject", False)]``.

    The boolean is True for descending order.

    Raises:
        ValueError: On unknown fields or orders
    """
    criteria = []
    for term in (sort or "").split():
        name, _, order = term.lower().partition(":")
        if name not in SORT_FIELDS:
            raise ValueError(f"Unknown sort criterion {name!r}, expected one of {SORT_FIELDS}")
        if order not in ("", "asc", "desc"):
            raise ValueError(f"Unknown sort order {order!r}, expected asc or desc")
        criteria.append((name, order == "desc"))
    return criteria
