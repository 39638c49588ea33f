"""Helpers shared by the CLI commands."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator

from ..backends import Backend, select_backend
from ..config import Config
from ..email import Envelope

logger = logging.getLogger("mailbridge")


@contextlib.contextmanager
def open_backend(config: Config, backend_type: str | None = None) -> Iterator[Backend]:
    """Yield the configured backend and disconnect it afterwards."""
    backend = select_backend(config, backend_type)
    try:
        yield backend
    finally:
        backend.disconnect()


def print_envelopes(envelopes: list[Envelope]) -> None:
    """Print a page of envelopes as a table."""
    if not envelopes:
        print("No envelopes found.")
        return

    print(f"{'ID':<8} {'Flags':<4} {'From':<30} {'Subject':<50} {'Date':<16}")
    print("-" * 112)

    for envelope in envelopes:
        sender = (envelope.sender or "")[:28]
        subject = (envelope.subject or "")[:48]
        date = envelope.date.strftime("%Y-%m-%d %H:%M") if envelope.date else ""
        print(f"{envelope.id:<8} {envelope.flags.to_symbols():<4} {sender:<30} {subject:<50} {date:<16}")

    print(f"\nTotal: {len(envelopes)} envelopes")
