"""Mailbridge: one interface over IMAP, Maildir and Notmuch mail stores, with two-way sync."""

__version__ = "0.1.0"
