"""Shared test fixtures."""

import mailbox
import tempfile
from pathlib import Path

import pytest

from mailbridge.config import AccountConfig, Config, ImapConfig, MaildirConfig, SyncConfig


def build_raw(
    message_id: str | None = "msg1@example.com",
    subject: str = "Test Subject",
    sender: str = "Alice <alice@example.com>",
    date: str = "Mon, 01 Jan 2024 10:00:00 +0000",
    body: str = "Hello there.",
) -> bytes:
    """Build a raw RFC 5322 message."""
    lines = [f"From: {sender}", "To: bob@example.com", f"Subject: {subject}", f"Date: {date}"]
    if message_id is not None:
        lines.append(f"Message-ID: <{message_id}>")
    lines += ["Content-Type: text/plain; charset=utf-8", "", body, ""]
    return "\r\n".join(lines).encode()


@pytest.fixture
def make_raw():
    """Factory for raw test messages."""
    return build_raw


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def account():
    return AccountConfig(name="test", backend="maildir", folder_aliases={"sent": "Sent"})


@pytest.fixture
def maildir_root(temp_dir):
    """A Maildir++ tree with three inbox messages and an empty Sent folder."""
    root = temp_dir / "mail"
    md = mailbox.Maildir(root, create=True)
    for n, day in ((1, "01"), (2, "02"), (3, "03")):
        msg = mailbox.MaildirMessage(
            build_raw(f"msg{n}@example.com", f"Subject {n}", date=f"Mon, {day} Jan 2024 10:00:00 +0000")
        )
        msg.set_subdir("cur")
        if n == 1:
            msg.set_flags("S")
        md.add(msg)
    md.add_folder("Sent")
    return root


@pytest.fixture
def sample_config(temp_dir, maildir_root):
    """Create a sample configuration for testing."""
    return Config(
        account=AccountConfig(name="test", backend="maildir"),
        imap=ImapConfig(
            host="imap.example.com",
            port=993,
            login="test@example.com",
            password="testpass",
        ),
        maildir=MaildirConfig(root_dir=maildir_root),
        id_mapper_path=temp_dir / "ids.sqlite",
        sync=SyncConfig(dir=temp_dir / "replica", cache_path=temp_dir / "sync.sqlite"),
    )


@pytest.fixture
def sample_config_toml(temp_dir, monkeypatch):
    """Create a sample TOML config file."""
    monkeypatch.delenv("MAILBRIDGE_IMAP_LOGIN", raising=False)
    monkeypatch.setenv("MAILBRIDGE_IMAP_PASSWORD", "secret")

    config_path = temp_dir / "config.toml"
    config_path.write_text(f'''
[account]
name = "personal"
backend = "imap"
default_page_size = 25
watch_cmds = ["mbsync -a"]

[account.folder_aliases]
Inbox = "INBOX"
sent = "Sent Items"

[imap]
host = "imap.test.com"
port = 143
encryption = "start-tls"
login = "user@test.com"

[maildir]
root_dir = "{temp_dir / 'mail'}"

[sync]
dir = "{temp_dir / 'replica'}"
''')
    return config_path
