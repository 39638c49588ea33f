"""Tests for config module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from mailbridge.config import (
    AccountConfig,
    Config,
    ImapConfig,
    MaildirConfig,
    NotmuchConfig,
    load_config,
)
from mailbridge.errors import AuthError, ConfigError, ProcessError


class TestAccountConfig:
    def test_defaults(self):
        config = AccountConfig()
        assert config.default_page_size == 10
        assert config.notify_query == "NEW"
        assert config.backend == "imap"

    def test_unknown_backend(self):
        with pytest.raises(ConfigError):
            AccountConfig(backend="pop3")

    def test_inbox_defaults_to_INBOX(self):
        config = AccountConfig()
        assert config.folder_alias("inbox") == "INBOX"
        assert config.folder_alias("Inbox") == "INBOX"
        assert config.is_inbox("INBOX")

    def test_aliases_case_insensitive(self):
        config = AccountConfig(folder_aliases={"Sent": "Sent Items"})
        assert config.folder_alias("sent") == "Sent Items"
        assert config.folder_alias("Archive") == "Archive"

    def test_inbox_alias(self):
        config = AccountConfig(folder_aliases={"inbox": "Posteingang"})
        assert config.inbox_folder == "Posteingang"
        assert config.is_inbox("inbox")
        assert config.is_inbox("Posteingang")


class TestImapConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_IMAP_LOGIN", raising=False)
        monkeypatch.delenv("MAILBRIDGE_IMAP_PASSWORD", raising=False)
        config = ImapConfig(host="imap.example.com")
        assert config.port == 993
        assert config.encryption == "tls"
        assert config.insecure is False

    def test_unknown_encryption(self):
        with pytest.raises(ConfigError):
            ImapConfig(host="imap.example.com", encryption="ssl3")

    def test_env_credentials(self, monkeypatch):
        monkeypatch.setenv("MAILBRIDGE_IMAP_LOGIN", "env-user")
        monkeypatch.setenv("MAILBRIDGE_IMAP_PASSWORD", "env-pass")
        config = ImapConfig(host="imap.example.com", login="file-user")
        assert config.login == "env-user"
        assert config.get_password() == "env-pass"

    def test_password_cmd(self, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_IMAP_PASSWORD", raising=False)
        config = ImapConfig(host="imap.example.com", password_cmd="pass show mail")
        with patch("mailbridge.config.process.run", return_value=b"s3cret\nignored\n") as run:
            assert config.get_password() == "s3cret"
        run.assert_called_once_with("pass show mail")

    def test_password_cmd_failure(self, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_IMAP_PASSWORD", raising=False)
        config = ImapConfig(host="imap.example.com", password_cmd="false")
        with patch("mailbridge.config.process.run", side_effect=ProcessError("false", 1)):
            with pytest.raises(AuthError):
                config.get_password()

    def test_password_cmd_empty(self, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_IMAP_PASSWORD", raising=False)
        config = ImapConfig(host="imap.example.com", password_cmd="true")
        with patch("mailbridge.config.process.run", return_value=b""):
            with pytest.raises(AuthError):
                config.get_password()

    def test_no_credential(self, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_IMAP_PASSWORD", raising=False)
        with pytest.raises(AuthError):
            ImapConfig(host="imap.example.com").get_password()


class TestIdMapperPath:
    def test_explicit(self, temp_dir):
        config = Config(id_mapper_path=temp_dir / "ids.sqlite")
        assert config.get_id_mapper_path() == temp_dir / "ids.sqlite"

    def test_next_to_maildir(self, temp_dir):
        config = Config(maildir=MaildirConfig(root_dir=temp_dir))
        assert config.get_id_mapper_path() == temp_dir / ".mailbridge-id-mapper.sqlite"

    def test_next_to_notmuch(self, temp_dir):
        config = Config(notmuch=NotmuchConfig(database_path=temp_dir))
        assert config.get_id_mapper_path() == temp_dir / ".mailbridge-id-mapper.sqlite"

    def test_missing(self):
        with pytest.raises(ConfigError):
            Config().get_id_mapper_path()


class TestLoadConfig:
    def test_load_from_file(self, sample_config_toml, temp_dir):
        config = load_config(sample_config_toml)

        assert config.account.name == "personal"
        assert config.account.default_page_size == 25
        assert config.account.watch_cmds == ["mbsync -a"]
        assert config.account.folder_alias("SENT") == "Sent Items"

        assert config.imap.host == "imap.test.com"
        assert config.imap.port == 143
        assert config.imap.encryption == "start-tls"
        assert config.imap.password == "secret"

        assert config.maildir.root_dir == temp_dir / "mail"
        assert config.sync.dir == temp_dir / "replica"
        assert config.sync.cache_path == temp_dir / "replica" / ".mailbridge-sync.sqlite"
        assert config.notmuch is None

    def test_minimal(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[maildir]\nroot_dir = "~/Mail"\n')
        config = load_config(path)
        assert config.account.backend == "imap"
        assert config.imap is None
        assert config.maildir.root_dir == Path("~/Mail").expanduser()

    def test_imap_host_required(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[imap]\nport = 993\n')
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_toml(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[account\nname = ")
        with pytest.raises(ConfigError):
            load_config(path)
