"""Configuration management for mailbridge."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from . import process
from .errors import AuthError, ConfigError, ProcessError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
DEFAULT_NOTIFY_QUERY = "NEW"
DEFAULT_INBOX_FOLDER = "INBOX"
DEFAULT_NOTIFY_CMD = "notify-send '📫 <sender>' '<subject>'"
ENCRYPTIONS = ("tls", "start-tls", "none")
BACKENDS = ("imap", "maildir", "notmuch")


@dataclass
class AccountConfig:
    """Account-wide settings shared by every backend."""
    name: str = "default"
    backend: str = "imap"
    default_page_size: int = DEFAULT_PAGE_SIZE
    folder_aliases: dict[str, str] = field(default_factory=dict)
    notify_cmd: str | None = None
    notify_query: str = DEFAULT_NOTIFY_QUERY
    watch_cmds: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend {self.backend!r}, expected one of {BACKENDS}")
        self.folder_aliases = {k.lower(): v for k, v in self.folder_aliases.items()}

    def folder_alias(self, folder: str) -> str:
        """Resolve a folder name through the alias table.

        ``inbox`` always resolves, to INBOX when no alias is configured.
        """
        alias = self.folder_aliases.get(folder.lower())
        if alias is not None:
            return alias
        if folder.lower() == "inbox":
            return DEFAULT_INBOX_FOLDER
        return folder

    @property
    def inbox_folder(self) -> str:
        return self.folder_alias("inbox")

    def is_inbox(self, folder: str) -> bool:
        return self.folder_alias(folder) == self.inbox_folder


@dataclass
class ImapConfig:
    """IMAP server configuration.

    Credentials can be provided via environment variables:
    - MAILBRIDGE_IMAP_LOGIN: IMAP login
    - MAILBRIDGE_IMAP_PASSWORD: IMAP password

    Otherwise ``password_cmd`` is run through the shell on demand.
    """
    host: str
    port: int = 993
    encryption: str = "tls"
    insecure: bool = False
    login: str = ""
    password: str = field(default="", repr=False)
    password_cmd: str | None = None

    def __post_init__(self):
        """Load credentials from environment variables."""
        if self.encryption not in ENCRYPTIONS:
            raise ConfigError(
                f"Unknown IMAP encryption {self.encryption!r}, expected one of {ENCRYPTIONS}"
            )

        env_login = os.environ.get("MAILBRIDGE_IMAP_LOGIN")
        env_password = os.environ.get("MAILBRIDGE_IMAP_PASSWORD")

        if env_login:
            self.login = env_login
        if env_password:
            self.password = env_password

    def get_password(self) -> str:
        """Produce the IMAP secret.

        Raises:
            AuthError: If no credential is configured or the command fails
        """
        if self.password:
            return self.password
        if not self.password_cmd:
            raise AuthError(f"No password configured for {self.login}@{self.host}")
        try:
            output = process.run(self.password_cmd)
        except ProcessError as e:
            raise AuthError(f"Cannot get IMAP password: {e}") from e
        secret = output.decode("utf-8", errors="replace").splitlines()
        if not secret or not secret[0]:
            raise AuthError("Password command returned an empty secret")
        return secret[0]


@dataclass
class MaildirConfig:
    root_dir: Path


@dataclass
class NotmuchConfig:
    database_path: Path
    config_path: Path | None = None


@dataclass
class SyncConfig:
    """Local replica used by ``sync`` and the database caching the last state."""
    dir: Path
    cache_path: Path


@dataclass
class Config:
    account: AccountConfig = field(default_factory=AccountConfig)
    imap: ImapConfig | None = None
    maildir: MaildirConfig | None = None
    notmuch: NotmuchConfig | None = None
    id_mapper_path: Path | None = None
    sync: SyncConfig | None = None

    def get_id_mapper_path(self) -> Path:
        """Location of the alias store, configured or next to the mail tree."""
        if self.id_mapper_path is not None:
            return self.id_mapper_path
        if self.maildir is not None:
            return self.maildir.root_dir / ".mailbridge-id-mapper.sqlite"
        if self.notmuch is not None:
            return self.notmuch.database_path / ".mailbridge-id-mapper.sqlite"
        raise ConfigError("Set [id_mapper] path, [maildir] root_dir or [notmuch] database_path")


def _path(value: str | None) -> Path | None:
    if value is None:
        return None
    return Path(value).expanduser()


def load_config(path: str | Path) -> Config:
    """Load configuration from a TOML file."""
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid configuration file {path}: {e}") from e

    account_data = data.get("account", {})
    account_config = AccountConfig(
        name=account_data.get("name", "default"),
        backend=account_data.get("backend", "imap"),
        default_page_size=account_data.get("default_page_size", DEFAULT_PAGE_SIZE),
        folder_aliases=account_data.get("folder_aliases", {}),
        notify_cmd=account_data.get("notify_cmd"),
        notify_query=account_data.get("notify_query", DEFAULT_NOTIFY_QUERY),
        watch_cmds=account_data.get("watch_cmds", []),
    )

    imap_config = None
    if "imap" in data:
        imap_data = data["imap"]
        if not imap_data.get("host"):
            raise ConfigError("[imap] host is required")
        imap_config = ImapConfig(
            host=imap_data["host"],
            port=imap_data.get("port", 993),
            encryption=imap_data.get("encryption", "tls"),
            insecure=imap_data.get("insecure", False),
            login=imap_data.get("login", ""),
            password=imap_data.get("password", ""),
            password_cmd=imap_data.get("password_cmd"),
        )

    maildir_config = None
    if "maildir" in data:
        if "root_dir" not in data["maildir"]:
            raise ConfigError("[maildir] root_dir is required")
        maildir_config = MaildirConfig(root_dir=_path(data["maildir"]["root_dir"]))

    notmuch_config = None
    if "notmuch" in data:
        notmuch_data = data["notmuch"]
        if "database_path" not in notmuch_data:
            raise ConfigError("[notmuch] database_path is required")
        notmuch_config = NotmuchConfig(
            database_path=_path(notmuch_data["database_path"]),
            config_path=_path(notmuch_data.get("config_path")),
        )

    sync_config = None
    if "sync" in data:
        sync_data = data["sync"]
        if "dir" not in sync_data:
            raise ConfigError("[sync] dir is required")
        sync_dir = _path(sync_data["dir"])
        sync_config = SyncConfig(
            dir=sync_dir,
            cache_path=_path(sync_data.get("cache_path")) or sync_dir / ".mailbridge-sync.sqlite",
        )

    config = Config(
        account=account_config,
        imap=imap_config,
        maildir=maildir_config,
        notmuch=notmuch_config,
        id_mapper_path=_path(data.get("id_mapper", {}).get("path")),
        sync=sync_config,
    )
    logger.debug(f"Loaded configuration for account {account_config.name} from {path}")
    return config
