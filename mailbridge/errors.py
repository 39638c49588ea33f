"""Error hierarchy for mailbridge.

Every error raised by a backend, the id mapper or the sync engine derives
from MailBridgeError so callers can catch the whole family at once.
"""


class MailBridgeError(Exception):
    """Base class for all mailbridge errors."""


class ConfigError(MailBridgeError):
    """Raised when the configuration is missing or invalid."""


class ProcessError(MailBridgeError):
    """Raised when a shell command exits with a non-zero status."""

    def __init__(self, cmd: str, returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        message = f"command {cmd!r} exited with status {returncode}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


class ImapConnectionError(MailBridgeError):
    """Raised when the TCP/TLS connection to the IMAP server cannot be set up."""


class AuthError(MailBridgeError):
    """Raised when login is rejected or the credential source fails."""


class ProtocolError(MailBridgeError):
    """Raised when an IMAP command fails.

    Carries the operation that failed and the folder or message it targeted.
    """

    def __init__(self, operation: str, target: str | None = None, reason: object = None):
        self.operation = operation
        self.target = target
        self.reason = reason
        message = f"cannot {operation}"
        if target:
            message += f" {target}"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)


class NotFoundError(MailBridgeError):
    """Raised when a folder, message or alias does not exist."""


class OutOfBoundsError(NotFoundError):
    """Raised when a requested page starts past the end of the result set."""

    def __init__(self, page_begin: int, total: int):
        self.page_begin = page_begin
        self.total = total
        super().__init__(f"page out of bounds: {page_begin} > {total}")


class UnsupportedOperationError(MailBridgeError):
    """Raised when a backend cannot perform an operation at all."""

    def __init__(self, backend: str, operation: str):
        self.backend = backend
        self.operation = operation
        super().__init__(f"{operation} is not supported by the {backend} backend")


class MappingError(MailBridgeError):
    """Raised when the id mapper store is unreachable or an alias is unknown."""


class SyncHunkError(MailBridgeError):
    """Raised (and captured in the sync report) when a patch hunk fails."""


class UnknownAliasError(MappingError, NotFoundError):
    """Raised when an alias was never assigned in its (account, folder) scope."""
