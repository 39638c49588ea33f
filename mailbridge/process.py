"""Shell command execution for credential, notify, watch and notmuch commands."""

import logging
import shlex
import subprocess

from .errors import ProcessError

logger = logging.getLogger("mailbridge")


def _check(cmd: str, result: subprocess.CompletedProcess) -> bytes:
    if result.returncode != 0:
        raise ProcessError(
            cmd, result.returncode, result.stderr.decode("utf-8", errors="replace")
        )
    return result.stdout


def run(cmd: str, input: bytes | None = None) -> bytes:
    """Run a command through the shell and return its standard output.

    Raises:
        ProcessError: If the command exits with a non-zero status
    """
    logger.debug(f"Running command: {cmd}")
    result = subprocess.run(cmd, shell=True, input=input, capture_output=True)
    return _check(cmd, result)


def run_argv(argv: list[str], env: dict[str, str] | None = None) -> bytes:
    """Run a program without a shell and return its standard output.

    Raises:
        ProcessError: If the program is missing or exits with a non-zero status
    """
    cmd = shlex.join(argv)
    logger.debug(f"Running command: {cmd}")
    try:
        result = subprocess.run(argv, env=env, capture_output=True)
    except OSError as e:
        raise ProcessError(cmd, 127, str(e)) from e
    return _check(cmd, result)


def run_all(cmds: list[str]) -> list[bytes]:
    """Run commands one after the other, stopping at the first failure."""
    return [run(cmd) for cmd in cmds]
