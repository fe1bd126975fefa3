"""Ambient failure-propagation mode, the analogue of ``set -e`` / ``set -o pipefail``.

The orchestration layer runs with both modes on: any unrecoverable command
failure aborts the setup sequence. The executor suspends them around each
sub-process so a non-zero exit never escapes it, then restores the caller's
snapshot.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from webui_setup.constants import SHELL
from webui_setup.logger import LogLevel, log_message


class CommandFailedError(Exception):
    """Raised by the orchestration layer when a command fails while errexit is on."""

    def __init__(self, command: str, exit_status: int):
        self.command = command
        self.exit_status = exit_status
        super().__init__(f"Command failed with exit status {exit_status}: {command}")


@dataclass(frozen=True)
class ShellMode:
    errexit: bool = True
    pipefail: bool = True


SUSPENDED = ShellMode(errexit=False, pipefail=False)

_lock = threading.RLock()
_current = ShellMode()


def get_shell_mode() -> ShellMode:
    """Snapshot of the current mode."""
    with _lock:
        return _current


def set_shell_mode(mode: ShellMode) -> None:
    global _current
    log_message(f"Setting shell options to {mode}", LogLevel.DEBUG_2)
    with _lock:
        _current = mode


@contextmanager
def failure_modes_suspended(restore: Optional[ShellMode] = None) -> Iterator[ShellMode]:
    """
    Disable errexit and pipefail for the body of the block.

    On exit (normal or not) the mode becomes ``restore`` when given, otherwise
    whatever was in force on entry.

    Yields:
        The mode that was in force on entry.
    """
    with _lock:
        previous = _current
        log_message("Disabling exit on failure and pipefail", LogLevel.DEBUG_1)
        set_shell_mode(SUSPENDED)
    try:
        yield previous
    finally:
        set_shell_mode(restore if restore is not None else previous)


def shell_argv(command: str, mode: Optional[ShellMode] = None) -> list[str]:
    """
    argv that runs ``command`` in a nested shell under ``mode``.

    Examples:
        >>> shell_argv("true", ShellMode(errexit=False, pipefail=False))
        ['bash', '-c', 'true']
        >>> shell_argv("a | b", ShellMode(errexit=False, pipefail=True))
        ['bash', '-o', 'pipefail', '-c', 'a | b']
    """
    if mode is None:
        mode = get_shell_mode()
    argv = [SHELL]
    if mode.pipefail:
        argv += ["-o", "pipefail"]
    return argv + ["-c", command]


def check_status(command: str, exit_status: int) -> int:
    """
    Abort with CommandFailedError on a non-zero status while errexit is on.

    Returns:
        ``exit_status`` unchanged when it is allowed through.
    """
    if exit_status != 0 and get_shell_mode().errexit:
        raise CommandFailedError(command, exit_status)
    return exit_status
