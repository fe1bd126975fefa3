"""Single-shot command executor.

Runs one shell command, logs its merged output, and classifies the exit
status against the caller's expectation. Never retries. Never raises on a
command's exit status.
"""

import subprocess
from typing import Optional

from webui_setup.constants import SPAWN_FAILURE_STATUS, TIMEOUT_STATUS
from webui_setup.execution_state import CommandRequest, ExecutionResult, Outcome
from webui_setup.logger import LogLevel, is_debug, log_message
from webui_setup.shell_mode import (
    ShellMode,
    failure_modes_suspended,
    get_shell_mode,
    shell_argv,
)


def _split_output(text: Optional[str]) -> list[str]:
    if not text:
        return []
    return text.splitlines()


def _spawn(request: CommandRequest) -> tuple[int, list[str]]:
    """Run the nested shell under the current (suspended) mode."""
    mode = get_shell_mode()
    try:
        result = subprocess.run(
            shell_argv(request.command, mode),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=request.timeout,
            check=mode.errexit,
        )
        return result.returncode, _split_output(result.stdout)
    except subprocess.TimeoutExpired as e:
        output = e.output
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        lines = _split_output(output)
        lines.append(f"Command timed out after {request.timeout} seconds")
        return TIMEOUT_STATUS, lines
    except OSError as e:
        return SPAWN_FAILURE_STATUS, [str(e)]


def classify(request: CommandRequest, exit_status: int) -> Outcome:
    """
    Classify an observed exit status.

    Precedence: ignore_exit_status, then non-zero vs should_fail, then
    zero vs should_fail.
    """
    if request.ignore_exit_status:
        return Outcome.SUCCESS
    if exit_status != 0:
        if request.should_fail:
            return Outcome.EXPECTED_FAILURE
        return Outcome.UNEXPECTED_FAILURE
    if request.should_fail:
        return Outcome.UNEXPECTED_SUCCESS
    return Outcome.SUCCESS


def execute(request: CommandRequest, saved_mode: Optional[ShellMode] = None) -> ExecutionResult:
    """
    Run ``request.command`` with ``bash -c`` and classify the result.

    Args:
        request: Command and expectation flags
        saved_mode: Shell mode to restore after the spawn (default: the mode
            in force before this call)

    Returns:
        ExecutionResult; ``return_code`` is 0 for success, the observed status
        for failures, and 1 for an unexpected success.
    """
    command = request.command
    prefix = f"{command} :: " if is_debug() else " "

    log_message(f"{prefix}Executing command: {command}", LogLevel.INFO)
    log_message(
        f"{prefix}Executing command: {command} with "
        f"ignore_exit_status=\"{request.ignore_exit_status}\", "
        f"should_fail=\"{request.should_fail}\", debug_mode=\"{is_debug()}\"",
        LogLevel.DEBUG_1,
    )

    with failure_modes_suspended(saved_mode):
        exit_status, output = _spawn(request)

    for line in output:
        log_message(f"{prefix}{line}", LogLevel.INFO)

    outcome = classify(request, exit_status)

    if request.ignore_exit_status:
        log_message(
            f"{prefix}{command} exitted with code {exit_status}, ignoring exit status.",
            LogLevel.WARNING,
        )
    elif outcome == Outcome.EXPECTED_FAILURE:
        log_message(
            f"{prefix}{command} failed as expected with exit code {exit_status}.",
            LogLevel.INFO,
        )
    elif outcome == Outcome.UNEXPECTED_FAILURE:
        log_message(
            f"{prefix}{command} failed unexpectedly with exit code {exit_status}.",
            LogLevel.ERROR,
        )
    elif outcome == Outcome.UNEXPECTED_SUCCESS:
        log_message(
            f"{prefix}{command} succeeded unexpectedly when failure was expected.",
            LogLevel.ERROR,
        )

    return ExecutionResult(exit_status=exit_status, output=output, outcome=outcome)


def capture_output(command: str, timeout: Optional[float] = None) -> tuple[int, str]:
    """
    Run a read-only query under the ambient mode and return (status, stdout).

    No classification and no output logging; callers parse the result.
    """
    log_message(f"Querying: {command}", LogLevel.DEBUG_1)
    try:
        result = subprocess.run(
            shell_argv(command),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log_message(f"Query timed out after {timeout} seconds: {command}", LogLevel.WARNING)
        return TIMEOUT_STATUS, ""
    except OSError as e:
        log_message(f"Query could not be started: {command}: {e}", LogLevel.WARNING)
        return SPAWN_FAILURE_STATUS, ""
    return result.returncode, result.stdout
