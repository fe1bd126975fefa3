"""Retry loop with Fibonacci backoff around the command executor.

Logic:
1. Snapshot the shell mode and execute the command
2. On success (or a satisfied should_fail), stop and return 0
3. Otherwise count the attempt; past max_retries, give up with the last status
4. Sleep fib1 seconds, advance (fib1, fib2) -> (fib2, fib1 + fib2), go to 1

Every failure is retried the same way, whatever its cause.
"""

import os
import threading
import time
from typing import Callable, Optional

from webui_setup.constants import DEFAULT_MAX_RETRIES, FIB_SEED
from webui_setup.execution_state import CommandRequest, Outcome, RetryState
from webui_setup.executor import execute
from webui_setup.logger import LogLevel, log_message
from webui_setup.shell_mode import get_shell_mode


class RetryCancelledError(Exception):
    """Raised when a retry loop is cancelled between attempts."""

    def __init__(self, description: str, state: RetryState):
        self.state = state
        super().__init__(f"Cancelled after {state.attempt} failed attempt(s): {description}")


def fibonacci_delays(count: int, seed: tuple[int, int] = FIB_SEED) -> list[int]:
    """
    First ``count`` backoff delays.

    Examples:
        >>> fibonacci_delays(6)
        [10, 10, 20, 30, 50, 80]
    """
    fib1, fib2 = seed
    delays = []
    for _ in range(count):
        delays.append(fib1)
        fib1, fib2 = fib2, fib1 + fib2
    return delays


def advance_backoff(state: RetryState) -> int:
    """Return the next delay and step the Fibonacci pair forward."""
    delay = state.fib1
    state.fib1, state.fib2 = state.fib2, state.fib1 + state.fib2
    state.delays.append(delay)
    return delay


def _wait(
    delay: int,
    sleep: Callable[[float], None],
    cancel_event: Optional[threading.Event],
) -> bool:
    """Sleep for ``delay``; return True if cancelled meanwhile."""
    if cancel_event is None:
        sleep(delay)
        return False
    return cancel_event.wait(delay)


def run_retry_loop(
    request: CommandRequest,
    state: Optional[RetryState] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
) -> RetryState:
    """
    Execute ``request`` until it succeeds or the retry budget runs out.

    Args:
        request: Command and expectation flags
        state: Retry state to drive (default: fresh state with 5 retries)
        sleep: Sleep function, injectable for tests
        cancel_event: Set to abort between attempts

    Returns:
        Final RetryState (SUCCEEDED or EXHAUSTED)

    Raises:
        RetryCancelledError: If cancel_event is set between attempts.
    """
    if state is None:
        state = RetryState()

    log_message(f"Running command with retries: {request.command}", LogLevel.DEBUG_1)

    while True:
        if cancel_event is not None and cancel_event.is_set():
            state.status = "CANCELLED"
            log_message(f"Retry loop cancelled: {request.command}", LogLevel.WARNING)
            raise RetryCancelledError(request.command, state)

        log_message(f"Executing: {request.command} in {os.getcwd()}", LogLevel.INFO)
        saved_mode = get_shell_mode()

        result = execute(request, saved_mode=saved_mode)

        if result.succeeded or result.outcome == Outcome.EXPECTED_FAILURE:
            state.status = "SUCCEEDED"
            state.last_exit_status = 0
            return state

        state.last_exit_status = result.return_code
        state.attempt += 1

        if state.attempt > state.max_retries:
            state.status = "EXHAUSTED"
            log_message(
                f"Command failed after {state.max_retries} retries with exit code "
                f"{state.last_exit_status}: {request.command}",
                LogLevel.ERROR,
            )
            return state

        delay = state.fib1
        log_message(
            f"Retrying command in {delay} seconds "
            f"(retry {state.attempt}/{state.max_retries}): {request.command}",
            LogLevel.WARNING,
        )
        advance_backoff(state)

        if _wait(delay, sleep, cancel_event):
            state.status = "CANCELLED"
            log_message(f"Retry loop cancelled: {request.command}", LogLevel.WARNING)
            raise RetryCancelledError(request.command, state)


def execute_with_retry(
    command: str,
    should_fail: bool = False,
    ignore_exit_status: bool = False,
    max_retries: int = DEFAULT_MAX_RETRIES,
    *,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """
    Run ``command`` with Fibonacci-backoff retries.

    Returns:
        0 on success, otherwise the last observed non-zero status once
        ``max_retries`` retries are exhausted.
    """
    request = CommandRequest(
        command=command,
        should_fail=should_fail,
        ignore_exit_status=ignore_exit_status,
        timeout=timeout,
    )
    state = run_retry_loop(
        request,
        RetryState(max_retries=max_retries),
        sleep=sleep,
        cancel_event=cancel_event,
    )
    return state.last_exit_status or 0


def poll_until(
    check: Callable[[], bool],
    description: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
) -> bool:
    """
    Wait for ``check()`` to become true, backing off like the retry loop.

    ``check`` is called at most ``max_retries + 1`` times, with a sleep
    between calls.

    Returns:
        True once the check passes, False after the last retry fails.
    """
    state = RetryState(max_retries=max_retries)

    while True:
        if check():
            state.status = "SUCCEEDED"
            return True

        if state.attempt >= state.max_retries:
            state.status = "EXHAUSTED"
            log_message(
                f"Gave up waiting for {description} after {state.max_retries} retries.",
                LogLevel.ERROR,
            )
            return False

        state.attempt += 1
        delay = state.fib1
        log_message(
            f"Waiting for {description}. Retry {state.attempt}/{state.max_retries} "
            f"in {delay} seconds",
            LogLevel.WARNING,
        )
        advance_backoff(state)

        if _wait(delay, sleep, cancel_event):
            state.status = "CANCELLED"
            raise RetryCancelledError(description, state)
