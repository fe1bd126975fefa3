"""Execution state for the command executor and retry loop."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from webui_setup.constants import DEFAULT_MAX_RETRIES, FIB_SEED, UNEXPECTED_SUCCESS_STATUS


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    EXPECTED_FAILURE = "EXPECTED_FAILURE"
    UNEXPECTED_FAILURE = "UNEXPECTED_FAILURE"
    UNEXPECTED_SUCCESS = "UNEXPECTED_SUCCESS"


@dataclass
class CommandRequest:
    """A shell command plus the caller's expectation about its exit status.

    ``ignore_exit_status`` wins over ``should_fail``.
    """
    command: str
    should_fail: bool = False
    ignore_exit_status: bool = False
    timeout: Optional[float] = None


@dataclass
class ExecutionResult:
    exit_status: int
    output: list[str]
    outcome: Outcome

    @property
    def return_code(self) -> int:
        """Status the executor hands back to its caller."""
        if self.outcome == Outcome.SUCCESS:
            return 0
        if self.outcome == Outcome.UNEXPECTED_SUCCESS:
            return UNEXPECTED_SUCCESS_STATUS
        return self.exit_status

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0


@dataclass
class RetryState:
    max_retries: int = DEFAULT_MAX_RETRIES
    attempt: int = 0
    fib1: int = FIB_SEED[0]
    fib2: int = FIB_SEED[1]
    last_exit_status: Optional[int] = None
    delays: list[int] = field(default_factory=list)
    status: str = "ATTEMPTING"  # ATTEMPTING | SUCCEEDED | EXHAUSTED | CANCELLED


@dataclass
class StepResult:
    command: str
    exit_status: int
    attempts: int
    delays: list[int] = field(default_factory=list)
    status: str = "PENDING"  # SUCCEEDED | EXHAUSTED


@dataclass
class StepRunState:
    task_id: str
    steps: list[StepResult] = field(default_factory=list)
    status: str = "PENDING"  # PENDING | RUNNING | SUCCESS | FAILED

    @property
    def exit_code(self) -> Optional[int]:
        if not self.steps:
            return None
        return self.steps[-1].exit_status
