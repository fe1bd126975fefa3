"""Step-file runner.

Loads a list of commands from YAML or JSON, runs each through the retry loop
in order, stops at the first failure, and writes a JSON report.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import yaml

from webui_setup.constants import DEFAULT_MAX_RETRIES
from webui_setup.execution_state import CommandRequest, RetryState, StepResult, StepRunState
from webui_setup.logger import LogLevel, log_message
from webui_setup.retry import run_retry_loop


def load_step_definition(step_file: Path) -> dict:
    """
    Load a step definition from YAML or JSON.

    Required fields:
        - task_id: str
        - steps: list of {command: str, should_fail?: bool,
          ignore_exit_status?: bool, max_retries?: int, timeout?: float}

    Optional fields:
        - max_retries: int (default 5, per-step value wins)
    """
    content = step_file.read_text()

    if step_file.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    elif step_file.suffix == ".json":
        data = json.loads(content)
    else:
        raise ValueError(f"Unsupported file type: {step_file.suffix}. Use .yaml, .yml, or .json")

    if not isinstance(data, dict):
        raise ValueError("Step definition must be a mapping")

    # Validate required fields
    if "task_id" not in data:
        raise ValueError("Step definition missing required field: task_id")
    steps = data.get("steps")
    if not isinstance(steps, list) or not steps:
        raise ValueError("Step definition missing required field: steps (non-empty list)")

    if "max_retries" in data:
        _check_retries("Step definition", data["max_retries"])

    for i, step in enumerate(steps):
        if isinstance(step, str):
            steps[i] = {"command": step}
        elif not isinstance(step, dict) or "command" not in step:
            raise ValueError(f"Step {i + 1} missing required field: command")
        else:
            _check_step_fields(i + 1, step)

    return data


def _check_retries(where: str, value) -> None:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{where}: max_retries must be a non-negative integer, got: {value!r}")


def _check_step_fields(number: int, step: dict) -> None:
    """Reject flags that bool()/int() would silently coerce."""
    where = f"Step {number}"
    for flag in ("should_fail", "ignore_exit_status"):
        if flag in step and not isinstance(step[flag], bool):
            raise ValueError(f"{where}: {flag} must be true or false, got: {step[flag]!r}")
    if "max_retries" in step:
        _check_retries(where, step["max_retries"])
    if "timeout" in step:
        timeout = step["timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError(f"{where}: timeout must be a positive number of seconds, got: {timeout!r}")


def build_requests(step_def: dict) -> list[tuple[CommandRequest, int]]:
    """Turn a step definition into (request, max_retries) pairs."""
    default_retries = step_def.get("max_retries", DEFAULT_MAX_RETRIES)
    requests = []
    for step in step_def["steps"]:
        request = CommandRequest(
            command=str(step["command"]),
            should_fail=bool(step.get("should_fail", False)),
            ignore_exit_status=bool(step.get("ignore_exit_status", False)),
            timeout=step.get("timeout"),
        )
        requests.append((request, int(step.get("max_retries", default_retries))))
    return requests


def write_execution_report(
    state: StepRunState,
    step_file: Path,
    output_dir: Path,
    start_time: datetime,
    end_time: datetime,
) -> Path:
    """
    Write a structured execution report to disk.

    Report format: JSON with all execution details.
    Filename: {task_id}_{timestamp}.json
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = end_time.strftime("%Y%m%d_%H%M%S")
    report_path = output_dir / f"{state.task_id}_{timestamp}.json"

    report = {
        "task_id": state.task_id,
        "step_file": str(step_file),
        "status": state.status,
        "exit_code": state.exit_code,
        "steps": [
            {
                "command": s.command,
                "status": s.status,
                "exit_status": s.exit_status,
                "attempts": s.attempts,
                "delays": s.delays,
            }
            for s in state.steps
        ],
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
    }

    report_path.write_text(json.dumps(report, indent=2))

    return report_path


def run_steps(
    step_file: Path,
    output_dir: Optional[Path] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StepRunState:
    """
    Main entry point: load steps, run them in order, write report.

    Args:
        step_file: Path to step definition (YAML or JSON)
        output_dir: Directory for execution reports (default: ./execution/reports/)
        sleep: Backoff sleep function

    Returns:
        Final StepRunState
    """
    if output_dir is None:
        output_dir = Path("execution/reports")

    step_def = load_step_definition(step_file)
    state = StepRunState(task_id=str(step_def["task_id"]), status="RUNNING")

    start_time = datetime.now()

    for request, max_retries in build_requests(step_def):
        retry_state = run_retry_loop(request, RetryState(max_retries=max_retries), sleep=sleep)
        state.steps.append(StepResult(
            command=request.command,
            exit_status=retry_state.last_exit_status or 0,
            attempts=retry_state.attempt + (1 if retry_state.status == "SUCCEEDED" else 0),
            delays=list(retry_state.delays),
            status=retry_state.status,
        ))
        if retry_state.status != "SUCCEEDED":
            log_message(f"Stopping {state.task_id}: step failed: {request.command}", LogLevel.ERROR)
            break

    state.status = "SUCCESS" if all(s.status == "SUCCEEDED" for s in state.steps) else "FAILED"

    end_time = datetime.now()

    report_path = write_execution_report(
        state=state,
        step_file=step_file,
        output_dir=output_dir,
        start_time=start_time,
        end_time=end_time,
    )

    print(f"Execution complete.")
    print(f"  Status: {state.status}")
    print(f"  Exit code: {state.exit_code}")
    print(f"  Steps: {len(state.steps)}/{len(step_def['steps'])}")
    print(f"  Report: {report_path}")

    return state
