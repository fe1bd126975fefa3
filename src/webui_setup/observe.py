"""Read-only summary of step-run reports."""

import json
from pathlib import Path
from typing import Optional


def find_reports(task_id: str, reports_dir: Path) -> list[dict]:
    """Find all execution reports for a task_id."""
    reports = []

    if not reports_dir.exists():
        return reports

    for f in reports_dir.glob(f"{task_id}_*.json"):
        try:
            data = json.loads(f.read_text())
        except (json.JSONDecodeError, IOError):
            continue
        if data.get("task_id") != task_id:
            continue
        data["_report_file"] = str(f)
        reports.append(data)

    # Sort by start_time descending (most recent first)
    reports.sort(key=lambda r: r.get("start_time", ""), reverse=True)
    return reports


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable form.

    Examples:
        >>> format_duration(0.25)
        '250ms'
        >>> format_duration(130)
        '2m 10s'
    """
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"


def print_summary(task_id: str, reports_dir: Optional[Path] = None) -> None:
    """Print a human-readable summary of a task's step runs."""
    if reports_dir is None:
        reports_dir = Path("execution/reports")

    reports = find_reports(task_id, reports_dir)

    # Header
    print("=" * 60)
    print(f"TASK SUMMARY: {task_id}")
    print("=" * 60)
    print()

    if not reports:
        print("No execution records found.")
        print()
        print(f"Searched:")
        print(f"  Reports: {reports_dir}")
        return

    latest = reports[0]
    steps = latest.get("steps", [])

    print("LATEST EXECUTION")
    print("-" * 40)
    print(f"  Status:      {latest['status']}")
    print(f"  Exit code:   {latest['exit_code']}")
    print(f"  Steps run:   {len(steps)}")
    print(f"  Duration:    {format_duration(latest['duration_seconds'])}")
    print(f"  Step file:   {latest['step_file']}")
    print(f"  Time:        {latest['start_time'][:19]}")
    print()

    if steps:
        print("  Steps:")
        for step in steps:
            icon = "✓" if step["status"] == "SUCCEEDED" else "✗"
            retries = max(step["attempts"] - 1, 0)
            print(f"    {icon} {step['command'][:50]} (exit {step['exit_status']}, retries {retries})")
        print()

    # History
    if len(reports) > 1:
        print("HISTORY")
        print("-" * 40)
        print(f"  Executions:  {len(reports)}")

        for r in reports[:5]:
            status_icon = "✓" if r["status"] == "SUCCESS" else "✗"
            print(f"    {status_icon} {r['start_time'][:16]} - {r['status']}")

        if len(reports) > 5:
            print(f"    ... and {len(reports) - 5} more")
        print()

    # Final verdict
    print("VERDICT")
    print("-" * 40)
    if latest["status"] == "SUCCESS":
        print("  ✓ COMPLETE - All steps succeeded")
    else:
        print("  ✗ FAILED - A step exhausted its retries")
    print()
