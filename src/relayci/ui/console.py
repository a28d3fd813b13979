"""Console output formatting utilities for relayci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import PipelineRun


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # JobRuns print from worker threads
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_run_started(
        self,
        workflow: str,
        event: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._print("\nRUN STARTED", f"Workflow: {workflow}", f"Event: {event}", f"Jobs: {job_count}", "")

    def print_trigger(self, should_run: bool, reason: str) -> None:
        verdict = "run" if should_run else "skip"
        self._print(f"TRIGGER: {verdict} ({reason})")

    def print_job_start(self, name: str) -> None:
        self._print(f"\nJOB STARTED: {name}")

    def print_step(self, name: str) -> None:
        self._print(f"STEP: {name}")

    def print_success(self, name: str) -> None:
        self._print(f"STATUS: success ({name})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        elif reason:
            lines.append(f"Error: {reason.splitlines()[0]}")
        self._print(*lines)

    def print_cache_hit(self, job: str, reason: str) -> None:
        self._print(f"CACHE: {reason}")

    def print_cache_miss(self, job: str) -> None:
        self._print("CACHE: miss")

    def print_cache_saved(self, job: str, key: str) -> None:
        self._print(f"CACHE: saved ({key})")

    def print_plan_job(self, name: str, runner: str, steps: list[str]) -> None:
        self._print(f"  {name} [runs-on: {runner}]", *(f"    {i}. {s}" for i, s in enumerate(steps, start=1)))

    def print_results(self, run: "PipelineRun") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job_run in run.job_runs:
            line = f"  {job_run.name}: {job_run.status.value.upper()}"
            if job_run.failed_step:
                pos, step = job_run.failed_step
                line += f" (step {pos}: {step})"
            lines.append(line)
        lines.append(f"RUN: {run.status.value.upper()}")
        self._print(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        lines += [f"  {d}" for d in details or []]
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._print(f"Error: {exc}", err=True)

    def print_warning(self, message: str) -> None:
        self._print(f"WARNING: {message}", err=True)

    def print_info(self, message: str) -> None:
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
