"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from matrixci.model import JobSpec, RunOutcome


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only errors are printed
        """
        self.debug = debug
        self.quiet = quiet
        # jobs print from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str) -> None:
        if self.quiet:
            return
        with self._lock:
            for line in lines:
                print(line)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        run_id: str,
        run_key: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Run ID: {run_id}",
            f"Concurrency key: {run_key}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger_rejected(self, workflow: str, reason: str) -> None:
        self._out(f"\nRUN NOT TRIGGERED: {workflow} ({reason})")

    def print_superseded(self, run_id: str, run_key: str) -> None:
        self._out(f"CANCELLING RUN: {run_id} (superseded on {run_key})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"\nJOB STARTED: {name}")

    def print_step(self, name: str) -> None:
        """Print step start message."""
        self._out(f"STEP: {name}")

    def print_step_skipped(self, name: str) -> None:
        self._out(f"STEP SKIPPED: {name}")

    def print_job_result(self, name: str, status: str, degraded: bool = False) -> None:
        suffix = " (degraded)" if degraded else ""
        self._out(f"JOB {status.upper()}: {name}{suffix}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print step failure message.

        Args:
            name: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_plan(self, jobs: list[tuple[str, "JobSpec"]]) -> None:
        """Print expanded matrix jobs."""
        self.print_header(f"PLAN ({len(jobs)} jobs)")
        for name, spec in jobs:
            origin = "include" if spec.included else "matrix"
            self._out(f"  {name} ({origin})")

    def print_results(self, outcome: "RunOutcome") -> None:
        """Print final results summary."""
        if self.quiet:
            return
        with self._lock:
            print("\n" + "=" * 40)
            print(f"RESULTS: {outcome.status.upper()}")
            print("=" * 40)
            for job in outcome.jobs.values():
                status_display = job.status.upper()
                if job.degraded:
                    status_display += " (degraded)"
                print(f"  {job.name}: {status_display}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
