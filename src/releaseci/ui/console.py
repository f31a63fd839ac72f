"""Console output formatting utilities for releaseci."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # job instances report from worker threads
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        trigger: str,
        primary_tag: str,
        legacy_tag: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._print(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Trigger: {trigger}",
            f"Version: {primary_tag} (legacy: {legacy_tag})",
            f"Jobs: {job_count}",
            "",
        )

    def print_plan(self, rows: Iterable[tuple[str, str]]) -> None:
        """Print the expanded instance plan as (instance, note) rows."""
        self.print_header("PLAN")
        self._print(*(f"  {name} ({note})" for name, note in rows))

    def print_job_start(self, name: str) -> None:
        self._print(f"JOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        self._print(f"[{job}] ▶ {name}")

    def print_job_finished(self, name: str, outcome: str) -> None:
        self._print(f"JOB FINISHED: {name} -> {outcome}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._print(f"JOB SKIPPED: {name} ({reason})")

    def print_job_cancelled(self, name: str, reason: str) -> None:
        self._print(f"JOB CANCELLED: {name} ({reason})")

    def print_publish_decision(self, name: str, published: bool, reason: str) -> None:
        verb = "publishing" if published else "publish skipped"
        self._print(f"[{name}] {verb}: {reason}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print a job failure.

        Args:
            name: Instance id
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"JOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._print(*lines)

    def print_warning(self, message: str) -> None:
        self._print(f"WARNING: {message}", err=True)

    def print_results(self, rows: Iterable[tuple[str, str]], run_status: str) -> None:
        """Print final results summary as (instance, outcome) rows."""
        self._print("\n" + "=" * 40, "RESULTS", "=" * 40)
        self._print(*(f"  {name}: {outcome.upper()}" for name, outcome in rows))
        self._print(f"\nRUN STATUS: {run_status.upper()}")

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
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
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
