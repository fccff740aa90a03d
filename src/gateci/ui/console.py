"""Console output formatting utilities for gateci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import Event, JobRun, Pipeline, PipelineRun
    from ..trigger import TriggerDecision


class Console:
    """Centralized console output formatting. Safe to call from job threads."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_trigger(self, event: Event, decision: TriggerDecision) -> None:
        verdict = "matched" if decision.matched else "no match"
        branch = f" on {event.branch}" if event.branch else ""
        self._out(f"TRIGGER: {event.kind.value}{branch} -> {verdict} ({decision.reason})")

    def print_run_started(self, pipeline: Pipeline, event: Event, run_id: str) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline.name}",
            f"Run ID: {run_id}",
            f"Event: {event.kind.value}",
            f"Commit: {event.sha or 'HEAD'}",
            f"Jobs: {', '.join(j.name for j in pipeline.jobs)}",
            "",
        )

    def print_job_start(self, name: str) -> None:
        self._out(f"[{name}] JOB STARTED")

    def print_setup_stage(self, job: str, stage: str) -> None:
        self._out(f"[{job}]   setup: {stage}")

    def print_step(self, job: str, index: int, name: str) -> None:
        self._out(f"[{job}] ▶ {index}. {name}")

    def print_job_outcome(self, run: JobRun) -> None:
        """Print a job's terminal outcome, with the failing step if any."""
        duration = f" in {run.duration:.1f}s" if run.duration is not None else ""
        if run.succeeded:
            self._out(f"[{run.name}] ✓ success{duration}")
            return

        lines = [f"[{run.name}] ✗ {run.outcome}{duration}"]
        if run.step_name:
            lines.append(f"[{run.name}]   step {run.step_index}: {run.step_name}")
        if run.error is not None:
            text = str(run.error)
            if not self.debug:
                text = text.split("\n")[0]
            lines.extend(f"[{run.name}]   {line}" for line in text.splitlines())
            output = getattr(run.error, "output", "") or ""
            if self.debug and output:
                lines.append(f"[{run.name}]   --- output (tail) ---")
                lines.extend(f"[{run.name}]   {line}" for line in output.splitlines())
        self._out(*lines, err=True)

    def print_results(self, run: PipelineRun) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job_run in run.jobs.values():
            lines.append(f"  {job_run.name}: {job_run.outcome.upper()}")
        lines.append(f"PIPELINE: {run.state.value.upper()}")
        self._out(*lines)

    def print_plan(self, pipeline: Pipeline) -> None:
        lines = [f"\nPIPELINE: {pipeline.name}", "Triggers:"]
        for rule in pipeline.triggers:
            extra = []
            if rule.branches is not None:
                extra.append(f"branches={list(rule.branches)}")
            if rule.paths is not None:
                extra.append(f"paths={list(rule.paths)}")
            lines.append(f"  {rule.kind.value} {' '.join(extra)}".rstrip())
        if pipeline.env.variables:
            lines.append("Environment:")
            lines.extend(f"  {k}={v}" for k, v in pipeline.env.variables.items())
        for job in pipeline.jobs:
            lines.append(f"\nJOB: {job.name} (timeout {job.timeout / 60:g}m)")
            lines.append("  1. Set up environment (checkout, toolchain, quota, packages)")
            for i, step in enumerate(job.steps, start=2):
                lines.append(f"  {i}. {step.name} [cwd={job.step_cwd(step)}]")
        self._out(*lines)

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
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (set by the CLI)
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
