# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the HTTP run report
      - debugging without full tracebacks
    """
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    kind: ClassVar[str] = "ci_error"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Environment initializer
# ----------------------------------------------------------------------

class SourceFetchError(CIError):
    kind = "source_fetch"


class ToolchainInstallError(CIError):
    kind = "toolchain_install"


class QuotaError(CIError):
    kind = "disk_quota"


class PackageInstallError(CIError):
    kind = "package_install"


# ----------------------------------------------------------------------
# Job steps
# ----------------------------------------------------------------------

@dataclass
class StepExecutionFailure(CIError):
    index: int = 0
    cmd: str = ""
    exit_code: Optional[int] = None
    output: str = ""

    kind: ClassVar[str] = "step_failed"

    def __str__(self) -> str:
        head = f"[{self.job}] step {self.index} '{self.step}' failed"
        if self.exit_code is not None:
            head += f" (exit={self.exit_code})"
        lines = [f"{head}: {self.message}"]
        if self.cmd:
            lines.append(f"cmd={self.cmd}")
        return "\n".join(lines)


@dataclass
class JobTimeout(CIError):
    timeout: float = 0.0

    kind: ClassVar[str] = "job_timeout"


class JobCancelled(CIError):
    kind = "job_cancelled"


# ----------------------------------------------------------------------
# Raised by executors, translated by the runner
# ----------------------------------------------------------------------

class CommandTimeout(Exception):
    """The command outlived the job deadline and was killed."""


class CommandCancelled(Exception):
    """The command was killed because its job was cancelled."""
