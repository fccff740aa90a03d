# environment.py
from __future__ import annotations

import shlex
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Set, Type

from .errors import (
    CIError,
    PackageInstallError,
    QuotaError,
    SourceFetchError,
    ToolchainInstallError,
)
from .executor import StepExecutor, execute
from .model import Event, Job, Setup, SharedEnvironment
from .ui.console import get_console


class EnvironmentInitializer:
    """
    Materializes a job's execution environment before its steps run:

      1. checkout   - source tree at the event commit, submodules included
      2. toolchain  - pinned toolchain, self-update disabled
      3. quota      - disk-usage ceiling for the rest of the job
      4. packages   - the job's system packages, if it declares any

    Every stage runs at the workspace root. The first failing stage raises
    its own CIError subclass and nothing after it runs. Initializing the
    same workspace twice is a no-op.
    """

    def __init__(self, setup: Setup, env: SharedEnvironment, executor: StepExecutor):
        self.setup = setup
        self.env = env
        self.executor = executor
        self._done: Set[Path] = set()
        self._workspace_locks: Dict[Path, threading.Lock] = {}
        self._lock = threading.Lock()

    def initialize(
        self,
        job: Job,
        workspace: Path,
        event: Event,
        *,
        env: Mapping[str, str],
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        workspace = Path(workspace).resolve()
        with self._lock:
            ws_lock = self._workspace_locks.setdefault(workspace, threading.Lock())

        # held across all stages so a concurrent call waits instead of cloning twice
        with ws_lock:
            if workspace in self._done:
                return

            try:
                workspace.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SourceFetchError(
                    job=job.name, step="checkout", message=f"cannot create workspace: {e}"
                ) from e

            ctx = dict(job=job, workspace=workspace, env=env, deadline=deadline, cancel=cancel)
            self._checkout(event, **ctx)
            self._toolchain(**ctx)
            self._quota(**ctx)
            self._packages(**ctx)

            self._done.add(workspace)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _checkout(self, event: Event, **ctx) -> None:
        job: Job = ctx["job"]
        if not event.repository:
            raise SourceFetchError(
                job=job.name, step="checkout", message="event does not name a repository"
            )

        repo = shlex.quote(event.repository)
        if (ctx["workspace"] / ".git").exists():
            lines = ["git fetch --tags origin"]
        else:
            clone = ["git", "clone", "--no-checkout"]
            if self.setup.fetch_depth:
                clone.append(f"--depth={int(self.setup.fetch_depth)}")
            lines = [" ".join(clone) + f" {repo} ."]

        lines.append(f"git checkout --force {shlex.quote(event.sha)}" if event.sha else "git checkout --force HEAD")
        if self.setup.submodules:
            lines.append("git submodule update --init --recursive --force")

        self._stage("checkout", "\n".join(lines), SourceFetchError, **ctx)

    def _toolchain(self, **ctx) -> None:
        if not self.setup.toolchain:
            return
        if not self.env.toolchain_version:
            job: Job = ctx["job"]
            raise ToolchainInstallError(
                job=job.name,
                step="toolchain",
                message=f"{self.env.toolchain_var} is not set in the shared environment",
            )
        self._stage("toolchain", "\n".join(self.setup.toolchain), ToolchainInstallError, **ctx)

    def _quota(self, **ctx) -> None:
        if not self.setup.quota:
            return
        self._stage("disk quota", self.setup.quota, QuotaError, **ctx)

    def _packages(self, **ctx) -> None:
        job: Job = ctx["job"]
        if not job.packages:
            return
        if not self.setup.package_install:
            raise PackageInstallError(
                job=job.name,
                step="packages",
                message="job declares packages but no package manager is configured",
                details={"packages": " ".join(job.packages)},
            )

        lines = []
        if self.setup.package_update:
            lines.append(self.setup.package_update)
        lines.append(self.setup.package_install.replace("{packages}", shlex.join(job.packages)))
        self._stage("packages", "\n".join(lines), PackageInstallError, **ctx)

    def _stage(
        self,
        name: str,
        script: str,
        error: Type[CIError],
        *,
        job: Job,
        workspace: Path,
        env: Mapping[str, str],
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> None:
        get_console().print_setup_stage(job.name, name)
        try:
            result = execute(
                self.executor,
                script,
                job=job.name,
                step=name,
                cwd=workspace,
                env=env,
                timeout=job.timeout,
                deadline=deadline,
                cancel=cancel,
            )
        except OSError as e:
            raise error(job=job.name, step=name, message=str(e)) from e

        if not result.ok:
            raise error(
                job=job.name,
                step=name,
                message=f"{name} failed with exit code {result.exit_code}",
                details={"output": result.output.strip()[-500:]} if result.output.strip() else {},
            )
