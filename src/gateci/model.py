# model.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


DEFAULT_JOB_TIMEOUT = 60 * 60  # seconds


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MERGE_GROUP = "merge_group"
    WORKFLOW_DISPATCH = "workflow_dispatch"

    @classmethod
    def parse(cls, value: str | EventKind) -> EventKind:
        if isinstance(value, EventKind):
            return value
        v = value.strip().lower().replace("-", "_")
        if v == "manual":
            return cls.WORKFLOW_DISPATCH
        try:
            return cls(v)
        except ValueError:
            known = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown event kind {value!r}. Known kinds: {known}") from None


@dataclass(frozen=True)
class Event:
    """An incoming trigger notification. Consumed once by the trigger evaluator."""
    kind: EventKind
    branch: Optional[str] = None
    changed_paths: Tuple[str, ...] = ()
    sha: Optional[str] = None
    repository: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind.parse(self.kind))
        object.__setattr__(self, "changed_paths", tuple(self.changed_paths or ()))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Event:
        return cls(
            kind=EventKind.parse(data["kind"]),
            branch=data.get("branch"),
            changed_paths=tuple(data.get("changed_paths") or ()),
            sha=data.get("sha"),
            repository=data.get("repository"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "branch": self.branch,
            "changed_paths": list(self.changed_paths),
            "sha": self.sha,
            "repository": self.repository,
        }


@dataclass(frozen=True)
class TriggerRule:
    """
    Declarative filter for one event kind.

    branches=None means "any branch", paths=None means "any (or no) paths".
    """
    kind: EventKind
    branches: Optional[Tuple[str, ...]] = None
    paths: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind.parse(self.kind))
        if self.branches is not None:
            object.__setattr__(self, "branches", tuple(self.branches))
        if self.paths is not None:
            object.__setattr__(self, "paths", tuple(self.paths))


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    kind: str | None = None
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Job:
    """A CI job definition: ordered steps run in one private workspace."""
    name: str
    steps: Tuple[Step, ...]
    cwd: str | None = None
    timeout: float = DEFAULT_JOB_TIMEOUT
    packages: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "packages", tuple(self.packages))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        if not self.steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        if self.timeout <= 0:
            raise ValueError(f"Job '{self.name}' timeout must be positive, got {self.timeout}")

    def step_cwd(self, step: Step) -> str:
        return step.cwd or self.cwd or "."


@dataclass(frozen=True)
class Setup:
    """Parameters of the per-job environment initializer."""
    submodules: bool = True
    fetch_depth: Optional[int] = None
    toolchain: Tuple[str, ...] = ()
    quota: Optional[str] = None
    package_update: Optional[str] = None
    package_install: Optional[str] = None  # "{packages}" is replaced by the quoted list

    def __post_init__(self) -> None:
        object.__setattr__(self, "toolchain", tuple(self.toolchain))


@dataclass(frozen=True)
class SharedEnvironment:
    """Process-wide configuration visible to every step of every job."""
    variables: Mapping[str, str] = field(default_factory=dict)
    toolchain_var: str = "RUST_VERSION"
    lock_file_var: str = "LOCK_FILE"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "variables", MappingProxyType({k: str(v) for k, v in self.variables.items()})
        )

    @property
    def toolchain_version(self) -> Optional[str]:
        return self.variables.get(self.toolchain_var)

    @property
    def lock_file(self) -> Optional[str]:
        return self.variables.get(self.lock_file_var)

    def as_dict(self) -> Dict[str, str]:
        return dict(self.variables)


@dataclass(frozen=True)
class Pipeline:
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Tuple[Job, ...]
    env: SharedEnvironment = field(default_factory=SharedEnvironment)
    setup: Setup = field(default_factory=Setup)

    def __post_init__(self) -> None:
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "jobs", tuple(self.jobs))
        if not self.jobs:
            raise ValueError(f"Pipeline '{self.name}' must have at least one job")

        names = [j.name for j in self.jobs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate job names found: {dupes}")

        kinds = [r.kind for r in self.triggers]
        if len(set(kinds)) != len(kinds):
            raise ValueError(f"Pipeline '{self.name}' declares more than one rule per event kind")

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ----------------------------------------------------------------------
# Live run state
# ----------------------------------------------------------------------

class InvalidTransition(Exception):
    pass


class JobState(str, Enum):
    PENDING = "pending"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _JOB_TERMINAL


_JOB_TERMINAL = {JobState.SUCCESS, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED}


@dataclass
class JobRun:
    """A live instance of a Job bound to one event."""
    job: Job
    state: JobState = JobState.PENDING
    step_index: int = 0  # 1-indexed; 0 before the first step starts
    step_name: Optional[str] = None
    failed_step: Optional[int] = None
    error: Optional[Exception] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def outcome(self) -> str:
        if self.state == JobState.FAILED:
            return f"failed-at-step-{self.failed_step}"
        if self.state == JobState.TIMED_OUT:
            return "timed-out"
        return self.state.value

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCESS

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def _move(self, new: JobState) -> None:
        if self.state.terminal:
            raise InvalidTransition(f"[{self.name}] cannot move from {self.state.value} to {new.value}")
        self.state = new

    def initializing(self) -> None:
        if self.state != JobState.PENDING:
            raise InvalidTransition(f"[{self.name}] cannot initialize from {self.state.value}")
        self.started_at = time.time()
        self.step_index = 1
        self.step_name = "setup"
        self._move(JobState.INITIALIZING)

    def running(self, index: int, step_name: str) -> None:
        if index <= self.step_index:
            raise InvalidTransition(f"[{self.name}] step {index} cannot follow step {self.step_index}")
        self._move(JobState.RUNNING)
        self.step_index = index
        self.step_name = step_name

    def succeed(self) -> None:
        self._move(JobState.SUCCESS)
        self.finished_at = time.time()

    def fail(self, error: Exception) -> None:
        self._move(JobState.FAILED)
        self.failed_step = self.step_index
        self.error = error
        self.finished_at = time.time()

    def time_out(self, error: Exception) -> None:
        self._move(JobState.TIMED_OUT)
        self.error = error
        self.finished_at = time.time()

    def cancel(self, error: Exception | None = None) -> None:
        self._move(JobState.CANCELLED)
        self.error = error
        self.finished_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.name,
            "state": self.state.value,
            "outcome": self.outcome,
            "step": self.step_index,
            "step_name": self.step_name,
            "error": str(self.error) if self.error else None,
            "duration": self.duration,
        }


class PipelineState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """One JobRun per job of a pipeline, for a single event."""
    run_id: str
    pipeline: Pipeline
    event: Event
    jobs: Dict[str, JobRun] = field(default_factory=dict)
    state: PipelineState = PipelineState.PENDING
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.jobs:
            self.jobs = {j.name: JobRun(job=j) for j in self.pipeline.jobs}

    def start(self) -> None:
        with self._lock:
            if self.state != PipelineState.PENDING:
                raise InvalidTransition(f"pipeline run {self.run_id} already {self.state.value}")
            self.state = PipelineState.RUNNING

    def record(self, job_run: JobRun) -> None:
        """Fold a terminal JobRun into the pipeline state."""
        if not job_run.state.terminal:
            raise InvalidTransition(f"[{job_run.name}] is not finished ({job_run.state.value})")
        with self._lock:
            self.jobs[job_run.name] = job_run
            if not job_run.succeeded:
                self.state = PipelineState.FAILED
            elif self.state == PipelineState.RUNNING and all(
                r.state.terminal for r in self.jobs.values()
            ):
                self.state = aggregate(self.jobs.values())

    def finish(self) -> PipelineState:
        with self._lock:
            self.state = aggregate(self.jobs.values())
            return self.state

    def abort(self, error: Exception) -> PipelineState:
        """End a run that could not be carried through; unfinished jobs are cancelled."""
        with self._lock:
            for job_run in self.jobs.values():
                if not job_run.state.terminal:
                    job_run.cancel(error)
            self.state = PipelineState.FAILED
            return self.state

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.SUCCESS

    def failures(self) -> List[JobRun]:
        return [r for r in self.jobs.values() if r.state.terminal and not r.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline.name,
            "state": self.state.value,
            "event": self.event.to_dict(),
            "jobs": [r.to_dict() for r in self.jobs.values()],
        }


def aggregate(runs) -> PipelineState:
    """AND-reduction over job outcomes."""
    if all(r.succeeded for r in runs):
        return PipelineState.SUCCESS
    return PipelineState.FAILED
