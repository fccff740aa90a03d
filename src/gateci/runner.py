# runner.py
from __future__ import annotations

import os
import runpy
import threading
import time
from pathlib import Path
from typing import Dict, Mapping, Optional

from .environment import EnvironmentInitializer
from .errors import CIError, JobCancelled, JobTimeout, StepExecutionFailure
from .executor import ShellExecutor, StepExecutor, execute
from .model import Event, Job, JobRun, Pipeline, Step
from .ui.console import get_console

SETUP_STEP_NAME = "Set up environment"


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - workflow() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"gateci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    pipeline = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        pipeline = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        pipeline = globals_dict["PIPELINE"]

    if not isinstance(pipeline, Pipeline):
        raise TypeError(
            "Workflow must return/define a Pipeline. "
            "Define workflow() -> Pipeline or PIPELINE = wf(...)."
        )
    return pipeline


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def build_env(pipeline: Pipeline, job: Job, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Process env, then shared pipeline env, then job env (later wins)."""
    env = dict(os.environ if base is None else base)
    env.update(pipeline.env.as_dict())
    env.update(job.env)
    return env


def _check_deadline(job: Job, step_name: str, deadline: float) -> None:
    """A step that returned after the deadline still times the job out."""
    if time.monotonic() >= deadline:
        raise JobTimeout(
            job=job.name, step=step_name, message=f"job exceeded {job.timeout:g}s", timeout=job.timeout
        )


def _run_step(
    job: Job,
    index: int,
    step: Step,
    workspace: Path,
    executor: StepExecutor,
    env: Mapping[str, str],
    deadline: float,
    cancel: Optional[threading.Event],
) -> None:
    cwd = (workspace / job.step_cwd(step)).resolve()
    try:
        result = execute(
            executor,
            step.run,
            job=job.name,
            step=step.name,
            cwd=cwd,
            env=env,
            timeout=job.timeout,
            deadline=deadline,
            cancel=cancel,
        )
    except OSError as e:
        raise StepExecutionFailure(
            job=job.name, step=step.name, message=str(e), index=index, cmd=step.run
        ) from e
    _check_deadline(job, step.name, deadline)

    if not result.ok:
        message = "uncommitted changes detected" if step.kind == "drift" else "command exited non-zero"
        raise StepExecutionFailure(
            job=job.name,
            step=step.name,
            message=message,
            index=index,
            cmd=step.run,
            exit_code=result.exit_code,
            output=result.output,
        )


def run_job(
    job: Job,
    pipeline: Pipeline,
    event: Event,
    workspace: str | Path,
    executor: Optional[StepExecutor] = None,
    *,
    cancel: Optional[threading.Event] = None,
    initializer: Optional[EnvironmentInitializer] = None,
    job_run: Optional[JobRun] = None,
) -> JobRun:
    """
    Run one job to its terminal state and return the JobRun.

    Step 1 is the environment setup, the job's declared steps follow as
    2..N. The first failing step ends the job; there are no retries.
    Errors never escape: they are recorded on the returned JobRun.
    """
    console = get_console()
    executor = executor or ShellExecutor()
    initializer = initializer or EnvironmentInitializer(pipeline.setup, pipeline.env, executor)
    run = job_run or JobRun(job=job)
    workspace = Path(workspace).resolve()
    env = build_env(pipeline, job)
    deadline = time.monotonic() + job.timeout

    console.print_job_start(job.name)
    try:
        run.initializing()
        console.print_step(job.name, 1, SETUP_STEP_NAME)
        initializer.initialize(job, workspace, event, env=env, deadline=deadline, cancel=cancel)
        _check_deadline(job, SETUP_STEP_NAME, deadline)

        for index, step in enumerate(job.steps, start=2):
            run.running(index, step.name)
            console.print_step(job.name, index, step.name)
            _run_step(job, index, step, workspace, executor, env, deadline, cancel)
    except JobTimeout as e:
        run.time_out(e)
    except JobCancelled as e:
        run.cancel(e)
    except CIError as e:
        run.fail(e)
    except Exception as e:
        # executor bugs end the job like any other step failure
        console.print_exception(e)
        run.fail(e)
    else:
        run.succeed()

    console.print_job_outcome(run)
    return run
