# coordinator.py
from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional

from . import settings
from .executor import ShellExecutor, StepExecutor
from .model import Event, JobRun, Pipeline, PipelineRun
from .runner import run_job
from .trigger import evaluate
from .ui.console import get_console


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    work_dir: str | Path | None = None,
    executor: Optional[StepExecutor] = None,
    fail_fast: bool = False,
    run_id: Optional[str] = None,
    pipeline_run: Optional[PipelineRun] = None,
    on_update: Optional[Callable[[PipelineRun, JobRun], None]] = None,
) -> PipelineRun:
    """
    Run every job of `pipeline` concurrently for one event.

    - One thread per job, each with a private workspace
      <work_dir>/<run_id>/<job name>.
    - The run fails as soon as any job ends in a non-success state; its
      final state is the AND of all job outcomes.
    - fail_fast=False waits for every job. fail_fast=True cancels the
      other jobs once one fails (their in-flight step is killed).
    """
    console = get_console()
    executor = executor or ShellExecutor()
    run = pipeline_run or PipelineRun(run_id=run_id or new_run_id(), pipeline=pipeline, event=event)
    root = Path(work_dir or settings.WORK_DIR).resolve() / run.run_id
    cancel = threading.Event()

    console.print_run_started(pipeline, event, run.run_id)
    run.start()

    with ThreadPoolExecutor(max_workers=len(pipeline.jobs), thread_name_prefix="gateci-job") as pool:
        futures = {}
        for job in pipeline.jobs:
            job_run = run.jobs[job.name]
            fut = pool.submit(
                run_job,
                job,
                pipeline,
                event,
                root / job.name,
                executor,
                cancel=cancel if fail_fast else None,
                job_run=job_run,
            )
            futures[fut] = job_run

        for fut in as_completed(futures):
            job_run = futures[fut]
            try:
                fut.result()
            except Exception as e:
                # run_job records its own errors; this only guards the worker itself
                console.print_exception(e)
                if not job_run.state.terminal:
                    job_run.fail(e)

            run.record(job_run)
            if on_update is not None:
                on_update(run, job_run)

            if fail_fast and not job_run.succeeded and not cancel.is_set():
                console.print_info(f"✗ {job_run.name} failed, cancelling remaining jobs")
                cancel.set()

    run.finish()
    return run


def dispatch(
    pipeline: Pipeline,
    event: Event,
    **kwargs,
) -> Optional[PipelineRun]:
    """
    Evaluate the pipeline triggers against `event` and run the pipeline if
    they match. Returns None (no run is created) when they do not.
    """
    decision = evaluate(event, pipeline.triggers)
    get_console().print_trigger(event, decision)
    if not decision.matched:
        return None
    return run_pipeline(pipeline, event, **kwargs)
