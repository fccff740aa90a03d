from __future__ import annotations

import threading
from dataclasses import replace
from pathlib import Path
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field, field_validator

from .. import settings
from ..coordinator import new_run_id, run_pipeline
from ..executor import StepExecutor
from ..model import Event, EventKind, Pipeline, PipelineRun
from ..pipelines.metric_engine import workflow as metric_engine_workflow
from ..runner import load_workflow
from ..trigger import evaluate
from ..ui.console import get_console

# -------------------- Schemas --------------------

class EventIn(BaseModel):
    kind: str
    branch: Optional[str] = None
    changed_paths: list[str] = Field(default_factory=list)
    sha: Optional[str] = None
    repository: Optional[str] = None

    @field_validator("kind")
    @classmethod
    def known_kind(cls, v: str) -> str:
        return EventKind.parse(v).value


class EventResponse(BaseModel):
    matched: bool
    reason: str
    run_id: Optional[str] = None


class JobResponse(BaseModel):
    job: str
    state: str
    outcome: str
    step: int
    step_name: Optional[str]
    error: Optional[str]
    duration: Optional[float]


class RunResponse(BaseModel):
    run_id: str
    pipeline: str
    state: str
    event: dict
    jobs: list[JobResponse]


class RunSummary(BaseModel):
    run_id: str
    state: str

# -------------------- Registry --------------------

class RunRegistry:
    """In-memory run store shared by request handlers and background runs."""

    def __init__(self):
        self._runs: dict[str, PipelineRun] = {}
        self._lock = threading.Lock()

    def add(self, run: PipelineRun) -> None:
        with self._lock:
            self._runs[run.run_id] = run

    def get(self, run_id: str) -> Optional[PipelineRun]:
        with self._lock:
            return self._runs.get(run_id)

    def all(self) -> list[PipelineRun]:
        with self._lock:
            return list(self._runs.values())

# -------------------- App --------------------

def default_pipeline() -> Pipeline:
    if settings.WORKFLOW:
        return load_workflow(settings.WORKFLOW)
    return metric_engine_workflow()


def create_app(
    pipeline: Optional[Pipeline] = None,
    executor: Optional[StepExecutor] = None,
    work_dir: str | Path | None = None,
    repository: Optional[str] = None,
    fail_fast: bool = False,
) -> FastAPI:
    pipeline = pipeline or default_pipeline()
    repository = repository or settings.REPOSITORY
    registry = RunRegistry()

    app = FastAPI(title=f"gateci: {pipeline.name}")
    app.state.pipeline = pipeline
    app.state.registry = registry

    def _run(run: PipelineRun) -> None:
        try:
            run_pipeline(
                pipeline,
                run.event,
                work_dir=work_dir,
                executor=executor,
                fail_fast=fail_fast,
                pipeline_run=run,
            )
        except Exception as e:
            # a background task has nobody to raise to; the run must not stay "running"
            get_console().print_exception(e)
            run.abort(e)

    # -------------------- Endpoints --------------------

    @app.post("/events", response_model=EventResponse)
    def receive_event(req: EventIn, background: BackgroundTasks):
        event = Event.from_dict(req.model_dump())
        if event.repository is None and repository:
            event = replace(event, repository=repository)

        decision = evaluate(event, pipeline.triggers)
        if not decision.matched:
            return EventResponse(matched=False, reason=decision.reason)

        run = PipelineRun(run_id=new_run_id(), pipeline=pipeline, event=event)
        registry.add(run)
        background.add_task(_run, run)
        return EventResponse(matched=True, reason=decision.reason, run_id=run.run_id)

    @app.get("/runs", response_model=list[RunSummary])
    def list_runs():
        return [RunSummary(run_id=r.run_id, state=r.state.value) for r in registry.all()]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        run = registry.get(run_id)
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")
        return RunResponse(**run.to_dict())

    return app


app = create_app()
