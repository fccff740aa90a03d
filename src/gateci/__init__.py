from .dsl import env, job, on, setup, sh, wf
from .model import Event, EventKind, Job, Pipeline, PipelineRun, Step, TriggerRule
from .coordinator import dispatch, run_pipeline
from .runner import load_workflow, run_job
from .trigger import evaluate, matches

__all__ = [
    "env", "job", "on", "setup", "sh", "wf",
    "Event", "EventKind", "Job", "Pipeline", "PipelineRun", "Step", "TriggerRule",
    "dispatch", "run_pipeline", "load_workflow", "run_job", "evaluate", "matches",
]
