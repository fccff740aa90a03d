# src/gateci/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .model import (
    DEFAULT_JOB_TIMEOUT,
    EventKind,
    Job,
    Pipeline,
    Setup,
    SharedEnvironment,
    Step,
    TriggerRule,
)


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str | Iterable[str],
    *,
    cwd: str | None = None,
    kind: str | None = None,
    data: Optional[Dict[str, Any]] = None,
) -> Step:
    """Create a shell step. A list of commands becomes one script."""
    run = cmd if isinstance(cmd, str) else "\n".join(cmd)
    return Step(name=name, run=run, cwd=cwd, kind=kind, data=data)


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    cwd: str | None = None,  # default cwd for steps that don't set one
    timeout_minutes: float | None = None,
    packages: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    return Job(
        name=name,
        steps=tuple(steps_final),
        cwd=cwd,
        timeout=timeout_minutes * 60 if timeout_minutes is not None else DEFAULT_JOB_TIMEOUT,
        packages=tuple(packages or ()),
        # force values to str so they can go straight into a process env
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Triggers, environment, setup
# ---------------------------------------------------------------------

def on(
    kind: EventKind | str,
    *,
    branches: Optional[List[str]] = None,
    paths: Optional[List[str]] = None,
) -> TriggerRule:
    """
    Declare one trigger rule.

        on("push", branches=["main"], paths=["horaedb/**"])
        on("workflow_dispatch")
    """
    kind = EventKind.parse(kind)
    if branches is not None and kind != EventKind.PUSH:
        raise ValueError(f"branch filters are only supported for push, not {kind.value}")
    return TriggerRule(
        kind=kind,
        branches=tuple(branches) if branches is not None else None,
        paths=tuple(paths) if paths is not None else None,
    )


def env(
    *,
    toolchain_var: str = "RUST_VERSION",
    lock_file_var: str = "LOCK_FILE",
    **variables: Any,
) -> SharedEnvironment:
    return SharedEnvironment(
        variables={k: str(v) for k, v in variables.items()},
        toolchain_var=toolchain_var,
        lock_file_var=lock_file_var,
    )


def setup(
    *,
    submodules: bool = True,
    fetch_depth: Optional[int] = None,
    toolchain: Optional[List[str]] = None,
    quota: Optional[str] = None,
    package_update: Optional[str] = None,
    package_install: Optional[str] = None,
) -> Setup:
    return Setup(
        submodules=submodules,
        fetch_depth=fetch_depth,
        toolchain=tuple(toolchain or ()),
        quota=quota,
        package_update=package_update,
        package_install=package_install,
    )


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Job,
    on: Iterable[TriggerRule],
    env: Optional[SharedEnvironment] = None,
    setup: Optional[Setup] = None,
) -> Pipeline:
    """
    Workflow definition helper.

    Users can write:
        from gateci.dsl import wf, job, sh, on

        def workflow():
            return wf(
                "My CI",
                job(...),
                job(...),
                on=[on("workflow_dispatch")],
            )

    Or define PIPELINE directly:
        PIPELINE = wf("My CI", job(...), on=[...])
    """
    return Pipeline(
        name=name,
        triggers=tuple(on),
        jobs=tuple(jobs),
        env=env or SharedEnvironment(),
        setup=setup or Setup(),
    )

