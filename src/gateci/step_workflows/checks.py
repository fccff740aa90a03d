# step_workflows/checks.py
from __future__ import annotations

import shlex
from typing import List

from ..dsl import sh
from ..model import Step


# ---------------------------------------------------------------------
# Tool installation
# ---------------------------------------------------------------------

def tools_step(
    name: str,
    *,
    components: List[str] | None = None,
    cargo_installs: List[str] | None = None,
    cwd: str | None = ".",
) -> Step:
    """
    Install the extra binaries a check needs.

    components: rustup components (clippy, rustfmt, ...)
    cargo_installs: raw `cargo install` argument strings
    """
    cmds = [f"rustup component add {shlex.quote(c)}" for c in components or []]
    cmds += [f"cargo install {args}" for args in cargo_installs or []]
    if not cmds:
        raise ValueError(f"tools_step({name!r}) installs nothing")
    return sh(
        name,
        cmds,
        cwd=cwd,
        kind="tools",
        data={"components": list(components or []), "cargo_installs": list(cargo_installs or [])},
    )


# ---------------------------------------------------------------------
# make targets (fmt, sort, clippy, test, ...)
# ---------------------------------------------------------------------

def make_step(name: str, *targets: str, cwd: str | None = None, kind: str = "check") -> Step:
    """One `make` invocation; every target must pass for the step to pass."""
    if not targets:
        raise ValueError(f"make_step({name!r}) needs at least one target")
    return sh(
        name,
        "make " + " ".join(shlex.quote(t) for t in targets),
        cwd=cwd,
        kind=kind,
        data={"targets": list(targets)},
    )


# ---------------------------------------------------------------------
# Drift check
# ---------------------------------------------------------------------

def drift_step(name: str = "Check lock", *, paths: List[str] | None = None, cwd: str | None = None) -> Step:
    """
    Fail when earlier steps left the checkout different from the commit,
    e.g. a regenerated lock file.
    """
    cmd = "git diff --exit-code"
    if paths:
        cmd += " -- " + " ".join(shlex.quote(p) for p in paths)
    return sh(name, cmd, cwd=cwd, kind="drift", data={"paths": list(paths or [])})
