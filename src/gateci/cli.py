# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from gateci import settings
from gateci.coordinator import run_pipeline
from gateci.model import Event, EventKind, Pipeline
from gateci.pipelines.metric_engine import workflow as metric_engine_workflow
from gateci.runner import load_workflow
from gateci.trigger import evaluate, event_from_git
from gateci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "gateci_workflow.py"
EVENT_KINDS = [k.value for k in EventKind] + ["manual"]


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_pipeline(workflow_arg: str | None) -> Pipeline:
    """
    Load the pipeline named by --workflow, else the single workflow file in
    the current directory, else the built-in metric engine pipeline.

    Raises:
        SystemExit: If the workflow cannot be found or several exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  gateci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return load_workflow(workflow_path)

    workflow_files = find_workflow_files()

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  gateci run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    if workflow_files:
        console.print_debug(f"Using workflow file {workflow_files[0]}")
        return load_workflow(workflow_files[0])

    console.print_debug("No workflow file found, using the built-in metric engine pipeline")
    return metric_engine_workflow()


def build_event(
    kind: str,
    branch: str | None,
    paths: tuple[str, ...],
    sha: str | None,
    source: str | None,
    compare_ref: str,
    use_git: bool,
) -> Event:
    """Event from the command line, with gaps filled from the local checkout."""
    event_kind = EventKind.parse(kind)
    if not use_git:
        return Event(kind=event_kind, branch=branch, changed_paths=paths, sha=sha, repository=source)

    console = get_console()
    try:
        local = event_from_git(event_kind, compare_ref=compare_ref)
    except subprocess.CalledProcessError as e:
        console.print_error(
            "Could not read git state",
            "The current directory is not usable as a git checkout.",
            details=[(e.stderr or str(e)).strip()],
            suggestion="Run inside the repository or pass --no-git with --branch/--path/--source.",
        )
        sys.exit(1)
    except FileNotFoundError:
        console.print_error(
            "Git command not found",
            "Could not find git command.",
            suggestion="Install Git or pass --no-git with --branch/--path/--source.",
        )
        sys.exit(1)

    return Event(
        kind=event_kind,
        branch=branch or local.branch,
        changed_paths=paths or local.changed_paths,
        sha=sha or local.sha,
        repository=source or local.repository,
    )


def event_options(fn):
    options = [
        click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)"),
        click.option("--event", "kind", type=click.Choice(EVENT_KINDS), default="push", show_default=True, help="Event kind"),
        click.option("--branch", default=None, help="Branch name (defaults to the current branch)"),
        click.option("--path", "paths", multiple=True, help="Changed path (repeatable; defaults to git diff)"),
        click.option("--sha", default=None, help="Commit to check out (defaults to HEAD)"),
        click.option("--source", default=None, help="Repository to clone (defaults to the local repo root)"),
        click.option("--compare-ref", default=settings.COMPARE_REF, show_default=True, help="Git ref to diff against"),
        click.option("--git/--no-git", "use_git", default=True, show_default=True, help="Fill missing event fields from the local checkout"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
def cli(debug):
    """gateci: trigger-filtered, parallel CI gate runner."""
    set_console(Console(debug=debug))


@cli.command()
@event_options
@click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Directory for job workspaces")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Cancel the other jobs after the first failure")
@click.option("--force", is_flag=True, default=False, help="Run even if the triggers do not match")
def run(workflow, kind, branch, paths, sha, source, compare_ref, use_git, work_dir, fail_fast, force):
    """Evaluate the triggers for an event and run the pipeline."""
    console = get_console()
    event = build_event(kind, branch, paths, sha, source, compare_ref, use_git)

    try:
        pipeline = discover_pipeline(workflow)

        decision = evaluate(event, pipeline.triggers)
        console.print_trigger(event, decision)
        if not decision.matched and not force:
            console.print_info("No pipeline run.")
            return

        result = run_pipeline(pipeline, event, work_dir=work_dir, fail_fast=fail_fast)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(result)
    if not result.succeeded:
        sys.exit(1)


@cli.command()
@event_options
@click.option("--exit-code", is_flag=True, default=False, help="Exit 1 when the triggers do not match")
def trigger(workflow, kind, branch, paths, sha, source, compare_ref, use_git, exit_code):
    """Evaluate the triggers for an event without running anything."""
    console = get_console()
    pipeline = discover_pipeline(workflow)
    event = build_event(kind, branch, paths, sha, source, compare_ref, use_git)

    decision = evaluate(event, pipeline.triggers)
    console.print_trigger(event, decision)
    if exit_code and not decision.matched:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
def plan(workflow):
    """Print the pipeline's triggers, jobs and numbered steps."""
    get_console().print_plan(discover_pipeline(workflow))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
