import os
import shutil
import subprocess
import threading
import time

import pytest

from gateci.dsl import job, on, setup, sh, wf
from gateci.errors import CommandCancelled, CommandTimeout
from gateci.executor import OutputTail, ShellExecutor
from gateci.model import Event, EventKind, JobState
from gateci.runner import run_job
from gateci.step_workflows.checks import drift_step

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available"),
]


@pytest.fixture
def shell():
    return ShellExecutor(poll_interval=0.05)


def test_exit_code_and_output_are_captured(shell, tmp_path):
    result = shell("echo hello; echo oops >&2; exit 3", cwd=tmp_path, env=os.environ)
    assert result.exit_code == 3
    assert not result.ok
    assert "hello" in result.output
    assert "oops" in result.output


def test_script_stops_at_first_failing_line(shell, tmp_path):
    result = shell("false\necho after", cwd=tmp_path, env=os.environ)
    assert result.exit_code == 1
    assert "after" not in result.output


def test_environment_is_passed(shell, tmp_path):
    env = dict(os.environ, RUST_VERSION="nightly-2024-01-28")
    result = shell('test "$RUST_VERSION" = nightly-2024-01-28', cwd=tmp_path, env=env)
    assert result.ok


def test_output_tail_is_bounded(tmp_path):
    shell = ShellExecutor(output_tail=10)
    result = shell("printf '%0100d' 0", cwd=tmp_path, env=os.environ)
    assert len(result.output) == 10


def test_long_output_keeps_only_the_tail(tmp_path):
    shell = ShellExecutor(output_tail=20)
    result = shell("seq 1 200000", cwd=tmp_path, env=os.environ)
    assert result.ok
    assert result.output.endswith("199999\n200000\n")
    assert len(result.output) == 20


def test_output_tail_drops_old_chunks():
    tail = OutputTail(5)
    for chunk in ["aaaa", "bbbb", "cccc", "dd"]:
        tail.feed(chunk)
    assert tail.text() == "cccdd"
    assert len(tail._chunks) == 2


def test_missing_cwd(shell, tmp_path):
    with pytest.raises(FileNotFoundError):
        shell("true", cwd=tmp_path / "nope", env=os.environ)


def test_deadline_kills_the_command(shell, tmp_path):
    start = time.monotonic()
    with pytest.raises(CommandTimeout):
        shell("sleep 30", cwd=tmp_path, env=os.environ, deadline=time.monotonic() + 0.3)
    assert time.monotonic() - start < 10


def test_cancel_kills_the_command(shell, tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(CommandCancelled):
            shell("sleep 30", cwd=tmp_path, env=os.environ, cancel=cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - start < 10


# ----------------------------------------------------------------------
# End to end against a real local repository
# ----------------------------------------------------------------------

def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=gateci", "-c", "user.email=gateci@example.invalid", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def local_repo(tmp_path):
    if shutil.which("git") is None:
        pytest.skip("git not available")
    repo = tmp_path / "origin"
    (repo / "horaedb").mkdir(parents=True)
    (repo / "horaedb" / "Cargo.lock").write_text("version = 3\n")
    _git(repo, "init", "-q")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "init")
    sha = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=repo, text=True).strip()
    return repo, sha


def _pipeline(*steps, timeout_minutes=None):
    return wf(
        "local",
        job("check", *steps, cwd="horaedb", timeout_minutes=timeout_minutes),
        on=[on("workflow_dispatch")],
        setup=setup(submodules=True),
    )


def test_job_checks_out_and_runs(local_repo, tmp_path, shell):
    repo, sha = local_repo
    pipeline = _pipeline(sh("Lock present", "test -f Cargo.lock"), drift_step())
    event = Event(kind=EventKind.WORKFLOW_DISPATCH, sha=sha, repository=str(repo))

    run = run_job(pipeline.job("check"), pipeline, event, tmp_path / "ws", shell)

    assert run.state is JobState.SUCCESS, run.error


def test_drift_in_lock_file_fails_the_job(local_repo, tmp_path, shell):
    repo, sha = local_repo
    pipeline = _pipeline(sh("Regenerate lock", "echo 'version = 4' > Cargo.lock"), drift_step())
    event = Event(kind=EventKind.WORKFLOW_DISPATCH, sha=sha, repository=str(repo))

    run = run_job(pipeline.job("check"), pipeline, event, tmp_path / "ws", shell)

    assert run.outcome == "failed-at-step-3"
    assert "Cargo.lock" in run.error.output


def test_job_timeout_terminates_running_step(local_repo, tmp_path, shell):
    repo, sha = local_repo
    pipeline = _pipeline(sh("Hang", "sleep 30"), timeout_minutes=0.5 / 60)
    event = Event(kind=EventKind.WORKFLOW_DISPATCH, sha=sha, repository=str(repo))

    start = time.monotonic()
    run = run_job(pipeline.job("check"), pipeline, event, tmp_path / "ws", shell)

    assert run.outcome == "timed-out"
    assert time.monotonic() - start < 10


def test_event_from_local_checkout(local_repo):
    from gateci.pipelines.metric_engine import workflow
    from gateci.trigger import event_from_git, matches

    repo, sha = local_repo
    _git(repo, "checkout", "-q", "-b", "dev")
    (repo / "horaedb" / "engine.rs").write_text("fn main() {}\n")

    event = event_from_git("push", cwd=repo / "horaedb")

    assert event.kind is EventKind.PUSH
    assert event.branch == "dev"
    assert event.sha == sha
    # single commit without a remote: every tracked file plus the dirty ones
    assert event.changed_paths == ("horaedb/Cargo.lock", "horaedb/engine.rs")
    assert matches(event, workflow().triggers)
