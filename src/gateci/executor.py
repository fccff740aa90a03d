# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Deque, List, Mapping, Optional, Protocol

from . import settings
from .errors import CommandCancelled, CommandTimeout, JobCancelled, JobTimeout


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepExecutor(Protocol):
    """
    Anything that can run one shell command to completion.

    Implementations must block until the command exits, raise CommandTimeout
    once `deadline` (a time.monotonic() value) passes and CommandCancelled
    once `cancel` is set, killing the command in both cases.
    """

    def __call__(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult: ...


class OutputTail:
    """Keeps only the last `limit` characters of a command's output."""

    def __init__(self, limit: int, chunk_size: int = 8192):
        self.limit = limit
        self.chunk_size = chunk_size
        self._chunks: Deque[str] = deque()
        self._size = 0

    def feed(self, chunk: str) -> None:
        self._chunks.append(chunk)
        self._size += len(chunk)
        while self._chunks and self._size - len(self._chunks[0]) >= self.limit:
            self._size -= len(self._chunks.popleft())

    def drain(self, stream: IO[str]) -> None:
        with stream:
            for chunk in iter(lambda: stream.read(self.chunk_size), ""):
                self.feed(chunk)

    def text(self) -> str:
        if self.limit <= 0:
            return ""
        return "".join(self._chunks)[-self.limit:]


class ShellExecutor:
    """Runs commands through bash in their own process group."""

    def __init__(
        self,
        shell: Optional[List[str]] = None,
        poll_interval: Optional[float] = None,
        output_tail: Optional[int] = None,
    ):
        self.shell = list(shell or settings.SHELL)
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL
        self.output_tail = output_tail if output_tail is not None else settings.OUTPUT_TAIL

    def __call__(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        cwd = Path(cwd)
        if not cwd.is_dir():
            raise FileNotFoundError(f"cwd not found: {cwd}")

        proc = subprocess.Popen(
            [*self.shell, command],
            cwd=str(cwd),
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,  # _kill signals the whole group
        )

        tail = OutputTail(self.output_tail)
        reader = threading.Thread(target=tail.drain, args=(proc.stdout,), daemon=True)
        reader.start()

        while True:
            if cancel is not None and cancel.is_set():
                self._kill(proc)
                raise CommandCancelled(command)

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._kill(proc)
                    raise CommandTimeout(command)
                wait = min(wait, remaining)

            try:
                proc.wait(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                continue

        reader.join()
        return CommandResult(exit_code=proc.returncode, output=tail.text())

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()


def execute(
    executor: StepExecutor,
    command: str,
    *,
    job: str,
    step: str,
    cwd: Path,
    env: Mapping[str, str],
    timeout: float,
    deadline: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> CommandResult:
    """
    Run one command for a job, turning deadline/cancellation into job errors.

    Checked before the command starts too, so nothing new is launched for a
    job that already ran out of time or was cancelled.
    """
    if cancel is not None and cancel.is_set():
        raise JobCancelled(job=job, step=step, message="job cancelled")
    if deadline is not None and time.monotonic() >= deadline:
        raise JobTimeout(job=job, step=step, message=f"job exceeded {timeout:g}s", timeout=timeout)

    try:
        return executor(command, cwd=cwd, env=env, deadline=deadline, cancel=cancel)
    except CommandTimeout:
        raise JobTimeout(job=job, step=step, message=f"job exceeded {timeout:g}s", timeout=timeout) from None
    except CommandCancelled:
        raise JobCancelled(job=job, step=step, message="job cancelled") from None
