"""Pytest configuration and fixtures."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from gateci.executor import CommandResult
from gateci.model import Event, EventKind
from gateci.pipelines.metric_engine import workflow

REPO = "https://example.invalid/apache/horaedb.git"
SHA = "0123456789abcdef0123456789abcdef01234567"


@dataclass
class Call:
    command: str
    cwd: Path
    env: Dict[str, str]


class FakeExecutor:
    """
    Scripted stand-in for ShellExecutor.

    fail: command substring -> exit code returned instead of 0
    hooks: command substring -> callable(command, cwd, cancel) whose return
           value (exit code) replaces the scripted one; may raise
    """

    def __init__(
        self,
        fail: Optional[Dict[str, int]] = None,
        hooks: Optional[Dict[str, Callable]] = None,
    ):
        self.fail = dict(fail or {})
        self.hooks = dict(hooks or {})
        self.calls: List[Call] = []
        self._lock = threading.Lock()

    def __call__(self, command, *, cwd, env, deadline=None, cancel=None):
        with self._lock:
            self.calls.append(Call(command=command, cwd=Path(cwd), env=dict(env)))
        for needle, hook in self.hooks.items():
            if needle in command:
                return CommandResult(hook(command, Path(cwd), cancel))
        for needle, code in self.fail.items():
            if needle in command:
                return CommandResult(code, f"{needle}: exit {code}")
        return CommandResult(0)

    def commands(self) -> List[str]:
        with self._lock:
            return [c.command for c in self.calls]

    def count(self, needle: str) -> int:
        return sum(1 for c in self.commands() if needle in c)

    def ran(self, needle: str) -> bool:
        return self.count(needle) > 0

    def calls_for(self, needle: str) -> List[Call]:
        with self._lock:
            return [c for c in self.calls if needle in c.command]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def metric_engine():
    return workflow()


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def make_event():
    def _make(kind="push", branch="main", paths=("horaedb/src/engine.rs",), **kw):
        kw.setdefault("sha", SHA)
        kw.setdefault("repository", REPO)
        return Event(kind=EventKind.parse(kind), branch=branch, changed_paths=tuple(paths), **kw)

    return _make


@pytest.fixture
def push_event(make_event):
    return make_event()


@pytest.fixture
def make_executor():
    return FakeExecutor
