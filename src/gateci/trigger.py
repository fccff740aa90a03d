# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .model import Event, EventKind, TriggerRule
from .git_facts.git import current_branch, head_sha, local_changes, repo_root

_GLOB_CHARS = set("*?[")


@dataclass(frozen=True)
class TriggerDecision:
    matched: bool
    reason: str

    def __bool__(self) -> bool:
        return self.matched


def path_matches(path: str, pattern: str) -> bool:
    """
    Match a repo-relative path against a trigger path pattern.

    "horaedb/**" and "*.toml" are globs ('*' crosses directory separators).
    A pattern without glob characters is a directory (or file) prefix.
    """
    if path.startswith("./"):
        path = path[2:]
    if not _GLOB_CHARS.intersection(pattern):
        prefix = pattern.rstrip("/")
        return path == prefix or path.startswith(prefix + "/")
    return fnmatchcase(path, pattern)


def _matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(path_matches(path, p) for p in patterns)


def _rule_for(kind: EventKind, rules: Sequence[TriggerRule]) -> Optional[TriggerRule]:
    for rule in rules:
        if rule.kind == kind:
            return rule
    return None


def evaluate(event: Event, rules: Sequence[TriggerRule]) -> TriggerDecision:
    """Decide whether `event` starts a pipeline run. No side effects."""
    rule = _rule_for(event.kind, rules)
    if rule is None:
        return TriggerDecision(False, f"{event.kind.value} events are not declared")

    if event.kind in (EventKind.WORKFLOW_DISPATCH, EventKind.MERGE_GROUP):
        return TriggerDecision(True, f"{event.kind.value} always runs")

    # branch filters only apply to pushes
    if event.kind == EventKind.PUSH and rule.branches is not None:
        if event.branch not in rule.branches:
            return TriggerDecision(
                False, f"branch {event.branch!r} not in {list(rule.branches)}"
            )

    if rule.paths is not None:
        hits = [p for p in event.changed_paths if _matches_any(p, rule.paths)]
        if not hits:
            return TriggerDecision(False, f"no changed path matches {list(rule.paths)}")
        return TriggerDecision(True, f"{hits[0]} matches {list(rule.paths)}")

    return TriggerDecision(True, f"{event.kind.value} has no path filter")


def matches(event: Event, rules: Sequence[TriggerRule]) -> bool:
    return evaluate(event, rules).matched


def event_from_git(
    kind: EventKind | str = EventKind.PUSH,
    *,
    compare_ref: str = "origin/main",
    cwd: Optional[str | Path] = None,
) -> Event:
    """Derive an event from the local checkout (branch, HEAD, changed files)."""
    root = repo_root(cwd)
    return Event(
        kind=EventKind.parse(kind),
        branch=current_branch(cwd=root),
        changed_paths=tuple(local_changes(compare_ref, cwd=root)),
        sha=head_sha(cwd=root),
        repository=str(root),
    )
