# git.py
# Small, focused wrapper around the Git CLI.
# The rest of the codebase reads repository facts through this module and
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the enclosing Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """
    Name of the checked-out branch, or None on a detached HEAD.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """
    Check whether the working tree has uncommitted changes
    (modified, staged or untracked files).
    """
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def dirty_files(cwd: Optional[str | Path] = None) -> List[str]:
    """Staged, unstaged and untracked paths, relative to the repo root."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd=cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd=cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd=cwd)))
    return sorted(files)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Return a list of files changed between two Git references,
    relative to the repository root.

    Typical usage:
        base = merge_base("origin/main")
        files = changed_files(base)
    """
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd))


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """
    Commit SHA of the common ancestor between HEAD and `with_ref`:
    the point where the current branch diverged from it.
    """
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def tracked_files(cwd: Optional[str | Path] = None) -> List[str]:
    return _lines(_git(["ls-files"], cwd=cwd))


def local_changes(compare_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Files this checkout changes relative to `compare_ref`.

    Dirty trees report their uncommitted files on top of the committed
    diff. Without a usable merge-base the diff falls back to HEAD~1, and a
    repository with a single commit reports every tracked file.
    """
    root = repo_root(cwd)
    try:
        base = merge_base(compare_ref, cwd=root)
    except subprocess.CalledProcessError:
        # no remote configured, unrelated histories, etc.
        base = "HEAD~1"

    try:
        changed = set(changed_files(base, "HEAD", cwd=root))
    except subprocess.CalledProcessError:
        # HEAD~1 does not exist (first commit)
        changed = set(tracked_files(cwd=root))

    if is_dirty(cwd=root):
        changed.update(dirty_files(cwd=root))

    return sorted(changed)

