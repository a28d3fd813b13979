# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the repository containing `cwd`."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """Current branch name, or "HEAD" when detached."""
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def clone(url: str, dest: str | Path, *, depth: int = 0) -> None:
    """Clone `url` into `dest` (which may exist if empty)."""
    args = ["clone", "--quiet"]
    if depth > 0:
        args += ["--depth", str(depth), "--no-single-branch"]
    _git([*args, url, str(dest)])


def checkout(ref: str, cwd: str | Path) -> None:
    """Detached checkout of `ref` (branch, tag or commit)."""
    _git(["checkout", "--quiet", "--detach", ref], cwd=cwd)


def fetch_ref(ref: str, cwd: str | Path, remote: str = "origin") -> None:
    """Fetch a ref that a plain clone does not carry (e.g. refs/pull/N/merge) into FETCH_HEAD."""
    _git(["fetch", "--quiet", remote, ref], cwd=cwd)
