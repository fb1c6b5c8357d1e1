# git.py
# Small wrapper around the Git CLI. Only used to label runs with the
# commit/branch they were started from.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """Current branch name, or None on a detached HEAD."""
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if ref == "HEAD" else ref


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def run_labels(cwd: Optional[str] = None) -> tuple[Optional[str], Optional[str]]:
    """
    (commit, branch) for the repository at `cwd`, or (None, None) when
    it is not a git checkout.
    """
    try:
        return head_sha(cwd), current_branch(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None, None
