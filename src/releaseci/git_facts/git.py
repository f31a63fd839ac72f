# git.py
# Small, focused wrapper around the Git CLI.
# Used only for local runs, where the trigger ref/commit are not supplied
# by the CI environment.

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
    """
    Full SHA of HEAD.

    The first 7 characters become the short commit used for build stamping.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def get_current_ref(cwd: Optional[str] = None) -> str:
    """
    Current branch name, or "HEAD" when detached.
    """
    # `--abbrev-ref` prints "HEAD" for a detached checkout
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL of the given remote, e.g. for naming the repository in the run header."""
    return _git(["remote", "get-url", remote], cwd=cwd)
