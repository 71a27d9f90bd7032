# git.py
# Small, focused wrapper around the Git CLI.
# Built-in actions and the variable provider go through here instead of
# calling subprocess("git ...") themselves.

from __future__ import annotations

import logging
import subprocess
from typing import List, Optional

from ..errors import FabrunError

logger = logging.getLogger(__name__)


class GitError(FabrunError):
    """git is missing or exited non-zero."""


def _git(args: list[str], cwd: Optional[str] = None, *, strip: bool = True) -> str:
    """
    Execute a git command and return its stdout.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.
        strip: Strip surrounding whitespace. Porcelain output needs its
               leading status columns, so callers parsing it pass False.

    Returns:
        Stdout from the git command.

    Raises:
        GitError: git is not installed or the command failed.
    """
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd or ".")
    try:
        out = subprocess.check_output(
            ["git", *args],
            cwd=cwd,
            text=True,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError:
        raise GitError("git executable not found in PATH") from None
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise GitError(f"git {' '.join(args)} failed: {detail}") from None

    return out.strip() if strip else out.rstrip("\n")


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked-out branch.

    Returns an empty string on a detached HEAD.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    return "" if name == "HEAD" else name


def status_porcelain(cwd: Optional[str] = None) -> List[str]:
    """
    `git status --porcelain` lines, each starting with the two-column
    XY status code (e.g. "?? new.txt", "M  staged.py", " M edited.py").
    """
    out = _git(["status", "--porcelain"], cwd, strip=False)
    return [line for line in out.splitlines() if line.strip()]


def modified_files(cwd: Optional[str] = None) -> List[str]:
    """Tracked files with unstaged modifications (`git diff --name-only`)."""
    out = _git(["diff", "--name-only"], cwd)
    if not out:
        return []
    return out.splitlines()


def tags_by_version(cwd: Optional[str] = None) -> List[str]:
    """
    All tags, greatest version first.

    Relies on git's own `version:refname` ordering so `v1.10.0` sorts
    above `v1.9.0`.
    """
    out = _git(["tag", "--sort=-version:refname"], cwd)
    if not out:
        return []
    return [t.strip() for t in out.splitlines() if t.strip()]
