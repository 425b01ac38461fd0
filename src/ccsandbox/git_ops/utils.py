"""Shared git helpers used by the repo, worktree and cleanup modules."""

from __future__ import annotations

import subprocess
from pathlib import Path

from ccsandbox.errors import GitError


def run_git(*args: str, cwd: Path) -> subprocess.CompletedProcess[str]:
    """Run a git command with output captured. Never raises on non-zero exit."""
    try:
        return subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
        )
    except FileNotFoundError as exc:
        raise GitError("git not found on PATH") from exc


class GitCommandError(GitError):
    """Raised when a git command fails."""

    def __init__(self, command: str, stderr: str, returncode: int) -> None:
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"git {command} failed (exit {returncode}): {stderr}")


def require_success(result: subprocess.CompletedProcess[str], command: str) -> str:
    """Assert that a git command succeeded, raising GitCommandError otherwise.

    Returns the stripped stdout on success.
    """
    if result.returncode != 0:
        raise GitCommandError(command, result.stderr.strip(), result.returncode)
    return result.stdout.strip()


def branch_exists(repo_root: Path, branch: str) -> bool:
    result = run_git("rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", cwd=repo_root)
    return result.returncode == 0


def is_repo_dirty(cwd: Path) -> bool:
    """Check if the working tree has uncommitted changes.

    Errs on the side of "dirty" when git cannot tell.
    """
    try:
        result = run_git("status", "--porcelain", cwd=cwd)
    except GitError:
        return True
    if result.returncode != 0:
        return True
    return bool(result.stdout.strip())
