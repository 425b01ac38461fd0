"""Orphaned worktree cleanup.

Worktrees created in default mode carry a generated branch
(``<prefix>-YYYYmmdd-HHMMSS-xxxxxx``) and pile up under the worktree base.
One is removed only when nothing could be lost: no session uses it, the
tree is clean, its branch has no commits outside the main line, and it has
not been touched for ``worktree.cleanup_min_age_seconds``.

Failures are collected in :class:`CleanupResult`; cleanup never aborts a
launch.
"""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from ccsandbox.config import Settings, get_settings
from ccsandbox.errors import GitError
from ccsandbox.git_ops.repo import RepositoryContext
from ccsandbox.git_ops.utils import is_repo_dirty, run_git
from ccsandbox.git_ops.worktree import WorktreeEntry, list_worktrees, resolve_worktree_base
from ccsandbox.logger import logger

_MAIN_LINE_REFS = ("main", "master", "origin/main", "origin/master")


@dataclass
class CleanupResult:
    removed: list[Path] = field(default_factory=list)
    kept: dict[Path, str] = field(default_factory=dict)  # path → reason
    errors: list[str] = field(default_factory=list)


def _has_unmerged_commits(main_root: Path, branch: str) -> bool:
    """True when *branch* has commits missing from the first main-line ref found.

    Errs on the side of "unmerged" when no main-line ref exists.
    """
    for base in _MAIN_LINE_REFS:
        result = run_git("log", f"{base}..{branch}", "--oneline", cwd=main_root)
        if result.returncode == 0:
            return bool(result.stdout.strip())
    return True


def _age_seconds(path: Path) -> float:
    return time.time() - path.stat().st_mtime


def _keep_reason(
    entry: WorktreeEntry,
    main_root: Path,
    in_use: set[Path],
    min_age: int,
) -> str | None:
    """Why *entry* must stay, or None when it is safe to remove."""
    if entry.path.resolve() in in_use:
        return "in use by a session"
    if is_repo_dirty(entry.path):
        return "has uncommitted changes"
    if entry.branch and _has_unmerged_commits(main_root, entry.branch):
        return "branch has unmerged commits"
    if _age_seconds(entry.path) < min_age:
        return "recently modified"
    return None


def _remove_worktree(main_root: Path, path: Path) -> None:
    result = run_git("worktree", "remove", "--force", str(path), cwd=main_root)
    if result.returncode == 0:
        return
    logger.debug(
        "git worktree remove failed, deleting directory",
        path=str(path),
        err=result.stderr.strip(),
    )
    shutil.rmtree(path)
    run_git("worktree", "prune", cwd=main_root)


def cleanup_orphaned_worktrees(
    repo_ctx: RepositoryContext,
    *,
    in_use: set[Path] | None = None,
    settings: Settings | None = None,
) -> CleanupResult:
    """Remove generated-branch worktrees of *repo_ctx*'s repository that hold no work.

    Args:
        in_use: Worktree roots mounted by live sessions; never removed.
    """
    s = settings or get_settings()
    result = CleanupResult()
    main_root = repo_ctx.main_root
    base = resolve_worktree_base(s.worktree.base_path, repo_ctx.repo_name, main_root)
    prefix = f"{s.worktree.branch_prefix}-"
    busy = {p.resolve() for p in (in_use or set())}

    try:
        entries = list_worktrees(main_root)
    except GitError as exc:
        result.errors.append(f"{main_root}: {exc}")
        return result

    for entry in entries:
        if entry.branch is None or not entry.branch.startswith(prefix):
            continue
        if entry.path.parent.resolve() != base.resolve():
            continue
        if not entry.path.exists():
            # registered but deleted by hand: let git forget it
            run_git("worktree", "prune", cwd=main_root)
            continue

        try:
            reason = _keep_reason(entry, main_root, busy, s.worktree.cleanup_min_age_seconds)
        except (GitError, OSError) as exc:
            result.errors.append(f"{entry.path}: {exc}")
            continue
        if reason is not None:
            result.kept[entry.path] = reason
            continue

        try:
            _remove_worktree(main_root, entry.path)
        except OSError as exc:
            result.errors.append(f"{entry.path}: {exc}")
            continue
        result.removed.append(entry.path)
        logger.info("Orphaned worktree removed", path=str(entry.path), branch=entry.branch)

    return result
