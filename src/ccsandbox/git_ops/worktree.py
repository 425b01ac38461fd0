"""Git worktree provisioning for sandbox runs.

Each run can get its own worktree so the agent works on an isolated branch
while sharing the main repository's object store. Worktrees live under a
configurable base path (``worktree.base_path``, default
``../{repo_name}-worktrees``) at ``<base>/<branch>``.

Nothing here is rolled back: if a later step of the launch fails, the branch
and worktree stay on disk so the user can inspect or reuse them.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ccsandbox.config import Settings, get_settings
from ccsandbox.errors import (
    BranchNotFoundError,
    CannotCreateFromWorktreeError,
    GitError,
    WorktreeConflict,
)
from ccsandbox.git_ops.repo import RepositoryContext, resolve_repository_context
from ccsandbox.git_ops.utils import GitCommandError, branch_exists, require_success, run_git
from ccsandbox.logger import logger

REPO_NAME_PLACEHOLDER = "{repo_name}"

# git worktree add stderr when the branch is checked out elsewhere
_IN_USE_MARKERS = ("already checked out", "already used by worktree", "is already locked")


@dataclass(frozen=True)
class WorktreeSpec:
    branch_name: str
    target_directory: Path
    create_branch: bool


@dataclass(frozen=True)
class WorktreeEntry:
    """One record of ``git worktree list --porcelain``."""

    path: Path
    branch: str | None  # short name; None when detached


def generate_branch_name(prefix: str = "ccs") -> str:
    """Unique per run: timestamp plus a random suffix for same-second launches."""
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:6]}"


def resolve_worktree_base(template: str, repo_name: str, repo_root: Path) -> Path:
    """Expand ``{repo_name}`` and ``~``; relative templates hang off *repo_root*."""
    expanded = Path(template.replace(REPO_NAME_PLACEHOLDER, repo_name)).expanduser()
    if not expanded.is_absolute():
        expanded = repo_root / expanded
    return Path(os.path.normpath(expanded))


def build_worktree_spec(
    repo_ctx: RepositoryContext,
    branch_name: str,
    *,
    create_branch: bool,
    settings: Settings | None = None,
) -> WorktreeSpec:
    s = settings or get_settings()
    base = resolve_worktree_base(s.worktree.base_path, repo_ctx.repo_name, repo_ctx.main_root)
    return WorktreeSpec(
        branch_name=branch_name,
        target_directory=base / branch_name,
        create_branch=create_branch,
    )


def list_worktrees(repo_root: Path) -> list[WorktreeEntry]:
    output = require_success(
        run_git("worktree", "list", "--porcelain", cwd=repo_root), "worktree list"
    )
    entries: list[WorktreeEntry] = []
    path: Path | None = None
    branch: str | None = None
    for line in [*output.splitlines(), ""]:
        if line.startswith("worktree "):
            path = Path(line.removeprefix("worktree "))
        elif line.startswith("branch "):
            branch = line.removeprefix("branch ").removeprefix("refs/heads/")
        elif not line.strip() and path is not None:
            entries.append(WorktreeEntry(path=path, branch=branch))
            path, branch = None, None
    return entries


def _find_worktree(repo_root: Path, target: Path) -> WorktreeEntry | None:
    resolved = target.resolve()
    for entry in list_worktrees(repo_root):
        if entry.path.resolve() == resolved:
            return entry
    return None


def _validate_branch_name(repo_root: Path, branch: str) -> None:
    result = run_git("check-ref-format", "--branch", branch, cwd=repo_root)
    if result.returncode != 0:
        raise GitError(f"Invalid branch name: '{branch}'")


def provision_worktree(repo_ctx: RepositoryContext, spec: WorktreeSpec) -> RepositoryContext:
    """Create (or reuse) the worktree described by *spec*.

    Reuse: the target directory already is a worktree on the same branch.

    Raises:
        WorktreeConflict: target exists as something else, or ``create_branch``
            was requested for a branch that already exists.
        BranchNotFoundError: ``create_branch`` is False and the branch is missing.
        GitError: git itself failed.
    """
    main_root = repo_ctx.main_root
    target = spec.target_directory
    branch = spec.branch_name
    _validate_branch_name(main_root, branch)

    if target.exists():
        entry = _find_worktree(main_root, target)
        if entry is not None and entry.branch == branch:
            logger.info("Reusing existing worktree", branch=branch, path=str(target))
            return resolve_repository_context(target)
        detail = f" (worktree on branch '{entry.branch}')" if entry is not None else ""
        raise WorktreeConflict(
            f"Worktree directory already exists: {target}{detail}", branch=branch, path=target
        )

    if spec.create_branch:
        if branch_exists(main_root, branch):
            raise WorktreeConflict(
                f"Branch '{branch}' already exists. Use --new without -b to check it out.",
                branch=branch,
            )
        require_success(run_git("branch", branch, cwd=main_root), f"branch {branch}")
        logger.info("Branch created", branch=branch)
    elif not branch_exists(main_root, branch):
        raise BranchNotFoundError(branch)

    # forget worktrees whose directories were deleted by hand
    run_git("worktree", "prune", cwd=main_root)
    target.parent.mkdir(parents=True, exist_ok=True)
    add = run_git("worktree", "add", str(target), branch, cwd=main_root)
    if add.returncode != 0:
        stderr = add.stderr.strip()
        if any(marker in stderr for marker in _IN_USE_MARKERS):
            raise WorktreeConflict(
                f"Branch '{branch}' is already checked out in another worktree: {stderr}",
                branch=branch,
            )
        raise GitCommandError("worktree add", stderr, add.returncode)

    logger.info("Worktree created", branch=branch, path=str(target))
    return resolve_repository_context(target)


def create_worktree(
    project_path: Path,
    branch_name: str | None = None,
    *,
    create_branch: bool = False,
    settings: Settings | None = None,
) -> RepositoryContext:
    """Provision a worktree for *project_path*'s repository.

    With no *branch_name*, a unique branch is generated and created.
    Refuses to run from inside a linked worktree.
    """
    s = settings or get_settings()
    repo_ctx = resolve_repository_context(project_path)
    if repo_ctx.is_worktree:
        raise CannotCreateFromWorktreeError(repo_ctx.root)

    if branch_name is None:
        branch_name = generate_branch_name(s.worktree.branch_prefix)
        create_branch = True

    spec = build_worktree_spec(repo_ctx, branch_name, create_branch=create_branch, settings=s)
    return provision_worktree(repo_ctx, spec)
