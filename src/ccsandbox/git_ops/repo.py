"""RepositoryContext — where a project's git metadata lives on disk.

A main working tree owns its ``.git`` directory. A linked worktree instead
has a ``.git`` *file* (``gitdir: <path>``) pointing into the main
repository's ``.git/worktrees/<name>``; git inside the container can only
follow that pointer if the shared (common) git directory is mounted too.
Both shapes are captured by one discriminated value built once per run.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ccsandbox.errors import NotARepositoryError, WorktreePointerError
from ccsandbox.logger import logger

_GITDIR_PREFIX = "gitdir:"


@dataclass(frozen=True)
class RepositoryContext:
    """Resolved repository facts for one invocation.

    Attributes:
        root: Working tree to mount as the project (main tree or worktree).
        repo_name: Directory name of the *main* repository; fills ``{repo_name}``.
        is_worktree: True when ``root/.git`` is a pointer file.
        common_git_dir: Shared git directory; set only for worktrees.
    """

    root: Path
    repo_name: str
    is_worktree: bool = False
    common_git_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.is_worktree:
            if self.common_git_dir is None or not self.common_git_dir.is_absolute():
                raise ValueError("worktree context requires an absolute common_git_dir")
            if self.common_git_dir == self.root:
                raise ValueError("common_git_dir must differ from the worktree root")
        elif self.common_git_dir is not None:
            raise ValueError("common_git_dir is only meaningful for worktrees")

    @property
    def main_root(self) -> Path:
        """Root of the main working tree (equals ``root`` unless this is a worktree)."""
        if self.common_git_dir is not None and self.common_git_dir.name == ".git":
            return self.common_git_dir.parent
        return self.root


def _find_git_entry(path: Path) -> Path | None:
    """Return the nearest ``.git`` entry at or above *path*."""
    for candidate in (path, *path.parents):
        entry = candidate / ".git"
        if entry.exists() or entry.is_symlink():
            return entry
    return None


def _read_pointer(git_file: Path) -> Path:
    """Follow a ``.git`` pointer file to the repository's common git directory."""
    try:
        content = git_file.read_text()
    except (OSError, UnicodeDecodeError) as exc:
        raise WorktreePointerError(git_file, f"unreadable ({exc})") from exc

    line = next(
        (ln.strip() for ln in content.splitlines() if ln.strip().startswith(_GITDIR_PREFIX)),
        None,
    )
    if line is None:
        raise WorktreePointerError(git_file, "no 'gitdir:' line")
    target = Path(line[len(_GITDIR_PREFIX) :].strip())
    if not target.is_absolute():
        target = git_file.parent / target
    target = target.resolve()
    if not target.is_dir():
        raise WorktreePointerError(git_file, f"target {target} does not exist")

    # .git/worktrees/<name>/commondir holds the path back to the shared .git
    commondir_file = target / "commondir"
    if not commondir_file.exists():
        # submodule or --separate-git-dir: the target itself is the git dir
        return target
    try:
        common = Path(commondir_file.read_text().strip())
    except OSError as exc:
        raise WorktreePointerError(git_file, f"unreadable {commondir_file} ({exc})") from exc
    if not common.is_absolute():
        common = target / common
    common = common.resolve()
    if not common.is_dir():
        raise WorktreePointerError(git_file, f"common git dir {common} does not exist")
    return common


def _repo_name_from_git_dir(git_dir: Path) -> str:
    if git_dir.name == ".git":
        return git_dir.parent.name
    return git_dir.name.removesuffix(".git")


def resolve_repository_context(path: Path) -> RepositoryContext:
    """Inspect *path* and describe the repository it belongs to.

    Raises:
        NotARepositoryError: no ``.git`` entry at or above *path*.
        WorktreePointerError: ``.git`` is a file whose target is missing/unreadable.
    """
    path = path.expanduser().resolve()
    if not path.exists():
        raise NotARepositoryError(path)
    start = path if path.is_dir() else path.parent

    git_entry = _find_git_entry(start)
    if git_entry is None:
        raise NotARepositoryError(path)
    root = git_entry.parent

    if git_entry.is_dir():
        ctx = RepositoryContext(root=root, repo_name=root.name)
    elif git_entry.is_file():
        common = _read_pointer(git_entry)
        ctx = RepositoryContext(
            root=root,
            repo_name=_repo_name_from_git_dir(common),
            is_worktree=True,
            common_git_dir=common,
        )
    else:
        raise WorktreePointerError(git_entry, "neither a directory nor a regular file")

    logger.debug(
        "Repository context resolved",
        root=str(ctx.root),
        repo=ctx.repo_name,
        worktree=ctx.is_worktree,
    )
    return ctx
