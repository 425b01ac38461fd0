"""Volume mount list construction."""

from __future__ import annotations

from pathlib import Path

from ccsandbox.config import Settings
from ccsandbox.git_ops.repo import RepositoryContext
from ccsandbox.types import VolumeMount

MCP_CONFIG_CONTAINER_SUBPATH = ".config/ccsandbox/mcp.json"


def mcp_config_container_path(settings: Settings) -> str:
    return f"{settings.container_home}/{MCP_CONFIG_CONTAINER_SUBPATH}"


def _parse_extra_volume(host: str, target: str) -> VolumeMount:
    """``{"~/data": "/data:ro"}`` → read-only mount of the expanded host path."""
    readonly = target.endswith(":ro")
    container_path = target.removesuffix(":ro").removesuffix(":rw")
    return VolumeMount(str(Path(host).expanduser()), container_path, readonly=readonly)


def build_mounts(
    repo_ctx: RepositoryContext,
    settings: Settings,
    mcp_host_path: Path | None = None,
) -> list[VolumeMount]:
    """Build the mount list for one sandbox run, in fixed order.

    1. project root → workdir (rw)
    2. shared git dir → same absolute path (rw), worktrees only
    3. ``~/.claude`` → container home (ro), when ``mount_credentials_dir``
    4. resolved MCP config (ro), when there is one
    5. ``container.extra_volumes``
    """
    s = settings
    mounts = [VolumeMount(str(repo_ctx.root), s.container.workdir)]

    if repo_ctx.is_worktree and repo_ctx.common_git_dir is not None:
        # The worktree's .git file holds this absolute path; git inside the
        # container resolves it only if the directory sits at the same place.
        # Read-write: objects and refs are shared across worktrees.
        git_dir = str(repo_ctx.common_git_dir)
        mounts.append(VolumeMount(git_dir, git_dir))

    if s.container.mount_credentials_dir and s.claude_dir.is_dir():
        mounts.append(
            VolumeMount(str(s.claude_dir), f"{s.container_home}/.claude", readonly=True)
        )

    if mcp_host_path is not None:
        mounts.append(
            VolumeMount(str(mcp_host_path), mcp_config_container_path(s), readonly=True)
        )

    for host, target in s.container.extra_volumes.items():
        mounts.append(_parse_extra_volume(host, target))

    return mounts
