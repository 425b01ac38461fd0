"""Main entry point — one sandbox launch, end to end.

Sequence (single-threaded, each step feeds the next):
  runtime detection → repository context (worktree provisioning) →
  credential discovery → MCP secret resolution → launch plan →
  dry-run preview, or foreground/detached execution.
"""

from __future__ import annotations

import json
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ccsandbox.auth import Credential, discover_credentials
from ccsandbox.config import Settings, get_settings
from ccsandbox.container_runner._mcp import (
    apply_error_policy,
    assemble_mcp_config,
    remove_mcp_config,
    to_document,
    write_mcp_config,
)
from ccsandbox.container_runner._plan import build_launch_plan
from ccsandbox.container_runner._process import run_detached, run_foreground
from ccsandbox.container_runner._session import new_session, workspaces_in_use
from ccsandbox.errors import CannotCreateFromWorktreeError, ContainerRuntimeError, GitError
from ccsandbox.git_ops.cleanup import cleanup_orphaned_worktrees
from ccsandbox.git_ops.repo import RepositoryContext, resolve_repository_context
from ccsandbox.git_ops.worktree import create_worktree
from ccsandbox.logger import logger
from ccsandbox.runtime import ContainerRuntime, detect_runtime
from ccsandbox.secret_refs import REDACTED
from ccsandbox.state import get_registry
from ccsandbox.types import LaunchPlan

WorktreeMode = Literal["auto", "new", "here"]


@dataclass
class LaunchRequest:
    """What the user asked for on the command line."""

    path: Path
    mode: WorktreeMode = "auto"
    branch: str | None = None  # --new BRANCH
    create_branch: bool = False  # -b
    detach: bool = False
    dry_run: bool = False
    extra_args: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Repository context
# ---------------------------------------------------------------------------


def _auto_cleanup(path: Path, settings: Settings) -> None:
    try:
        repo_ctx = resolve_repository_context(path)
    except GitError:
        return
    if repo_ctx.is_worktree:
        return
    try:
        in_use = workspaces_in_use(settings)
    except ContainerRuntimeError as exc:
        logger.warning("Skipping worktree cleanup, running containers unknown", err=str(exc))
        return
    result = cleanup_orphaned_worktrees(repo_ctx, in_use=in_use, settings=settings)
    if result.removed:
        print(f"Cleaned up {len(result.removed)} orphaned worktree(s)")
    for err in result.errors:
        logger.warning("Worktree cleanup problem", detail=err)


def resolve_context(request: LaunchRequest, settings: Settings) -> RepositoryContext:
    """Resolve (and provision, if asked) the repository context to mount."""
    if request.mode == "here":
        return resolve_repository_context(request.path)
    if request.mode == "new":
        return create_worktree(
            request.path,
            request.branch,
            create_branch=request.create_branch,
            settings=settings,
        )

    if settings.worktree.auto_cleanup and not request.dry_run:
        _auto_cleanup(request.path, settings)
    try:
        return create_worktree(request.path, settings=settings)
    except CannotCreateFromWorktreeError:
        logger.debug("Already inside a worktree, using it", path=str(request.path))
        return resolve_repository_context(request.path)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def render_preview(plan: LaunchPlan, credential: Credential) -> str:
    """Dry-run output. Secret values never appear; each is shown as the mask."""
    lines = [
        f"Runtime:   {plan.runtime}",
        f"Container: {plan.container_name}",
        f"Image:     {plan.image}",
        f"Auth:      {credential.source.value} ({credential.kind})",
    ]
    if plan.env_file is not None:
        lines.append(f"Env file:  {plan.env_file}")
    lines.append("Mounts:")
    for m in plan.mounts:
        lines.append(f"  {m.host_path} -> {m.container_path}{' (ro)' if m.readonly else ''}")
    lines.append("Environment:")
    for name in plan.secret_environment:
        lines.append(f"  {name}={REDACTED}")
    for name, value in plan.environment.items():
        lines.append(f"  {name}={value}")
    if plan.mcp_servers:
        lines.append(f"MCP config ({plan.mcp_config_host_path}):")
        document = json.dumps(to_document(plan.mcp_servers, redact=True), indent=2)
        lines.extend(f"  {line}" for line in document.splitlines())
    lines.append("")
    lines.append("Command:")
    lines.append(shlex.join(plan.argv()))
    return "\n".join(lines)


def _print_banner(plan: LaunchPlan, repo_ctx: RepositoryContext, credential: Credential) -> None:
    print("Starting Claude Code sandbox" + (" (detached)..." if plan.detach else "..."))
    print(f"Runtime: {plan.runtime}")
    print(f"Container: {plan.container_name}")
    print(f"Workspace: {repo_ctx.root}")
    if repo_ctx.is_worktree:
        print("(Running in git worktree)")
    print(f"Auth: {credential.source.value}")
    if plan.env_file is not None:
        print(f"Loaded .env: {plan.env_file}")
    if plan.mcp_servers:
        print(f"MCP servers: {', '.join(plan.mcp_servers)}")
    print()


def _print_detached_help(container_name: str) -> None:
    print(f"Container started: {container_name}")
    print()
    print("Commands:")
    print("  ccs --list")
    print(f"  ccs --attach {container_name}")
    print(f"  ccs --logs {container_name}")
    print(f"  ccs --stop {container_name}")


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


def _execute(plan: LaunchPlan, repo_ctx: RepositoryContext, runtime: ContainerRuntime) -> None:
    mcp_path = plan.mcp_config_host_path
    if mcp_path is not None:
        write_mcp_config(mcp_path, plan.mcp_servers)

    if not plan.detach:
        try:
            run_foreground(plan)
        finally:
            if mcp_path is not None:
                remove_mcp_config(mcp_path)
        return

    try:
        container_id = run_detached(plan)
    except BaseException:
        if mcp_path is not None:
            remove_mcp_config(mcp_path)
        raise
    get_registry().add(
        new_session(
            container_id,
            plan.container_name,
            repo_ctx.repo_name,
            repo_ctx.root,
            runtime,
            mcp_path,
        )
    )
    _print_detached_help(plan.container_name)


def launch(request: LaunchRequest, settings: Settings | None = None) -> LaunchPlan:
    """Run one sandbox session as described by *request*; return the plan used.

    A dry run still provisions the worktree (so the printed paths exist) but
    never writes the MCP config or starts a container.
    """
    s = settings or get_settings()
    runtime = detect_runtime(s)
    repo_ctx = resolve_context(request, s)
    credential = discover_credentials()
    servers = apply_error_policy(assemble_mcp_config(s.mcp_servers), s.secrets.on_error)

    plan = build_launch_plan(
        repo_ctx,
        servers,
        credential,
        s,
        extra_args=request.extra_args,
        detach=request.detach,
        interactive_tty=sys.stdin.isatty(),
        runtime=runtime,
    )

    if request.dry_run:
        print(render_preview(plan, credential))
        return plan

    _print_banner(plan, repo_ctx, credential)
    _execute(plan, repo_ctx, runtime)
    return plan
