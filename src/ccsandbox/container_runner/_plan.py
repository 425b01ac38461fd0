"""Launch plan assembly — one fresh, fully resolved plan per run."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence

from pydantic import SecretStr

from ccsandbox.auth import Credential
from ccsandbox.config import Settings, get_settings
from ccsandbox.container_runner._mcp import mcp_config_path
from ccsandbox.container_runner._mounts import build_mounts, mcp_config_container_path
from ccsandbox.git_ops.repo import RepositoryContext
from ccsandbox.logger import logger
from ccsandbox.runtime import ContainerRuntime, detect_runtime
from ccsandbox.secret_refs import ResolvedSecret, resolve_value
from ccsandbox.state.sessions import CONTAINER_PREFIX
from ccsandbox.types import LaunchPlan, ResolvedServer, ResourceLimits

# Agent flag required for non-interactive runs inside the sandbox.
SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"
MCP_CONFIG_FLAG = "--mcp-config"


def generate_container_name(repo_name: str) -> str:
    """``ccs-<repo>-<6 digits>``, short enough to type for attach/logs/stop."""
    safe_name = "".join(c if c.isalnum() or c in "-_." else "-" for c in repo_name.lower())
    return f"{CONTAINER_PREFIX}{safe_name.strip('-.') or 'repo'}-{int(time.time()) % 1_000_000}"


def _split_extra_env(
    extra_env: Mapping[str, str],
) -> tuple[dict[str, str], dict[str, SecretStr]]:
    literals: dict[str, str] = {}
    secrets: dict[str, SecretStr] = {}
    for name, value in extra_env.items():
        resolved = resolve_value(value)
        if isinstance(resolved, ResolvedSecret):
            secrets[name] = resolved.value
        else:
            literals[name] = resolved
    return literals, secrets


def build_launch_plan(
    repo_ctx: RepositoryContext,
    mcp_servers: Mapping[str, ResolvedServer],
    credential: Credential,
    settings: Settings | None = None,
    *,
    container_name: str | None = None,
    extra_args: Sequence[str] = (),
    detach: bool = False,
    interactive_tty: bool = True,
    runtime: ContainerRuntime | None = None,
) -> LaunchPlan:
    """Assemble every flag of the ``<runtime> run`` invocation.

    The plan depends only on its inputs: a dry run and a real run built from
    the same inputs yield the same :meth:`LaunchPlan.argv`.

    Raises:
        ContainerRuntimeError: no runtime installed (checked before anything else).
        SecretResolutionError: a secret reference in ``container.extra_env`` failed.
    """
    s = settings or get_settings()
    rt = runtime or detect_runtime(s)
    name = container_name or generate_container_name(repo_ctx.repo_name)

    mcp_host_path = mcp_config_path(s.runtime_dir, name) if mcp_servers else None
    mounts = build_mounts(repo_ctx, s, mcp_host_path)

    environment, secret_environment = _split_extra_env(s.container.extra_env)
    if credential.env_var in s.container.extra_env:
        logger.warning("extra_env entry shadowed by credential", var=credential.env_var)
        environment.pop(credential.env_var, None)
        secret_environment.pop(credential.env_var, None)
    secret_environment = {credential.env_var: credential.token, **secret_environment}

    env_file = None
    if s.container.load_env_file:
        candidate = repo_ctx.root / s.container.env_file_path
        if candidate.is_file():
            env_file = candidate

    command = [SKIP_PERMISSIONS_FLAG]
    if mcp_host_path is not None:
        command.extend([MCP_CONFIG_FLAG, mcp_config_container_path(s)])
    command.extend(extra_args)

    plan = LaunchPlan(
        runtime=rt.cli,
        container_name=name,
        image=s.container.image,
        workdir=s.container.workdir,
        mounts=mounts,
        environment=environment,
        secret_environment=secret_environment,
        env_file=env_file,
        resource_limits=ResourceLimits(
            memory=s.container.memory_limit, cpus=s.container.cpu_limit
        ),
        command=command,
        detach=detach,
        interactive_tty=interactive_tty,
        mcp_servers=dict(mcp_servers),
        mcp_config_host_path=mcp_host_path,
    )
    logger.debug(
        "Launch plan built",
        container=name,
        runtime=rt.name,
        mounts=len(mounts),
        mcp_servers=list(mcp_servers),
    )
    return plan
