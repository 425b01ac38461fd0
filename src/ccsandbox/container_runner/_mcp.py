"""MCP server config assembly — resolve secrets, serialize for the agent.

Every ``env`` value of every configured server is resolved through
:mod:`ccsandbox.secret_refs`. One server's failure never stops the others:
failures are collected per server and variable, and the caller applies the
``secrets.on_error`` policy.

The serialized document follows the agent's ``--mcp-config`` format::

    {"mcpServers": {"github": {"command": "npx", "args": [...], "env": {...}}}}

It is written only for real runs, into the per-user runtime directory with
owner-only permissions, and deleted when the run ends.
"""

from __future__ import annotations

import contextlib
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import SecretStr

from ccsandbox.config_mcp import McpServerConfig
from ccsandbox.errors import PluginConfigError, SecretResolutionError
from ccsandbox.logger import logger
from ccsandbox.secret_refs import ResolvedSecret, resolve_value
from ccsandbox.types import ResolvedServer

MCP_CONFIG_FILENAME = "mcp.json"


@dataclass
class McpAssembly:
    """Outcome of resolving every server; both maps keep declaration order."""

    servers: dict[str, ResolvedServer] = field(default_factory=dict)
    failures: dict[str, dict[str, SecretResolutionError]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def _resolve_server(
    name: str, server: McpServerConfig
) -> tuple[ResolvedServer | None, dict[str, SecretResolutionError]]:
    env: dict[str, str | SecretStr] = {}
    errors: dict[str, SecretResolutionError] = {}
    for var, value in server.env.items():
        try:
            resolved = resolve_value(value)
        except SecretResolutionError as exc:
            errors[var] = exc
            continue
        env[var] = resolved.value if isinstance(resolved, ResolvedSecret) else resolved
    if errors:
        return None, errors
    return ResolvedServer(name=name, command=server.argv(), env=env), {}


def assemble_mcp_config(servers: Mapping[str, McpServerConfig]) -> McpAssembly:
    """Resolve every server's environment; collect failures instead of raising."""
    result = McpAssembly()
    for name, server in servers.items():
        resolved, errors = _resolve_server(name, server)
        if resolved is not None:
            result.servers[name] = resolved
        else:
            result.failures[name] = errors
            for var, err in errors.items():
                logger.debug(
                    "MCP secret unresolved", server=name, var=var, kind=err.kind.value
                )
    return result


def apply_error_policy(
    assembly: McpAssembly, on_error: Literal["abort", "skip"]
) -> dict[str, ResolvedServer]:
    """Return the servers to launch with, or raise PluginConfigError under "abort"."""
    if assembly.ok:
        return assembly.servers
    if on_error == "abort":
        raise PluginConfigError(assembly.failures)
    for name, errors in assembly.failures.items():
        logger.warning(
            "Skipping MCP server with unresolved secrets",
            server=name,
            variables=sorted(errors),
            kinds=sorted({e.kind.value for e in errors.values()}),
        )
    return assembly.servers


def to_document(servers: Mapping[str, ResolvedServer], *, redact: bool = False) -> dict[str, Any]:
    return {"mcpServers": {name: s.to_entry(redact=redact) for name, s in servers.items()}}


def mcp_config_path(runtime_dir: Path, container_name: str) -> Path:
    return runtime_dir / container_name / MCP_CONFIG_FILENAME


def write_mcp_config(path: Path, servers: Mapping[str, ResolvedServer]) -> None:
    """Write the resolved document readable by the owner only."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.parent.chmod(0o700)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(to_document(servers), f, indent=2)
    logger.debug("MCP config written", path=str(path), servers=list(servers))


def remove_mcp_config(path: Path) -> None:
    """Delete the document and its per-container directory. Missing files are fine."""
    path.unlink(missing_ok=True)
    with contextlib.suppress(OSError):
        path.parent.rmdir()
