"""Container runner — turns resolved facts into a sandbox container run.

This package is split into focused submodules:
  _mcp          — MCP server secret resolution and the agent's config document
  _mounts       — Volume mount list construction
  _plan         — Launch plan assembly (argument vector, environment, limits)
  _process      — Foreground/detached execution and signal forwarding
  _session      — Detached session commands (list, attach, logs, stop)
  _orchestrator — Main entry point (launch) and dry-run preview
"""

# Re-export public API so that `from ccsandbox.container_runner import X` works.
# Private helpers (_xxx) should be imported from their submodules directly.

from ccsandbox.container_runner._mcp import (
    McpAssembly,
    apply_error_policy,
    assemble_mcp_config,
    to_document,
)
from ccsandbox.container_runner._orchestrator import LaunchRequest, launch, render_preview
from ccsandbox.container_runner._plan import build_launch_plan, generate_container_name
from ccsandbox.container_runner._session import (
    attach_session,
    format_sessions,
    list_sessions,
    show_logs,
    stop_session,
)

__all__ = [
    "LaunchRequest",
    "McpAssembly",
    "apply_error_policy",
    "assemble_mcp_config",
    "attach_session",
    "build_launch_plan",
    "format_sessions",
    "generate_container_name",
    "launch",
    "list_sessions",
    "render_preview",
    "show_logs",
    "stop_session",
    "to_document",
]
