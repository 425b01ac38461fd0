"""MCP server configuration models.

Defines the Pydantic model for MCP server definitions. Imported by
:mod:`ccsandbox.config` to keep that file lean.

Example TOML::

    [mcp_servers.github]
    command = "npx -y @modelcontextprotocol/server-github"
    env = { GITHUB_PERSONAL_ACCESS_TOKEN = "op://Dev/GitHub/token" }

    [mcp_servers.postgres]
    command = "uvx"
    args = ["mcp-server-postgres", "--readonly"]
    env = { DATABASE_URL = "pass://work/db-url", PGAPPNAME = "claude" }

``env`` values are either literals or secret references
(``env://``, ``pass://``, ``op://``, ``bws://``), resolved at launch.
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator


class McpServerConfig(BaseModel):
    """One MCP server definition, as declared by the user."""

    model_config = {"extra": "forbid", "frozen": True}

    # Split on whitespace only; there is no shell quoting. Use ``args`` for arguments
    # that contain spaces.
    command: str
    args: list[str] = []
    env: dict[str, str] = {}

    @field_validator("command")
    @classmethod
    def _require_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("MCP server command cannot be empty")
        return v

    def argv(self) -> list[str]:
        """Return ``[executable, *implicit_args, *args]``."""
        parts = self.command.split()
        return [*parts, *self.args]
