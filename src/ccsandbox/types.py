"""Data models for ccsandbox."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from ccsandbox.secret_refs import REDACTED


@dataclass(frozen=True)
class VolumeMount:
    host_path: str
    container_path: str
    readonly: bool = False


@dataclass(frozen=True)
class ResourceLimits:
    memory: str | None = None  # --memory, e.g. "4g"
    cpus: float | None = None  # --cpus

    def args(self) -> list[str]:
        out: list[str] = []
        if self.memory is not None:
            out.extend(["--memory", self.memory])
        if self.cpus is not None:
            out.extend(["--cpus", f"{self.cpus:g}"])
        return out


@dataclass(frozen=True)
class ResolvedServer:
    """An MCP server with every environment value resolved.

    Values that came from a secret backend stay wrapped in ``SecretStr`` until
    the document is serialized for the agent.
    """

    name: str
    command: list[str]  # [executable, *args]
    env: dict[str, str | SecretStr] = field(default_factory=dict)

    def to_entry(self, *, redact: bool = False) -> dict[str, Any]:
        """One ``mcpServers`` entry; *redact* masks every secret-backed value."""
        entry: dict[str, Any] = {"command": self.command[0]}
        if len(self.command) > 1:
            entry["args"] = self.command[1:]
        if self.env:
            env: dict[str, str] = {}
            for name, value in self.env.items():
                if isinstance(value, SecretStr):
                    env[name] = REDACTED if redact else value.get_secret_value()
                else:
                    env[name] = value
            entry["env"] = env
        return entry


@dataclass(frozen=True)
class LaunchPlan:
    """Everything needed to start one sandbox container.

    ``environment`` holds literal values and is rendered into the argument
    vector as ``-e NAME=value``. ``secret_environment`` is rendered as
    ``-e NAME`` only; the runtime reads the value from its own process
    environment (see :meth:`process_env`), so :meth:`argv` never contains a
    secret and is identical for dry runs and real runs.
    """

    runtime: str  # runtime CLI: "podman" | "docker"
    container_name: str
    image: str
    workdir: str
    mounts: list[VolumeMount] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    secret_environment: dict[str, SecretStr] = field(default_factory=dict)
    env_file: Path | None = None
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)
    command: list[str] = field(default_factory=list)
    detach: bool = False
    interactive_tty: bool = True
    # Resolved MCP servers, written to mcp_config_host_path before a real run
    mcp_servers: dict[str, ResolvedServer] = field(default_factory=dict)
    mcp_config_host_path: Path | None = None

    def argv(self) -> list[str]:
        """Full runtime command line, e.g. ``["podman", "run", "--name", ...]``."""
        args = [self.runtime, "run", "--name", self.container_name]
        if self.detach:
            # no --rm: the session registry tracks it until `ccs --stop`
            args.append("-d")
        else:
            args.append("--rm")
            args.append("-it" if self.interactive_tty else "-i")

        args.extend(self.resource_limits.args())

        if self.env_file is not None:
            args.extend(["--env-file", str(self.env_file)])

        for m in self.mounts:
            if m.readonly:
                args.extend(
                    [
                        "--mount",
                        f"type=bind,source={m.host_path},target={m.container_path},readonly",
                    ]
                )
            else:
                args.extend(["-v", f"{m.host_path}:{m.container_path}"])

        for name in self.secret_environment:
            args.extend(["-e", name])
        for name, value in self.environment.items():
            args.extend(["-e", f"{name}={value}"])

        args.extend(["-w", self.workdir])
        args.append(self.image)
        args.extend(self.command)
        return args

    def process_env(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Environment for the runtime process: *base* (default os.environ) plus secrets."""
        env = dict(os.environ if base is None else base)
        for name, value in self.secret_environment.items():
            env[name] = value.get_secret_value()
        return env


@dataclass
class Session:
    """A detached sandbox run recorded in the local registry."""

    id: str  # container id (short form)
    container_name: str
    repo_name: str
    created_at: str  # ISO 8601, UTC
    workspace: str = ""  # host path mounted at /workspace
    runtime: str = ""
    mcp_config_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Session:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})
