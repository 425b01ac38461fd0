"""Environment status report for ``ccs --status``.

Every check is best-effort: a missing runtime or credential is reported,
not raised. Credential values are never shown, only their source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ccsandbox.auth import Credential, discover_credentials
from ccsandbox.config import Settings, config_path, get_settings
from ccsandbox.errors import AuthDiscoveryExhausted, ContainerRuntimeError
from ccsandbox.runtime import ContainerRuntime, detect_runtime
from ccsandbox.state.sessions import CONTAINER_PREFIX


@dataclass
class StatusReport:
    runtime: ContainerRuntime | None = None
    runtime_version: str | None = None
    image: str = ""
    image_exists: bool = False
    running_containers: list[str] = field(default_factory=list)
    containers_error: str | None = None
    credential: Credential | None = None
    credential_sources_tried: list[str] = field(default_factory=list)
    config_path: Path | None = None
    config_exists: bool = False
    mcp_servers: list[str] = field(default_factory=list)
    memory_limit: str | None = None
    cpu_limit: float | None = None

    def render(self) -> str:
        lines = ["=== ccs status ===", ""]
        if self.runtime is not None:
            lines.append(
                f"Container runtime: {self.runtime.name} ({self.runtime_version or 'unknown'})"
            )
        else:
            lines.append("Container runtime: NOT FOUND")
            lines.append("  Install podman or docker to use ccs")
        image_state = "available" if self.image_exists else "NOT FOUND"
        lines.append(f"Image '{self.image}': {image_state}")
        if self.containers_error:
            lines.append(f"Running ccs containers: UNKNOWN ({self.containers_error})")
        elif self.running_containers:
            lines.append("Running ccs containers:")
            lines.extend(f"  - {name}" for name in self.running_containers)
        else:
            lines.append("Running ccs containers: none")
        lines.append("")

        if self.credential is not None:
            lines.append(
                f"Claude credentials: {self.credential.source.value} ({self.credential.kind})"
            )
        else:
            lines.append("Claude credentials: NOT FOUND")
            if self.credential_sources_tried:
                lines.append("  Tried: " + ", ".join(self.credential_sources_tried))
            lines.append("  Run 'claude login' on the host, or set ANTHROPIC_API_KEY")
        lines.append("")

        if self.config_path is not None:
            state = "exists" if self.config_exists else "not created (ccs --config)"
            lines.append(f"Config: {self.config_path} ({state})")
        servers = ", ".join(self.mcp_servers) if self.mcp_servers else "none"
        lines.append(f"MCP servers: {servers}")
        lines.append("")

        lines.append("Resource limits:")
        lines.append(f"  Memory: {self.memory_limit or 'unlimited'}")
        cpus = f"{self.cpu_limit:g} cores" if self.cpu_limit is not None else "unlimited"
        lines.append(f"  CPU: {cpus}")
        return "\n".join(lines)


def check_status(settings: Settings | None = None) -> StatusReport:
    s = settings or get_settings()
    report = StatusReport(
        image=s.container.image,
        config_path=config_path(),
        mcp_servers=list(s.mcp_servers),
        memory_limit=s.container.memory_limit,
        cpu_limit=s.container.cpu_limit,
    )
    report.config_exists = report.config_path is not None and report.config_path.exists()

    try:
        runtime = detect_runtime(s)
    except ContainerRuntimeError:
        runtime = None
    if runtime is not None:
        report.runtime = runtime
        report.runtime_version = runtime.version()
        report.image_exists = runtime.image_exists(s.container.image)
        try:
            report.running_containers = runtime.list_containers(CONTAINER_PREFIX)
        except ContainerRuntimeError as exc:
            report.containers_error = str(exc)

    try:
        report.credential = discover_credentials()
    except AuthDiscoveryExhausted as exc:
        report.credential_sources_tried = exc.tried
    return report
