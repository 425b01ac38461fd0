"""Container runtime detection.

Podman is preferred when both runtimes are installed; ``container.runtime``
in the config forces one. Both CLIs accept the same ``run``/``ps``/``logs``
vocabulary, so the rest of the package only needs the executable name.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ccsandbox.config import Settings, get_settings
from ccsandbox.errors import ContainerRuntimeError
from ccsandbox.logger import logger

SUPPORTED_RUNTIMES = ("podman", "docker")


@dataclass(frozen=True)
class ContainerRuntime:
    name: str
    cli: str  # absolute path or bare executable name

    def run(self, *args: str, check: bool = False) -> subprocess.CompletedProcess[str]:
        """Run a runtime CLI command with output captured."""
        return subprocess.run(
            [self.cli, *args],
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
            check=check,
        )

    def version(self) -> str | None:
        result = self.run("--version")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def image_exists(self, image: str) -> bool:
        return self.run("image", "inspect", image).returncode == 0

    def list_containers(self, prefix: str) -> list[str]:
        """Names of running containers starting with *prefix*.

        Raises:
            ContainerRuntimeError: ``ps`` failed (daemon down, socket not
                accessible). An empty list always means "none running".
        """
        result = self.run("ps", "--filter", f"name={prefix}", "--format", "{{.Names}}")
        if result.returncode != 0:
            raise ContainerRuntimeError(
                f"Failed to list containers with {self.name}: {result.stderr.strip()}",
                exit_code=result.returncode,
            )
        return [
            name.strip()
            for name in result.stdout.splitlines()
            if name.strip().startswith(prefix)
        ]

    def mount_source(self, container: str, destination: str) -> Path | None:
        """Host path mounted at *destination* inside *container*, if any.

        A container that exited since it was listed yields None.
        """
        template = (
            '{{range .Mounts}}{{if eq .Destination "'
            + destination
            + '"}}{{.Source}}{{end}}{{end}}'
        )
        result = self.run("inspect", "--format", template, container)
        if result.returncode != 0:
            logger.debug("Container vanished before inspect", container=container)
            return None
        source = result.stdout.strip()
        return Path(source) if source else None


def _available(name: str) -> ContainerRuntime | None:
    if shutil.which(name) is None:
        return None
    return ContainerRuntime(name=name, cli=name)


def detect_runtime(settings: Settings | None = None) -> ContainerRuntime:
    """Pick the container runtime to use.

    Priority:
    1) ``container.runtime`` override (must be installed)
    2) podman, then docker

    Raises:
        ContainerRuntimeError: no supported runtime is installed.
    """
    s = settings or get_settings()
    override = s.container.runtime
    if override:
        runtime = _available(override)
        if runtime is None:
            raise ContainerRuntimeError(
                f"Configured container runtime '{override}' is not installed or not on PATH"
            )
        logger.debug("Using configured container runtime", runtime=override)
        return runtime

    for name in SUPPORTED_RUNTIMES:
        runtime = _available(name)
        if runtime is not None:
            logger.debug("Container runtime detected", runtime=name)
            return runtime

    raise ContainerRuntimeError(
        "No container runtime found. Install podman (preferred) or docker."
    )
