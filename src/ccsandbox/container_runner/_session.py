"""Detached session commands: list, attach, logs, stop.

Sessions are looked up in the registry (:mod:`ccsandbox.state.sessions`)
by container name, name without the ``ccs-`` prefix, id, or unique prefix.
"""

from __future__ import annotations

import subprocess
from datetime import UTC, datetime
from pathlib import Path

from ccsandbox.config import Settings, get_settings
from ccsandbox.container_runner._mcp import remove_mcp_config
from ccsandbox.container_runner._process import stop_container
from ccsandbox.errors import ContainerRuntimeError
from ccsandbox.logger import logger
from ccsandbox.runtime import ContainerRuntime, detect_runtime
from ccsandbox.state import get_registry
from ccsandbox.state.sessions import CONTAINER_PREFIX
from ccsandbox.types import Session


def _forget(session: Session) -> None:
    if session.mcp_config_path:
        remove_mcp_config(Path(session.mcp_config_path))


def new_session(
    container_id: str,
    container_name: str,
    repo_name: str,
    workspace: Path,
    runtime: ContainerRuntime,
    mcp_config_path: Path | None,
) -> Session:
    return Session(
        id=container_id,
        container_name=container_name,
        repo_name=repo_name,
        created_at=datetime.now(UTC).isoformat(timespec="seconds"),
        workspace=str(workspace),
        runtime=runtime.name,
        mcp_config_path=str(mcp_config_path) if mcp_config_path else None,
    )


def list_sessions(settings: Settings | None = None) -> list[Session]:
    """Registered sessions whose containers are still running.

    Sessions of exited containers are dropped from the registry. When the
    runtime cannot list containers, ContainerRuntimeError propagates and the
    registry is left untouched.
    """
    runtime = detect_runtime(settings or get_settings())
    running = set(runtime.list_containers(CONTAINER_PREFIX))
    for session in get_registry().prune(running):
        _forget(session)
    return get_registry().list()


def workspaces_in_use(settings: Settings | None = None) -> set[Path]:
    """Host workspaces that cleanup must keep.

    Covers registered sessions and the workspace mount of every running
    ``ccs-`` container, so foreground runs are protected too. Without an
    installed runtime only the registry counts.

    Raises:
        ContainerRuntimeError: the runtime is installed but cannot list containers.
    """
    s = settings or get_settings()
    in_use = {Path(x.workspace) for x in get_registry().list() if x.workspace}
    try:
        runtime = detect_runtime(s)
    except ContainerRuntimeError:
        return in_use
    for name in runtime.list_containers(CONTAINER_PREFIX):
        source = runtime.mount_source(name, s.container.workdir)
        if source is not None:
            in_use.add(source)
    return in_use


def format_sessions(sessions: list[Session]) -> str:
    if not sessions:
        return "No ccs sessions running."
    rows = [("NAME", "ID", "REPO", "STARTED", "WORKSPACE")]
    rows.extend(
        (s.container_name, s.id, s.repo_name, s.created_at, s.workspace) for s in sessions
    )
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]) - 1)]
    lines = []
    for row in rows:
        cells = [cell.ljust(width) for cell, width in zip(row, widths, strict=False)]
        lines.append("  ".join([*cells, row[-1]]).rstrip())
    return "\n".join(lines)


def _runtime_for(session: Session, settings: Settings | None) -> ContainerRuntime:
    """The runtime that started *session*, falling back to detection."""
    if session.runtime:
        return ContainerRuntime(name=session.runtime, cli=session.runtime)
    return detect_runtime(settings or get_settings())


def _run_interactive(argv: list[str]) -> None:
    try:
        returncode = subprocess.run(argv).returncode
    except OSError as exc:
        raise ContainerRuntimeError(f"Failed to run {argv[0]}: {exc}") from exc
    # 130: interrupted with Ctrl+C, the normal way out of `logs -f`
    if returncode not in (0, 130):
        raise ContainerRuntimeError(
            f"{' '.join(argv[:2])} exited with status {returncode}", exit_code=returncode
        )


def attach_session(query: str, settings: Settings | None = None) -> Session:
    session = get_registry().find(query)
    runtime = _runtime_for(session, settings)
    print(f"Attaching to {session.container_name}...")
    print("(Use Ctrl+P, Ctrl+Q to detach without stopping)\n")
    _run_interactive([runtime.cli, "attach", session.container_name])
    return session


def show_logs(query: str, *, follow: bool = True, settings: Settings | None = None) -> Session:
    session = get_registry().find(query)
    runtime = _runtime_for(session, settings)
    argv = [runtime.cli, "logs"]
    if follow:
        argv.append("-f")
    argv.append(session.container_name)
    _run_interactive(argv)
    return session


def stop_session(query: str, settings: Settings | None = None) -> Session:
    """Stop and remove the container, drop it from the registry, delete its MCP file."""
    session = get_registry().find(query)
    runtime = _runtime_for(session, settings)
    print(f"Stopping {session.container_name}...")
    stop_container(runtime.cli, session.container_name)
    get_registry().remove(session.container_name)
    _forget(session)
    logger.info("Session stopped", container=session.container_name)
    return session
