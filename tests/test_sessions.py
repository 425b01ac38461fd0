"""Tests for the session registry and detached session commands."""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from ccsandbox.container_runner import format_sessions, list_sessions, stop_session
from ccsandbox.container_runner._session import workspaces_in_use
from ccsandbox.errors import ContainerRuntimeError, SessionNotFoundError
from ccsandbox.runtime import ContainerRuntime
from ccsandbox.state import get_registry
from ccsandbox.state.sessions import SessionRegistry
from ccsandbox.types import Session


def _session(name: str, sid: str = "0123456789ab", **kwargs) -> Session:
    return Session(
        id=sid,
        container_name=name,
        repo_name=kwargs.pop("repo_name", "proj"),
        created_at="2026-01-01T00:00:00+00:00",
        **kwargs,
    )


@pytest.fixture
def registry(tmp_path: Path) -> SessionRegistry:
    return SessionRegistry(tmp_path / "data" / "sessions.json")


class TestRegistry:
    def test_empty_when_missing(self, registry):
        assert registry.list() == []

    def test_add_and_list(self, registry):
        registry.add(_session("ccs-proj-1"))
        registry.add(_session("ccs-proj-2", sid="fff"))
        assert [s.container_name for s in registry.list()] == ["ccs-proj-1", "ccs-proj-2"]

    def test_add_replaces_same_name(self, registry):
        registry.add(_session("ccs-proj-1", sid="old"))
        registry.add(_session("ccs-proj-1", sid="new"))
        assert [s.id for s in registry.list()] == ["new"]

    def test_remove(self, registry):
        registry.add(_session("ccs-proj-1"))
        removed = registry.remove("ccs-proj-1")
        assert removed is not None and removed.container_name == "ccs-proj-1"
        assert registry.remove("ccs-proj-1") is None
        assert registry.list() == []

    def test_prune(self, registry):
        registry.add(_session("ccs-proj-1"))
        registry.add(_session("ccs-proj-2"))
        dropped = registry.prune({"ccs-proj-2"})
        assert [s.container_name for s in dropped] == ["ccs-proj-1"]
        assert [s.container_name for s in registry.list()] == ["ccs-proj-2"]

    def test_corrupt_file_starts_empty(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text("{broken")
        assert registry.list() == []
        registry.add(_session("ccs-proj-1"))
        assert len(registry.list()) == 1

    def test_unknown_keys_ignored(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text(
            '[{"id": "a", "container_name": "ccs-x-1", "repo_name": "x",'
            ' "created_at": "t", "future_field": 1}]'
        )
        assert registry.list()[0].container_name == "ccs-x-1"

    def test_concurrent_adds_are_not_lost(self, registry):
        threads = [
            threading.Thread(target=registry.add, args=(_session(f"ccs-proj-{i}"),))
            for i in range(16)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry.list()) == 16


class TestFind:
    @pytest.fixture(autouse=True)
    def _populate(self, registry):
        registry.add(_session("ccs-proj-123456", sid="aaaa1111"))
        registry.add(_session("ccs-proj-999999", sid="bbbb2222"))
        registry.add(_session("ccs-api-111111", sid="cccc3333", repo_name="api"))

    def test_exact_name(self, registry):
        assert registry.find("ccs-proj-123456").id == "aaaa1111"

    def test_name_without_prefix(self, registry):
        assert registry.find("proj-999999").id == "bbbb2222"

    def test_id(self, registry):
        assert registry.find("cccc3333").container_name == "ccs-api-111111"

    def test_unique_prefix(self, registry):
        assert registry.find("api").container_name == "ccs-api-111111"
        assert registry.find("aaaa").container_name == "ccs-proj-123456"

    def test_ambiguous(self, registry):
        with pytest.raises(SessionNotFoundError, match="Multiple"):
            registry.find("proj")

    def test_missing(self, registry):
        with pytest.raises(SessionNotFoundError, match="No session"):
            registry.find("nope")


class TestSessionCommands:
    def test_list_prunes_exited_and_removes_mcp_file(self, tmp_path):
        mcp = tmp_path / "run" / "ccs-proj-1" / "mcp.json"
        mcp.parent.mkdir(parents=True)
        mcp.write_text("{}")
        get_registry().add(_session("ccs-proj-1", mcp_config_path=str(mcp)))
        get_registry().add(_session("ccs-proj-2"))

        runtime = ContainerRuntime(name="podman", cli="podman")
        with (
            patch("ccsandbox.container_runner._session.detect_runtime", return_value=runtime),
            patch.object(ContainerRuntime, "list_containers", return_value=["ccs-proj-2"]),
        ):
            alive = list_sessions()

        assert [s.container_name for s in alive] == ["ccs-proj-2"]
        assert not mcp.exists()

    def test_list_keeps_registry_when_runtime_unreachable(self, tmp_path):
        mcp = tmp_path / "run" / "ccs-proj-1" / "mcp.json"
        mcp.parent.mkdir(parents=True)
        mcp.write_text("{}")
        get_registry().add(_session("ccs-proj-1", mcp_config_path=str(mcp)))

        runtime = ContainerRuntime(name="podman", cli="podman")
        failed = subprocess.CompletedProcess(
            [], 125, stdout="", stderr="Cannot connect to Podman socket"
        )
        with (
            patch("ccsandbox.container_runner._session.detect_runtime", return_value=runtime),
            patch.object(ContainerRuntime, "run", return_value=failed),
        ):
            with pytest.raises(ContainerRuntimeError, match="Cannot connect"):
                list_sessions()

        assert [s.container_name for s in get_registry().list()] == ["ccs-proj-1"]
        assert mcp.exists()

    def test_stop(self, tmp_path):
        mcp = tmp_path / "run" / "ccs-proj-1" / "mcp.json"
        mcp.parent.mkdir(parents=True)
        mcp.write_text("{}")
        get_registry().add(_session("ccs-proj-1", runtime="docker", mcp_config_path=str(mcp)))

        ok = subprocess.CompletedProcess([], 0, stdout="", stderr="")
        with patch(
            "ccsandbox.container_runner._process.subprocess.run", return_value=ok
        ) as mock_run:
            session = stop_session("proj-1")

        assert session.container_name == "ccs-proj-1"
        commands = [c.args[0] for c in mock_run.call_args_list]
        assert commands == [
            ["docker", "stop", "-t", "10", "ccs-proj-1"],
            ["docker", "rm", "-f", "ccs-proj-1"],
        ]
        assert get_registry().list() == []
        assert not mcp.exists()

    def test_stop_failure_keeps_session(self, tmp_path):
        mcp = tmp_path / "run" / "ccs-proj-1" / "mcp.json"
        mcp.parent.mkdir(parents=True)
        mcp.write_text("{}")
        get_registry().add(_session("ccs-proj-1", runtime="docker", mcp_config_path=str(mcp)))

        denied = subprocess.CompletedProcess([], 1, stdout="", stderr="permission denied")
        with patch("ccsandbox.container_runner._process.subprocess.run", return_value=denied):
            with pytest.raises(ContainerRuntimeError, match="Failed to stop container"):
                stop_session("proj-1")

        assert [s.container_name for s in get_registry().list()] == ["ccs-proj-1"]
        assert mcp.exists()

    def test_stop_already_gone_container(self):
        get_registry().add(_session("ccs-proj-1", runtime="podman"))
        gone = subprocess.CompletedProcess(
            [], 125, stdout="", stderr='Error: no container with name or ID "ccs-proj-1" found'
        )
        with patch("ccsandbox.container_runner._process.subprocess.run", return_value=gone):
            stop_session("proj-1")
        assert get_registry().list() == []

    def test_stop_unknown(self):
        with pytest.raises(SessionNotFoundError):
            stop_session("nothing")

    def test_format_sessions(self):
        assert "No ccs sessions" in format_sessions([])
        table = format_sessions([_session("ccs-proj-1", workspace="/w/proj")])
        header, row = table.splitlines()
        assert header.split() == ["NAME", "ID", "REPO", "STARTED", "WORKSPACE"]
        assert row.split()[0] == "ccs-proj-1"
        assert row.endswith("/w/proj")


class TestWorkspacesInUse:
    def test_registry_and_running_containers(self, tmp_path):
        get_registry().add(_session("ccs-proj-1", workspace="/w/detached"))
        runtime = ContainerRuntime(name="podman", cli="podman")
        with (
            patch("ccsandbox.container_runner._session.detect_runtime", return_value=runtime),
            patch.object(ContainerRuntime, "list_containers", return_value=["ccs-proj-2"]),
            patch.object(
                ContainerRuntime, "mount_source", return_value=Path("/w/foreground")
            ) as mock_source,
        ):
            in_use = workspaces_in_use()

        assert in_use == {Path("/w/detached"), Path("/w/foreground")}
        mock_source.assert_called_once_with("ccs-proj-2", "/workspace")

    def test_no_runtime_installed_uses_registry(self):
        get_registry().add(_session("ccs-proj-1", workspace="/w/detached"))
        with patch(
            "ccsandbox.container_runner._session.detect_runtime",
            side_effect=ContainerRuntimeError("No container runtime found."),
        ):
            assert workspaces_in_use() == {Path("/w/detached")}

    def test_unreachable_runtime_raises(self):
        runtime = ContainerRuntime(name="docker", cli="docker")
        with (
            patch("ccsandbox.container_runner._session.detect_runtime", return_value=runtime),
            patch.object(
                ContainerRuntime, "list_containers", side_effect=ContainerRuntimeError("down")
            ),
        ):
            with pytest.raises(ContainerRuntimeError):
                workspaces_in_use()
