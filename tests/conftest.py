"""Shared test fixtures for ccsandbox."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "home_dir",
        "data_dir",
        "runtime_dir",
        "sessions_file",
        "claude_dir",
        "container_home",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (container, worktree, etc.) and cached property
    overrides (home_dir, data_dir, runtime_dir, etc.).

    Usage::

        s = make_settings(data_dir=tmp_path)
        s = make_settings(container=ContainerConfig(runtime="docker"))
        s = make_settings(mcp_servers={"gh": McpServerConfig(command="gh-mcp")})
    """
    from ccsandbox.config import (
        ContainerConfig,
        LoggingConfig,
        SecretsConfig,
        Settings,
        WorktreeConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "container": ContainerConfig(),
        "worktree": WorktreeConfig(),
        "secrets": SecretsConfig(),
        "logging": LoggingConfig(),
        "mcp_servers": {},
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def git(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )


def init_repo(path: Path) -> Path:
    """Create a repository at *path* with one commit on ``main``."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "--initial-branch=main")
    git(path, "config", "user.email", "test@test.com")
    git(path, "config", "user.name", "Test")
    (path / "README.md").write_text("initial")
    git(path, "add", "README.md")
    git(path, "commit", "-m", "initial commit")
    return path


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _clean_git_env():
    """Strip git env vars that pre-commit leaks during its stash cycle.

    Pre-commit sets GIT_INDEX_FILE (and potentially GIT_DIR, GIT_WORK_TREE)
    before running hooks. Tests that create temporary git repos inherit these
    variables, causing ``git worktree add`` and similar commands to fail.
    """
    import os

    for var in ("GIT_INDEX_FILE", "GIT_DIR", "GIT_WORK_TREE"):
        os.environ.pop(var, None)


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path_factory):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults, with every on-disk
    location under a throwaway directory. No user config.toml is read.

    Tests that mock ``get_settings()`` at the call site are unaffected — their
    mock takes precedence over the cached singleton.
    """
    state = tmp_path_factory.mktemp("ccs-state")
    monkeypatch.setenv("CCS_CONFIG", str(state / "config.toml"))
    safe = make_settings(
        home_dir=state / "home",
        data_dir=state / "data",
        runtime_dir=state / "run",
        sessions_file=state / "data" / "sessions.json",
        claude_dir=state / "home" / ".claude",
    )
    monkeypatch.setattr("ccsandbox.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A plain repository at ``<tmp>/proj``."""
    return init_repo(tmp_path / "proj")
