"""Centralized configuration — Pydantic BaseSettings with a TOML source.

Settings live in ``~/.config/ccsandbox/config.toml`` (``$XDG_CONFIG_HOME``
is honoured; ``CCS_CONFIG`` points at another file). Environment variables
override the file using the ``CCS_`` prefix and ``__`` as the nested
delimiter (e.g. ``CCS_CONTAINER__IMAGE``).

Priority (highest wins): init args > env vars > config.toml

Usage::

    from ccsandbox.config import get_settings

    s = get_settings()
    print(s.container.image)
    print(s.worktree.base_path)
"""

from __future__ import annotations

import os
import tempfile
import tomllib
from functools import cached_property
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from ccsandbox.config_mcp import McpServerConfig
from ccsandbox.errors import ConfigError

APP_NAME = "ccsandbox"

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models; unknown keys are rejected."""

    model_config = {"extra": "forbid"}


class ContainerConfig(_StrictModel):
    image: str = "ccs:latest"
    runtime: Literal["podman", "docker"] | None = None  # None = prefer podman, then docker
    user: str = "claude"  # container user; decides /home/<user> paths
    workdir: str = "/workspace"
    memory_limit: str | None = None  # passed to --memory, e.g. "4g"
    cpu_limit: float | None = None  # passed to --cpus
    load_env_file: bool = True
    env_file_path: str = ".env"  # relative to the project root
    extra_volumes: dict[str, str] = {}  # host_path → container_path[:ro]
    extra_env: dict[str, str] = {}  # literal values or secret references
    mount_credentials_dir: bool = False  # ~/.claude → /home/<user>/.claude (read-only)

    @field_validator("cpu_limit")
    @classmethod
    def validate_cpu_limit(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("cpu_limit must be positive")
        return v

    @field_validator("memory_limit")
    @classmethod
    def validate_memory_limit(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("memory_limit cannot be empty (omit it for no limit)")
        return v


class WorktreeConfig(_StrictModel):
    # {repo_name} is replaced with the main repository's directory name.
    # Relative paths are resolved against the main repository root.
    base_path: str = "../{repo_name}-worktrees"
    branch_prefix: str = "ccs"  # prefix for generated branch names
    auto_cleanup: bool = True
    cleanup_min_age_seconds: int = 3600

    @field_validator("base_path")
    @classmethod
    def validate_base_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("worktree.base_path cannot be empty")
        return v

    @field_validator("cleanup_min_age_seconds")
    @classmethod
    def validate_min_age(cls, v: int) -> int:
        if v < 0:
            raise ValueError("cleanup_min_age_seconds cannot be negative")
        return v


class SecretsConfig(_StrictModel):
    # "abort": any unresolved MCP secret stops the launch.
    # "skip": servers with unresolved secrets are dropped with a warning.
    on_error: Literal["abort", "skip"] = "abort"


class LoggingConfig(_StrictModel):
    level: str | None = None  # None → LOG_LEVEL env var / WARNING

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str | None) -> str | None:
        return v.upper() if v else None


# ---------------------------------------------------------------------------
# Paths (XDG base directories)
# ---------------------------------------------------------------------------


def _xdg_dir(env_var: str, fallback: Path) -> Path:
    value = os.environ.get(env_var)
    if value and Path(value).is_absolute():
        return Path(value)
    return fallback


def config_path() -> Path:
    """Path of the user config file."""
    if override := os.environ.get("CCS_CONFIG"):
        return Path(override).expanduser()
    return _xdg_dir("XDG_CONFIG_HOME", Path.home() / ".config") / APP_NAME / "config.toml"


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CCS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    container: ContainerConfig = ContainerConfig()
    worktree: WorktreeConfig = WorktreeConfig()
    secrets: SecretsConfig = SecretsConfig()
    logging: LoggingConfig = LoggingConfig()
    mcp_servers: dict[str, McpServerConfig] = {}  # [mcp_servers.<name>]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > config.toml."""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=config_path()),
        )

    # --- Computed properties ---

    @cached_property
    def home_dir(self) -> Path:
        return Path.home()

    @cached_property
    def data_dir(self) -> Path:
        """Holds the session registry: ~/.local/share/ccsandbox."""
        return _xdg_dir("XDG_DATA_HOME", self.home_dir / ".local" / "share") / APP_NAME

    @cached_property
    def runtime_dir(self) -> Path:
        """Short-lived files (resolved MCP config). Prefers the tmpfs-backed XDG runtime dir."""
        return _xdg_dir("XDG_RUNTIME_DIR", Path(tempfile.gettempdir())) / APP_NAME

    @cached_property
    def sessions_file(self) -> Path:
        return self.data_dir / "sessions.json"

    @cached_property
    def claude_dir(self) -> Path:
        return self.home_dir / ".claude"

    @cached_property
    def container_home(self) -> str:
        return f"/home/{self.container.user}"


# ---------------------------------------------------------------------------
# Singleton + TOML writer
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton. Raises ConfigError on a malformed config file."""
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {config_path()}:\n{exc}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Cannot parse {config_path()}: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Cannot read {config_path()}: {exc}") from exc
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None


def write_default_config(path: Path | None = None) -> tuple[Path, bool]:
    """Write a commented default config.toml using tomlkit.

    Never overwrites an existing file. Returns ``(path, created)``.
    """
    import tomlkit

    target = path or config_path()
    if target.exists():
        return target, False

    doc = tomlkit.document()
    doc.add(tomlkit.comment("ccsandbox configuration"))
    doc.add(tomlkit.nl())

    container = tomlkit.table()
    defaults = ContainerConfig()
    container.add("image", defaults.image)
    container.add(tomlkit.comment('runtime = "podman"  # or "docker"; default: podman if found'))
    container.add("user", defaults.user)
    container.add("workdir", defaults.workdir)
    container.add(tomlkit.comment('memory_limit = "4g"'))
    container.add(tomlkit.comment("cpu_limit = 2.0"))
    container.add("load_env_file", defaults.load_env_file)
    container.add("env_file_path", defaults.env_file_path)
    container.add("mount_credentials_dir", defaults.mount_credentials_dir)
    container.add("extra_volumes", tomlkit.inline_table())
    container.add("extra_env", tomlkit.inline_table())
    doc.add("container", container)

    worktree = tomlkit.table()
    wt_defaults = WorktreeConfig()
    worktree.add("base_path", wt_defaults.base_path)
    worktree.add("branch_prefix", wt_defaults.branch_prefix)
    worktree.add("auto_cleanup", wt_defaults.auto_cleanup)
    worktree.add("cleanup_min_age_seconds", wt_defaults.cleanup_min_age_seconds)
    doc.add("worktree", worktree)

    secrets = tomlkit.table()
    secrets.add("on_error", SecretsConfig().on_error)
    doc.add("secrets", secrets)

    doc.add(tomlkit.nl())
    doc.add(tomlkit.comment("[mcp_servers.github]"))
    doc.add(tomlkit.comment('command = "npx -y @modelcontextprotocol/server-github"'))
    doc.add(tomlkit.comment('env = { GITHUB_PERSONAL_ACCESS_TOKEN = "op://Dev/GitHub/token" }'))

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(tomlkit.dumps(doc))
    return target, True
