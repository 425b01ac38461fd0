"""Tests for settings loading, validation and the default config writer."""

from __future__ import annotations

import tomllib

import pytest

from ccsandbox.config import (
    ContainerConfig,
    LoggingConfig,
    WorktreeConfig,
    config_path,
    get_settings,
    reset_settings,
    write_default_config,
)
from ccsandbox.errors import ConfigError


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    monkeypatch.setenv("CCS_CONFIG", str(path))
    reset_settings()
    return path


class TestLoading:
    def test_defaults_without_file(self, config_file):
        s = get_settings()
        assert s.container.image == "ccs:latest"
        assert s.container.runtime is None
        assert s.worktree.base_path == "../{repo_name}-worktrees"
        assert s.secrets.on_error == "abort"
        assert s.mcp_servers == {}

    def test_reads_toml(self, config_file):
        config_file.write_text(
            "[container]\n"
            'image = "my-ccs:dev"\n'
            'runtime = "docker"\n'
            'memory_limit = "4g"\n'
            "cpu_limit = 1.5\n"
            "\n"
            "[secrets]\n"
            'on_error = "skip"\n'
            "\n"
            "[mcp_servers.github]\n"
            'command = "npx -y server-github"\n'
            'env = { TOKEN = "op://Dev/GitHub/token" }\n'
        )
        s = get_settings()
        assert s.container.image == "my-ccs:dev"
        assert s.container.runtime == "docker"
        assert s.container.memory_limit == "4g"
        assert s.container.cpu_limit == 1.5
        assert s.secrets.on_error == "skip"
        assert s.mcp_servers["github"].env == {"TOKEN": "op://Dev/GitHub/token"}

    def test_env_overrides_file(self, config_file, monkeypatch):
        config_file.write_text('[container]\nimage = "from-file"\nuser = "dev"\n')
        monkeypatch.setenv("CCS_CONTAINER__IMAGE", "from-env")
        s = get_settings()
        assert s.container.image == "from-env"
        assert s.container.user == "dev"

    def test_singleton(self, config_file):
        assert get_settings() is get_settings()

    def test_unknown_key_is_config_error(self, config_file):
        config_file.write_text('[container]\nimgae = "typo"\n')
        with pytest.raises(ConfigError, match="Invalid configuration"):
            get_settings()

    def test_malformed_toml_is_config_error(self, config_file):
        config_file.write_text("[container\n")
        with pytest.raises(ConfigError, match="Cannot parse"):
            get_settings()

    def test_bad_runtime_is_config_error(self, config_file):
        config_file.write_text('[container]\nruntime = "lxc"\n')
        with pytest.raises(ConfigError):
            get_settings()


class TestConfigPath:
    def test_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CCS_CONFIG", str(tmp_path / "x.toml"))
        assert config_path() == tmp_path / "x.toml"

    def test_xdg(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CCS_CONFIG")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config_path() == tmp_path / "ccsandbox" / "config.toml"

    def test_relative_xdg_ignored(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CCS_CONFIG")
        monkeypatch.setenv("XDG_CONFIG_HOME", "relative/dir")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert config_path() == tmp_path / ".config" / "ccsandbox" / "config.toml"


class TestValidators:
    def test_cpu_limit_positive(self):
        with pytest.raises(ValueError):
            ContainerConfig(cpu_limit=0)

    def test_memory_limit_stripped(self):
        assert ContainerConfig(memory_limit=" 2g ").memory_limit == "2g"
        with pytest.raises(ValueError):
            ContainerConfig(memory_limit="  ")

    def test_worktree_fields(self):
        with pytest.raises(ValueError):
            WorktreeConfig(base_path=" ")
        with pytest.raises(ValueError):
            WorktreeConfig(cleanup_min_age_seconds=-1)

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"


class TestWriteDefaultConfig:
    def test_creates_once(self, tmp_path):
        target = tmp_path / "cfg" / "config.toml"
        path, created = write_default_config(target)
        assert (path, created) == (target, True)

        parsed = tomllib.loads(target.read_text())
        assert parsed["container"]["image"] == "ccs:latest"
        assert parsed["worktree"]["branch_prefix"] == "ccs"
        assert parsed["secrets"]["on_error"] == "abort"
        assert "mcp_servers" not in parsed

        target.write_text("# edited\n")
        assert write_default_config(target) == (target, False)
        assert target.read_text() == "# edited\n"

    def test_output_loads_as_settings(self, config_file):
        write_default_config()
        assert get_settings().container == ContainerConfig()
