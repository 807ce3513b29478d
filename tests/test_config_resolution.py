"""Tests for config file resolution, env loading and data-dir selection."""

import os

import yaml

from apisandbox import core


def _write_config(path, base_url="http://localhost:3000", **extra):
    """Helper to write a config YAML file."""
    defaults = {"base_url": base_url, **extra}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump({"defaults": defaults}))


# ── resolve_config_path ─────────────────────────────────────────────────


class TestResolveConfigPath:
    def test_explicit_flag_takes_priority(self, tmp_project, global_sandbox_dir):
        """Explicit -c flag should win over everything else."""
        explicit = tmp_project / "custom" / "my.yaml"
        _write_config(explicit)
        _write_config(tmp_project / ".apisandbox.yaml", base_url="cwd")
        _write_config(global_sandbox_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(str(explicit))
        assert result == explicit.resolve()

    def test_explicit_flag_nonexistent_returns_none(self, tmp_project):
        result = core.resolve_config_path("/nonexistent/config.yaml")
        assert result is None

    def test_cwd_config_found(self, tmp_project, global_sandbox_dir):
        _write_config(tmp_project / ".apisandbox.yaml")
        _write_config(global_sandbox_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(None)
        assert result == (tmp_project / ".apisandbox.yaml").resolve()

    def test_cwd_config_yml_variant(self, tmp_project, global_sandbox_dir):
        _write_config(tmp_project / ".apisandbox.yml")

        result = core.resolve_config_path(None)
        assert result == (tmp_project / ".apisandbox.yml").resolve()

    def test_cwd_undotted_variant(self, tmp_project, global_sandbox_dir):
        _write_config(tmp_project / "apisandbox.yaml")

        result = core.resolve_config_path(None)
        assert result == (tmp_project / "apisandbox.yaml").resolve()

    def test_cwd_config_priority_order(self, tmp_project, global_sandbox_dir):
        """First CWD candidate wins: .apisandbox.yaml before apisandbox.yaml."""
        _write_config(tmp_project / ".apisandbox.yaml", base_url="dotted")
        _write_config(tmp_project / "apisandbox.yaml", base_url="undotted")

        result = core.resolve_config_path(None)
        assert result.name == ".apisandbox.yaml"

    def test_global_config_fallback(self, tmp_project, global_sandbox_dir):
        _write_config(global_sandbox_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(None)
        assert result == (global_sandbox_dir / "config.yaml").resolve()

    def test_no_config_anywhere(self, tmp_project, global_sandbox_dir):
        assert core.resolve_config_path(None) is None


# ── load_config ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_none_path_returns_defaults(self):
        config = core.load_config(None)
        assert config["defaults"] == {}
        assert config["_config_dir"] is None

    def test_nonexistent_path_returns_defaults(self):
        config = core.load_config("/nonexistent/path.yaml")
        assert config["defaults"] == {}
        assert config["_config_dir"] is None

    def test_valid_config_loads_defaults(self, tmp_path):
        cfg_path = tmp_path / "config.yaml"
        _write_config(cfg_path, base_url="http://test:8080", timeout_ms=500)
        config = core.load_config(cfg_path)
        assert config["defaults"]["base_url"] == "http://test:8080"
        assert config["defaults"]["timeout_ms"] == 500

    def test_config_dir_is_set(self, tmp_path):
        cfg_path = tmp_path / "subdir" / "config.yaml"
        _write_config(cfg_path)
        config = core.load_config(cfg_path)
        assert config["_config_dir"] == (tmp_path / "subdir").resolve()

    def test_empty_yaml_returns_empty_defaults(self, tmp_path):
        cfg_path = tmp_path / "empty.yaml"
        cfg_path.write_text("")
        config = core.load_config(cfg_path)
        assert config["defaults"] == {}
        assert config["_config_dir"] == tmp_path.resolve()


# ── env and values ───────────────────────────────────────────────────────


class TestEnvResolution:
    def test_dotenv_values_merged(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SANDBOX_TOKEN", raising=False)
        (tmp_path / ".env").write_text("SANDBOX_TOKEN=abc123\n")
        env = core.load_env(".env", tmp_path)
        assert env["SANDBOX_TOKEN"] == "abc123"

    def test_missing_env_file_ignored(self, tmp_path):
        env = core.load_env("missing.env", tmp_path)
        assert env == dict(os.environ)

    def test_resolve_value_both_forms(self):
        env = {"HOST": "example.com", "PORT": "8080"}
        assert core.resolve_value("https://$HOST:${PORT}/", env) == "https://example.com:8080/"

    def test_resolve_value_unknown_left_as_is(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        assert core.resolve_value("${NOPE_NOT_SET}", {}) == "${NOPE_NOT_SET}"

    def test_resolve_value_non_string(self):
        assert core.resolve_value(30000, {}) == 30000
        assert core.resolve_value(None, {}) is None


class TestDataDir:
    def test_default_is_global(self, global_sandbox_dir):
        config = core.load_config(None)
        assert core.resolve_data_dir(config, {}) == global_sandbox_dir / "data"

    def test_relative_to_config_file(self, tmp_path):
        cfg_path = tmp_path / "proj" / ".apisandbox.yaml"
        _write_config(cfg_path, data_dir="sandbox-data")
        config = core.load_config(cfg_path)
        assert core.resolve_data_dir(config, {}) == (tmp_path / "proj").resolve() / "sandbox-data"

    def test_env_reference(self, tmp_path):
        cfg_path = tmp_path / "c.yaml"
        _write_config(cfg_path, data_dir="${DATA_ROOT}/x")
        config = core.load_config(cfg_path)
        target = tmp_path / "root"
        assert core.resolve_data_dir(config, {"DATA_ROOT": str(target)}) == target / "x"
