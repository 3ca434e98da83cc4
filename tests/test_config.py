"""Tests for configuration parsing."""

import dataclasses
import json
from pathlib import Path

import pytest

from nvidler import config as config_mod
from nvidler.config import (
    MonitorConfig,
    build_parser,
    config_from_args,
    load_config_file,
    load_env,
    parse_bool,
    split_names,
)
from nvidler.errors import ConfigError


@pytest.fixture(autouse=True)
def no_system_config(monkeypatch, tmp_path):
    monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", tmp_path / "absent.json")


def parse(argv, environ=None):
    return config_from_args(build_parser().parse_args(argv), environ or {})


class TestHelpers:
    """Tests for list and boolean helpers."""

    def test_split_names(self):
        assert split_names("python, cuda,,  ,torch ") == ("python", "cuda", "torch")
        assert split_names(["a", " b "]) == ("a", "b")
        assert split_names("") == ()
        assert split_names(None) == ()

    @pytest.mark.parametrize("value", ["1", "true", "Yes", "ON", True])
    def test_parse_bool_true(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "false", "No", "off", False])
    def test_parse_bool_false(self, value):
        assert parse_bool(value) is False

    def test_parse_bool_invalid(self):
        with pytest.raises(ConfigError):
            parse_bool("maybe")


class TestDefaults:
    """Built-in defaults."""

    def test_defaults(self):
        cfg = parse([])

        assert cfg.idle_time_threshold == 300
        assert cfg.warning_only is True
        assert cfg.target_workloads == ("python", "tensorflow", "cuda", "pytorch")
        assert "nvidia-smi" in cfg.whitelist
        assert "nvidler.sh" in cfg.whitelist
        assert cfg.log_file == "/var/log/gpu_idle_monitor.log"
        assert cfg.sleep_interval == 60
        assert cfg.docker_enabled is True
        assert cfg.gpu_backend == "nvidia-smi"
        assert cfg.dry_run is False

    def test_config_is_immutable(self):
        cfg = MonitorConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.warning_only = False

    def test_describe(self):
        text = MonitorConfig().describe()
        assert text.startswith("Configuration: idleTimeThreshold=300")
        assert "dockerEnabled=True" in text


class TestFlags:
    """Command-line flags."""

    def test_flags(self):
        cfg = parse([
            "--idle-time-threshold", "900",
            "--no-warning-only",
            "--target-workloads", "python,jax",
            "--whitelist", "jupyter,serving",
            "--log-file", "/tmp/x.log",
            "--sleep-interval", "5",
            "--no-docker",
            "--gpu-backend", "nvml",
            "--command-timeout", "2.5",
            "--dry-run",
            "-v",
        ])

        assert cfg.idle_time_threshold == 900
        assert cfg.warning_only is False
        assert cfg.target_workloads == ("python", "jax")
        assert cfg.whitelist == ("jupyter", "serving")
        assert cfg.log_file == "/tmp/x.log"
        assert cfg.sleep_interval == 5
        assert cfg.docker_enabled is False
        assert cfg.gpu_backend == "nvml"
        assert cfg.command_timeout == 2.5
        assert cfg.dry_run is True
        assert cfg.verbose is True

    def test_unknown_backend_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--gpu-backend", "rocm"])

    @pytest.mark.parametrize("argv", [
        ["--idle-time-threshold", "-1"],
        ["--sleep-interval", "0"],
        ["--command-timeout", "0"],
    ])
    def test_invalid_values(self, argv):
        with pytest.raises(ConfigError):
            parse(argv)


class TestLayering:
    """Env vars, config file and flags combine in precedence order."""

    def test_env(self):
        env = {
            "NVIDLER_IDLE_TIME_THRESHOLD": "120",
            "NVIDLER_WARNING_ONLY": "false",
            "NVIDLER_DOCKER": "0",
            "NVIDLER_TARGET_WORKLOADS": "python",
        }
        cfg = parse([], env)

        assert cfg.idle_time_threshold == 120
        assert cfg.warning_only is False
        assert cfg.docker_enabled is False
        assert cfg.target_workloads == ("python",)

    def test_bad_env_value(self):
        with pytest.raises(ConfigError, match="idle_time_threshold"):
            load_env({"NVIDLER_IDLE_TIME_THRESHOLD": "five"})

    def test_file_overrides_env_and_flags_override_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "idle_time_threshold": 600,
            "whitelist": ["jupyter", "serving"],
            "sleep_interval": 30,
        }))
        env = {"NVIDLER_IDLE_TIME_THRESHOLD": "120", "NVIDLER_SLEEP_INTERVAL": "10"}

        cfg = parse(["--config", str(path), "--sleep-interval", "15"], env)

        assert cfg.idle_time_threshold == 600
        assert cfg.whitelist == ("jupyter", "serving")
        assert cfg.sleep_interval == 15

    def test_default_config_path_used_when_present(self, monkeypatch, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"warning_only": False}))
        monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", path)

        assert parse([]).warning_only is False

    def test_missing_explicit_config_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            parse(["--config", str(tmp_path / "nope.json")])

    def test_unknown_key_ignored(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"colour": "blue", "sleep_interval": 5}))

        assert load_config_file(path) == {"sleep_interval": 5}
        assert "Ignoring unknown config key 'colour'" in caplog.text

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="cannot read"):
            load_config_file(path)

    def test_non_object_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError, match="JSON object"):
            load_config_file(path)

    def test_missing_file_is_empty(self):
        assert load_config_file(Path("/nonexistent/nvidler.json")) == {}
