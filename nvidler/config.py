"""
Configuration
=============

Builds the immutable MonitorConfig once at startup.

Precedence (highest first):
  1. command-line flags
  2. JSON config file (--config, default /etc/nvidler/config.json if present)
  3. NVIDLER_* environment variables
  4. built-in defaults

The resulting MonitorConfig is passed explicitly to the monitor and the
decision engine. Nothing reads configuration from module state.
"""

from __future__ import annotations
import argparse
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Sequence

from .errors import ConfigError

log = logging.getLogger(__name__)

# ─── Defaults ─────────────────────────────────────────────────────────────────

DEFAULT_CONFIG_PATH = Path("/etc/nvidler/config.json")

DEFAULT_TARGET_WORKLOADS = "python,tensorflow,cuda,pytorch"
DEFAULT_WHITELIST        = "whitelisted_process,whitelisted_container,nvidia-smi,nvidler.sh"
DEFAULT_LOG_FILE         = "/var/log/gpu_idle_monitor.log"

GPU_BACKENDS = ("nvidia-smi", "nvml")

ENV_PREFIX = "NVIDLER_"

_TRUE  = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def split_names(value) -> tuple[str, ...]:
    """Split a comma-separated list (or a JSON list), dropping blanks."""
    if value is None:
        return ()
    items = value.split(",") if isinstance(value, str) else value
    return tuple(s for s in (str(i).strip() for i in items) if s)


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"not a boolean: {value!r}")


# ─── Config ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MonitorConfig:
    idle_time_threshold: int              = 300
    warning_only:        bool             = True
    target_workloads:    tuple[str, ...]  = split_names(DEFAULT_TARGET_WORKLOADS)
    whitelist:           tuple[str, ...]  = split_names(DEFAULT_WHITELIST)
    log_file:            str              = DEFAULT_LOG_FILE
    sleep_interval:      int              = 60
    docker_enabled:      bool             = True
    gpu_backend:         str              = "nvidia-smi"
    command_timeout:     float            = 10.0
    dry_run:             bool             = False
    verbose:             bool             = False

    def __post_init__(self):
        if self.idle_time_threshold < 0:
            raise ConfigError(f"idle_time_threshold must be >= 0, got {self.idle_time_threshold}")
        if self.sleep_interval <= 0:
            raise ConfigError(f"sleep_interval must be > 0, got {self.sleep_interval}")
        if self.command_timeout <= 0:
            raise ConfigError(f"command_timeout must be > 0, got {self.command_timeout}")
        if self.gpu_backend not in GPU_BACKENDS:
            raise ConfigError(
                f"gpu_backend must be one of {', '.join(GPU_BACKENDS)}, got {self.gpu_backend!r}"
            )

    def describe(self) -> str:
        """One-line configuration echo for the startup banner."""
        return (
            f"Configuration: idleTimeThreshold={self.idle_time_threshold}, "
            f"warningOnly={self.warning_only}, "
            f"targetWorkloads={list(self.target_workloads)}, "
            f"whitelist={list(self.whitelist)}, "
            f"logFile={self.log_file}, "
            f"sleepInterval={self.sleep_interval}, "
            f"dockerEnabled={self.docker_enabled}, "
            f"gpuBackend={self.gpu_backend}, "
            f"commandTimeout={self.command_timeout}, "
            f"dryRun={self.dry_run}"
        )


# ─── Sources ──────────────────────────────────────────────────────────────────

_CONVERTERS = {
    "idle_time_threshold": int,
    "warning_only":        parse_bool,
    "target_workloads":    split_names,
    "whitelist":           split_names,
    "log_file":            str,
    "sleep_interval":      int,
    "docker_enabled":      parse_bool,
    "gpu_backend":         str,
    "command_timeout":     float,
}

# Short env names kept for compatibility with the old unit files
_ENV_ALIASES = {"docker_enabled": "DOCKER"}


def _convert(key: str, value):
    try:
        return _CONVERTERS[key](value)
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r} ({e})") from e


def load_env(environ=None) -> dict:
    environ = os.environ if environ is None else environ
    values = {}
    for key in _CONVERTERS:
        name = ENV_PREFIX + _ENV_ALIASES.get(key, key.upper())
        if name in environ:
            values[key] = _convert(key, environ[name])
    return values


def load_config_file(path: Path) -> dict:
    """Read a JSON config file. Missing file → empty dict."""
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")

    values = {}
    for key, value in raw.items():
        if key not in _CONVERTERS:
            log.warning(f"Ignoring unknown config key {key!r} in {path}")
            continue
        values[key] = _convert(key, value)
    return values


# ─── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvidler",
        description="Warn about or terminate idle GPU compute processes",
    )
    parser.add_argument("--config", type=Path, default=None,
                        help=f"JSON config file (default: {DEFAULT_CONFIG_PATH} if present)")
    parser.add_argument("--idle-time-threshold", type=int, dest="idle_time_threshold",
                        help="Seconds a zero-memory process may live before action (default: 300)")
    parser.add_argument("--warning-only", action=argparse.BooleanOptionalAction,
                        dest="warning_only", default=None,
                        help="Only log idle processes, never signal them (default: on)")
    parser.add_argument("--target-workloads", dest="target_workloads",
                        help=f"Comma-separated command-name substrings (default: {DEFAULT_TARGET_WORKLOADS})")
    parser.add_argument("--whitelist",
                        help="Comma-separated exact process or container names never acted on")
    parser.add_argument("--log-file", dest="log_file",
                        help=f"Log file (default: {DEFAULT_LOG_FILE})")
    parser.add_argument("--sleep-interval", type=int, dest="sleep_interval",
                        help="Seconds between cycles (default: 60)")
    parser.add_argument("--docker", action=argparse.BooleanOptionalAction,
                        dest="docker_enabled", default=None,
                        help="Resolve Docker container names (default: on)")
    parser.add_argument("--gpu-backend", choices=GPU_BACKENDS, dest="gpu_backend",
                        help="How to query GPU processes (default: nvidia-smi)")
    parser.add_argument("--command-timeout", type=float, dest="command_timeout",
                        help="Timeout in seconds for each external call (default: 10)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log terminations instead of sending SIGTERM")
    parser.add_argument("--once", action="store_true",
                        help="Run a single cycle and exit")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log every decision, including exempt and active processes")
    return parser


def config_from_args(args: argparse.Namespace, environ=None) -> MonitorConfig:
    """Merge defaults, env, config file and parsed flags into a MonitorConfig."""
    values = load_env(environ)

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"config file not found: {config_path}")
        values.update(load_config_file(config_path))

    for key in _CONVERTERS:
        flag = getattr(args, key, None)
        if flag is not None:
            values[key] = _convert(key, flag)

    values["dry_run"] = args.dry_run
    values["verbose"] = args.verbose

    known = {f.name for f in fields(MonitorConfig)}
    return MonitorConfig(**{k: v for k, v in values.items() if k in known})


def parse_config(argv: Optional[Sequence[str]] = None, environ=None) -> tuple[MonitorConfig, argparse.Namespace]:
    args = build_parser().parse_args(argv)
    return config_from_args(args, environ), args
