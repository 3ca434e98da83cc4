"""Shared fixtures and fakes for nvidler tests."""

import logging

import pytest

from nvidler.config import MonitorConfig
from nvidler.gpu_processes import AcceleratorProcessRecord
from nvidler.process_info import ProcessInfo

NOW = 1_700_000_000.0


def make_config(**overrides) -> MonitorConfig:
    values = dict(
        idle_time_threshold=300,
        warning_only=True,
        target_workloads=("python", "tensorflow", "cuda", "pytorch"),
        whitelist=("whitelisted_process", "whitelisted_container", "nvidia-smi"),
        log_file="/tmp/nvidler-test.log",
        sleep_interval=60,
        docker_enabled=True,
    )
    values.update(overrides)
    return MonitorConfig(**values)


def record(pid: int, used_mib: int = 0) -> AcceleratorProcessRecord:
    return AcceleratorProcessRecord(pid=pid, used_memory_bytes=used_mib * 1024 * 1024)


def proc(pid: int, name: str = "python3", age: float = 400) -> ProcessInfo:
    return ProcessInfo(pid=pid, command_name=name, start_time=NOW - age)


class FakeGpuSource:
    """Returns a fixed list of records, or raises the given error."""

    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error
        self.last_raw = ""
        self.calls = 0

    def query(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.last_raw = "\n".join(f"{r.pid}, {r.used_memory_bytes}" for r in self.records)
        return list(self.records)


class FakeContainerSource:
    def __init__(self, bindings=None, error=None):
        self._bindings = bindings or []
        self.error = error
        self.closed = False

    def bindings(self):
        if self.error is not None:
            raise self.error
        return list(self._bindings)

    def close(self):
        self.closed = True


@pytest.fixture
def config():
    return make_config()


@pytest.fixture(autouse=True)
def _nvidler_logging(caplog):
    caplog.set_level(logging.DEBUG, logger="nvidler")
    yield
