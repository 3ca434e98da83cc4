"""
GPU Processes
=============

Lists the processes currently holding a GPU compute context, with the GPU
memory each one uses.

Two backends:
  - nvidia-smi  --query-compute-apps=pid,used_memory (default)
  - pynvml      nvmlDeviceGetComputeRunningProcesses on every device

Both return AcceleratorProcessRecord lists. The driver output is treated as an
opaque table: no per-GPU policy, no discovery beyond what the query returns.
"""

from __future__ import annotations
import logging
import subprocess
from dataclasses import dataclass

from .errors import GpuQueryError

log = logging.getLogger(__name__)

MIB = 1024 * 1024

NVIDIA_SMI_QUERY = [
    "nvidia-smi",
    "--query-compute-apps=pid,used_memory",
    "--format=csv,noheader,nounits",
]


@dataclass(frozen=True)
class AcceleratorProcessRecord:
    pid: int
    used_memory_bytes: int


# ─── Parsing ──────────────────────────────────────────────────────────────────

def parse_compute_apps(text: str) -> list[AcceleratorProcessRecord]:
    """
    Parse `pid,used_memory` lines (MiB, no header, no units).
    Blank lines are ignored; malformed lines are logged and skipped.
    """
    records = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue

        parts = [p.strip() for p in line.split(",")]
        if len(parts) != 2:
            log.warning(f"Skipping malformed GPU process line {lineno}: {line!r}")
            continue

        try:
            pid = int(parts[0])
            used_mib = int(parts[1])
        except ValueError:
            # e.g. "[N/A]" or "[Not Supported]" for used_memory
            log.warning(f"Skipping unparseable GPU process line {lineno}: {line!r}")
            continue

        records.append(AcceleratorProcessRecord(pid=pid, used_memory_bytes=used_mib * MIB))
    return records


def format_records(records: list[AcceleratorProcessRecord]) -> str:
    return "\n".join(f"{r.pid}, {r.used_memory_bytes // MIB}" for r in records)


# ─── Backends ─────────────────────────────────────────────────────────────────

class NvidiaSmiSource:
    """Queries compute apps through the nvidia-smi CLI."""

    def __init__(self, timeout: float = 10.0):
        self.timeout  = timeout
        self.last_raw = ""

    def query(self) -> list[AcceleratorProcessRecord]:
        try:
            result = subprocess.run(
                NVIDIA_SMI_QUERY,
                capture_output=True, text=True, timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GpuQueryError(f"nvidia-smi timed out after {self.timeout}s") from e
        except OSError as e:
            raise GpuQueryError(f"nvidia-smi could not be run: {e}") from e

        if result.returncode != 0:
            raise GpuQueryError(
                f"nvidia-smi exit {result.returncode}: {result.stderr.strip()[:300]}"
            )

        self.last_raw = result.stdout.strip()
        return parse_compute_apps(result.stdout)


class NvmlSource:
    """Queries compute apps through NVML (the nvidia-smi library)."""

    def __init__(self, timeout: float = 10.0):
        # NVML calls are in-process and do not take a timeout
        self.timeout  = timeout
        self.last_raw = ""

    def query(self) -> list[AcceleratorProcessRecord]:
        import pynvml  # type: ignore

        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise GpuQueryError(f"NVML init failed: {e}") from e

        records = []
        try:
            for i in range(pynvml.nvmlDeviceGetCount()):
                handle = pynvml.nvmlDeviceGetHandleByIndex(i)
                for proc in pynvml.nvmlDeviceGetComputeRunningProcesses(handle):
                    if proc.usedGpuMemory is None:
                        log.warning(f"GPU #{i}: used memory unavailable for PID {proc.pid}, skipping")
                        continue
                    records.append(AcceleratorProcessRecord(
                        pid               = int(proc.pid),
                        used_memory_bytes = int(proc.usedGpuMemory),
                    ))
        except pynvml.NVMLError as e:
            raise GpuQueryError(f"NVML query failed: {e}") from e
        finally:
            try:
                pynvml.nvmlShutdown()
            except pynvml.NVMLError:
                pass

        self.last_raw = format_records(records)
        return records


def make_gpu_source(backend: str, timeout: float = 10.0):
    if backend == "nvidia-smi":
        return NvidiaSmiSource(timeout=timeout)
    if backend == "nvml":
        return NvmlSource(timeout=timeout)
    raise ValueError(f"unknown GPU backend: {backend!r}")
