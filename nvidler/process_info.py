"""
Process Info
============

Looks up the command name and start time of a PID.

psutil is tried first. When psutil is denied access (hardened /proc, hidepid
mounts) we fall back to `ps`, which reports the start time as
`Mon Jan  2 15:04:05 2006` (lstart) in local time.

A process that exited between the GPU query and the lookup is not an error:
the lookup simply returns None.
"""

from __future__ import annotations
import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import psutil  # type: ignore

log = logging.getLogger(__name__)

LSTART_FORMAT = "%a %b %d %H:%M:%S %Y"


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    command_name: str
    start_time: Optional[float]   # epoch seconds; None when it could not be parsed


def parse_lstart(text: str) -> Optional[float]:
    """Parse `ps -o lstart=` output into epoch seconds. None if unparseable."""
    text = " ".join(text.split())
    if not text:
        return None
    try:
        return datetime.strptime(text, LSTART_FORMAT).timestamp()
    except ValueError:
        return None


# ─── Lookup ───────────────────────────────────────────────────────────────────

def lookup_process(pid: int, timeout: float = 10.0) -> Optional[ProcessInfo]:
    """Return ProcessInfo for pid, or None if the process is gone."""
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            return ProcessInfo(
                pid          = pid,
                command_name = proc.name(),
                start_time   = proc.create_time(),
            )
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        log.info(f"PID {pid} exited before it could be inspected")
        return None
    except psutil.AccessDenied:
        log.debug(f"psutil denied access to PID {pid}, falling back to ps")

    return _lookup_via_ps(pid, timeout)


def _run_ps(args: list[str], timeout: float) -> str:
    # C locale so lstart weekday/month names match LSTART_FORMAT
    env = {**os.environ, "LC_ALL": "C"}
    result = subprocess.run(
        ["ps", *args],
        capture_output=True, text=True, timeout=timeout, env=env,
    )
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def _lookup_via_ps(pid: int, timeout: float) -> Optional[ProcessInfo]:
    pid_str = str(pid)

    name = _run_ps(["-p", pid_str, "-o", "comm="], timeout)
    if not name:
        log.info(f"PID {pid} exited before it could be inspected")
        return None

    lstart = _run_ps(["-o", "lstart=", "-p", pid_str], timeout)
    start_time = parse_lstart(lstart)
    if start_time is None:
        log.error(f"Failed to parse start time for PID {pid}: {lstart!r}")

    return ProcessInfo(pid=pid, command_name=name, start_time=start_time)
