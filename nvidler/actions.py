"""
Action Executor
===============

Carries out a Decision: log a warning, or send SIGTERM.

Nothing here raises. A signal that cannot be delivered (process already gone,
permission denied) is logged and reported back as a failed ActionResult.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import psutil  # type: ignore

from .decision import Action, Decision

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    decision: Decision
    ok:       bool
    error:    Optional[str] = None


def _describe(d: Decision) -> str:
    return f"Process {d.pid} ({d.command_name}) in Docker container {d.container_name or 'none'}"


# ps lstart has one-second resolution
START_TIME_TOLERANCE = 1.0


def send_sigterm(pid: int, start_time: Optional[float] = None):
    """
    SIGTERM via psutil. Raises psutil.Error / OSError on failure.

    When start_time is given, the signal is only sent if the PID still belongs
    to the process that was looked up; a recycled PID raises NoSuchProcess.
    """
    proc = psutil.Process(pid)
    if start_time is not None and abs(proc.create_time() - start_time) > START_TIME_TOLERANCE:
        raise psutil.NoSuchProcess(pid, msg="PID was reused by another process")
    proc.terminate()


class ActionExecutor:
    def __init__(self, idle_time_threshold: int, dry_run: bool = False, signal_fn=send_sigterm):
        self.idle_time_threshold = idle_time_threshold
        self.dry_run             = dry_run
        self._signal             = signal_fn

    def execute(self, decision: Decision) -> ActionResult:
        if decision.action is Action.WARN:
            return self._warn(decision)
        if decision.action is Action.TERMINATE:
            return self._terminate(decision)

        log.debug(f"[executor] {_describe(decision)}: no action ({decision.reason})")
        return ActionResult(decision, ok=True)

    def _warn(self, d: Decision) -> ActionResult:
        log.warning(
            f"WARNING: {_describe(d)} has been idle for {d.idle_seconds}s "
            f"(threshold {self.idle_time_threshold}s)."
        )
        return ActionResult(d, ok=True)

    def _terminate(self, d: Decision) -> ActionResult:
        if self.dry_run:
            log.warning(
                f"Dry run: would terminate {_describe(d)}, idle for {d.idle_seconds}s "
                f"(threshold {self.idle_time_threshold}s)."
            )
            return ActionResult(d, ok=True)

        try:
            self._signal(d.pid, d.start_time)
        except psutil.NoSuchProcess:
            log.error(f"Failed to send SIGTERM to PID {d.pid}: process no longer exists")
            return ActionResult(d, ok=False, error="no such process")
        except psutil.AccessDenied:
            log.error(f"Failed to send SIGTERM to PID {d.pid}: permission denied")
            return ActionResult(d, ok=False, error="permission denied")
        except (psutil.Error, OSError) as e:
            log.error(f"Failed to send SIGTERM to PID {d.pid}: {e}")
            return ActionResult(d, ok=False, error=str(e))

        log.warning(
            f"Terminated: {_describe(d)} has been idle for {d.idle_seconds}s "
            f"(threshold {self.idle_time_threshold}s)."
        )
        return ActionResult(d, ok=True)
