"""
Idle Decision Engine
====================

Turns one cycle's snapshots into Decisions.

For every GPU process record, in the order the driver reported them:
  1. look up the OS process          → gone?            skip
  2. resolve the container name      (first root-PID match, or None)
  3. command name contains a target? → no:              skip
  4. name or container whitelisted?  → yes:             NONE
  5. GPU memory in use?              → yes:             NONE
  6. idle = now - process start time → unknown:         skip (fail open)
  7. idle <= threshold?              → yes:             NONE
  8. otherwise                       → WARN or TERMINATE

Idle time is the whole lifetime of the process, not the time since it last
touched GPU memory. A process that was busy for an hour and then went quiet
is acted on at the first zero-memory sample past the threshold.

The engine is a pure function of its inputs. Running it twice on the same
snapshots yields the same Decisions.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .config import MonitorConfig
from .containers import ContainerBinding, resolve_container
from .gpu_processes import AcceleratorProcessRecord
from .process_info import ProcessInfo

log = logging.getLogger(__name__)

ProcessLookup = Callable[[int], Optional[ProcessInfo]]


class Action(enum.Enum):
    NONE      = "none"
    WARN      = "warn"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class Decision:
    pid:            int
    command_name:   str
    container_name: Optional[str]
    idle_seconds:   Optional[int]   # None when not computed (exempt or active)
    action:         Action
    reason:         str
    start_time:     Optional[float] = None   # from the lookup; guards against PID reuse


def is_targeted(command_name: str, targets: Sequence[str]) -> bool:
    # Substring, so "python3" and "/opt/conda/bin/python" match "python"
    return any(t in command_name for t in targets)


def is_whitelisted(command_name: str, container_name: Optional[str], whitelist: Sequence[str]) -> bool:
    if command_name in whitelist:
        return True
    return container_name is not None and container_name in whitelist


def evaluate_record(
    record:   AcceleratorProcessRecord,
    lookup:   ProcessLookup,
    bindings: Sequence[ContainerBinding],
    config:   MonitorConfig,
    now:      float,
) -> Optional[Decision]:
    """Decide for a single record. None means no Decision for this record."""
    info = lookup(record.pid)
    if info is None:
        return None

    container = resolve_container(record.pid, bindings) if config.docker_enabled else None

    if not is_targeted(info.command_name, config.target_workloads):
        return None

    def decision(action: Action, reason: str, idle: Optional[int] = None) -> Decision:
        return Decision(
            pid            = record.pid,
            command_name   = info.command_name,
            container_name = container,
            idle_seconds   = idle,
            action         = action,
            reason         = reason,
            start_time     = info.start_time,
        )

    if is_whitelisted(info.command_name, container, config.whitelist):
        return decision(Action.NONE, "whitelisted")

    if record.used_memory_bytes != 0:
        return decision(Action.NONE, "active")

    if info.start_time is None:
        log.error(f"Failed to get start time for PID {record.pid} ({info.command_name}), skipping")
        return None

    idle = int(now - info.start_time)
    if idle <= config.idle_time_threshold:
        return decision(Action.NONE, "below threshold", idle)

    action = Action.WARN if config.warning_only else Action.TERMINATE
    return decision(action, "idle", idle)


def decide(
    records:  Sequence[AcceleratorProcessRecord],
    lookup:   ProcessLookup,
    bindings: Sequence[ContainerBinding],
    config:   MonitorConfig,
    now:      float,
) -> list[Decision]:
    """
    Evaluate every record. A failure on one record is logged and skipped;
    it never affects the others.
    """
    decisions = []
    for record in records:
        try:
            d = evaluate_record(record, lookup, bindings, config, now)
        except Exception as e:
            log.error(f"Failed to evaluate GPU process PID {record.pid}: {e}")
            continue
        if d is not None:
            decisions.append(d)
    return decisions
