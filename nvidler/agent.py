"""
nvidler: Main Daemon
====================

The entry point for the monitor.

Startup sequence:
  1. Parse config (flags > config file > NVIDLER_* env > defaults)
  2. Rotate + open the log file, echo date and configuration
  3. Build the GPU source and, if enabled, the Docker client
  4. Every sleep_interval seconds: query → decide → act

Failures inside a cycle never stop the loop. Only startup failures (bad
config, unwritable log file, unreachable Docker daemon) exit the process.

Safe shutdown:
  SIGTERM / SIGINT → finish the current cycle → close log file → exit
"""

from __future__ import annotations
import functools
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from .actions import ActionExecutor, ActionResult
from .config import MonitorConfig, parse_config
from .containers import ContainerBinding, DockerContainerSource
from .decision import Action, Decision, decide
from .errors import ConfigError, ContainerSourceError, GpuQueryError, LogSinkError
from .gpu_processes import make_gpu_source
from .logsink import close_logging, setup_logging
from .process_info import lookup_process

log = logging.getLogger("nvidler.agent")

STOP_POLL_SECONDS = 0.5


@dataclass
class CycleReport:
    records:   int                  = 0
    decisions: list[Decision]       = field(default_factory=list)
    results:   list[ActionResult]   = field(default_factory=list)
    aborted:   Optional[str]        = None

    @property
    def acted(self) -> list[Decision]:
        return [d for d in self.decisions if d.action is not Action.NONE]


# ─── Monitor ──────────────────────────────────────────────────────────────────

class IdleMonitor:
    def __init__(
        self,
        config:           MonitorConfig,
        gpu_source,
        container_source: Optional[DockerContainerSource] = None,
        lookup:           Optional[Callable] = None,
        executor:         Optional[ActionExecutor] = None,
        clock:            Callable[[], float] = time.time,
    ):
        self.config           = config
        self.gpu_source       = gpu_source
        self.container_source = container_source
        self.lookup           = lookup or functools.partial(lookup_process, timeout=config.command_timeout)
        self.executor         = executor or ActionExecutor(config.idle_time_threshold, dry_run=config.dry_run)
        self.clock            = clock

        # Plain flag: stop() runs inside a signal handler and must not take a lock
        self._running    = True
        self.cycles      = 0

    # ─── One cycle ────────────────────────────────────────────────────────────

    def _container_bindings(self) -> Sequence[ContainerBinding]:
        if not self.config.docker_enabled or self.container_source is None:
            return []
        return self.container_source.bindings()

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        self.cycles += 1

        try:
            records = self.gpu_source.query()
        except GpuQueryError as e:
            log.error(f"[cycle] Failed to query GPU processes: {e}")
            report.aborted = "gpu query failed"
            return report

        report.records = len(records)
        log.info(f"Current GPU Processes:\n{self.gpu_source.last_raw}")
        if not records:
            return report

        try:
            bindings = self._container_bindings()
        except ContainerSourceError as e:
            log.error(f"[cycle] {e}, skipping this cycle")
            report.aborted = "container listing failed"
            return report

        report.decisions = decide(records, self.lookup, bindings, self.config, self.clock())

        for d in report.decisions:
            if d.action is Action.NONE and not self.config.verbose:
                continue
            report.results.append(self.executor.execute(d))

        if report.acted:
            failed = sum(1 for r in report.results if not r.ok)
            log.info(f"[cycle] {len(report.acted)} idle process(es) acted on, {failed} failure(s)")
        return report

    # ─── Main loop ────────────────────────────────────────────────────────────

    def run(self):
        log.info("Starting GPU idle monitor...")

        while self._running:
            try:
                self.run_cycle()
            except Exception:
                log.exception("[cycle] Unexpected error, continuing with next cycle")

            self._sleep(self.config.sleep_interval)

        log.info("GPU idle monitor stopped.")

    def _sleep(self, seconds: float):
        deadline = time.monotonic() + seconds
        while self._running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, STOP_POLL_SECONDS))

    def stop(self):
        self._running = False

    def close(self):
        if self.container_source is not None:
            self.container_source.close()


# ─── Entry Point ──────────────────────────────────────────────────────────────

def build_monitor(config: MonitorConfig) -> IdleMonitor:
    """Construct the monitor. Raises ContainerSourceError if Docker is unreachable."""
    gpu_source = make_gpu_source(config.gpu_backend, timeout=config.command_timeout)
    container_source = None
    if config.docker_enabled:
        container_source = DockerContainerSource(timeout=config.command_timeout)
    return IdleMonitor(config, gpu_source, container_source)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config, args = parse_config(argv)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    try:
        setup_logging(config.log_file, verbose=config.verbose)
    except LogSinkError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    log.info(f"Current Date: {time.strftime('%a %b %d %H:%M:%S %Y')}")
    log.info(config.describe())

    try:
        monitor = build_monitor(config)
    except ContainerSourceError as e:
        log.error(str(e))
        close_logging()
        return 1

    signal.signal(signal.SIGTERM, lambda s, f: monitor.stop())
    signal.signal(signal.SIGINT,  lambda s, f: monitor.stop())

    try:
        if args.once:
            monitor.run_cycle()
        else:
            monitor.run()
    finally:
        monitor.close()
        close_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
