"""
Container Identity
==================

Maps container root PIDs to container names using the Docker Engine API.

The binding list is rebuilt every cycle: containers come and go, and a stale
map could attach a whitelisted name to an unrelated process.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import docker  # type: ignore
from docker.errors import DockerException  # type: ignore
from requests.exceptions import RequestException

from .errors import ContainerSourceError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerBinding:
    container_name: str
    root_pid: int


def resolve_container(pid: int, bindings: Sequence[ContainerBinding]) -> Optional[str]:
    """
    Name of the container whose root PID is `pid`, or None.
    If several bindings share a PID the first one enumerated wins.
    """
    for binding in bindings:
        if binding.root_pid == pid:
            return binding.container_name
    return None


def _strip_name(name: str) -> str:
    return name[1:] if name.startswith("/") else name


# ─── Docker ───────────────────────────────────────────────────────────────────

class DockerContainerSource:
    def __init__(self, timeout: float = 10.0, client=None):
        if client is not None:
            self.client = client
            return
        try:
            self.client = docker.from_env(timeout=timeout)
        except DockerException as e:
            raise ContainerSourceError(f"Failed to initialize Docker client: {e}") from e

    def bindings(self) -> list[ContainerBinding]:
        """Snapshot of all running containers' root PIDs."""
        try:
            containers = self.client.containers.list(sparse=True)
        except (DockerException, RequestException) as e:
            raise ContainerSourceError(f"Failed to get Docker container list: {e}") from e

        result = []
        for container in containers:
            try:
                inspect = self.client.api.inspect_container(container.id)
            except (DockerException, RequestException) as e:
                log.error(f"Failed to inspect container {container.id}: {e}")
                continue

            pid  = int((inspect.get("State") or {}).get("Pid") or 0)
            name = _strip_name(inspect.get("Name") or "")
            if pid == 0 or not name:
                # Exited between list and inspect
                continue

            log.debug(f"Docker container {name} has root PID {pid}")
            result.append(ContainerBinding(container_name=name, root_pid=pid))
        return result

    def close(self):
        try:
            self.client.close()
        except (DockerException, RequestException) as e:
            log.debug(f"Docker client close failed: {e}")
