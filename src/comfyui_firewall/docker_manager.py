"""
This module provides the `DockerManager` class, which looks up the ComfyUI
container through the `docker` Python SDK. It resolves the container's current
address on its Docker network and runs the outbound connectivity probe inside it.
"""

import logging
import textwrap
from enum import Enum
from functools import cached_property

import docker
from docker.errors import DockerException, NotFound

from comfyui_firewall.exceptions import ContainerRuntimeError, VerificationInconclusive, WorkloadNotRunning

PROBE_SCRIPT = textwrap.dedent(
    """
    import socket
    import sys
    import urllib.request

    socket.setdefaulttimeout({timeout})
    try:
        urllib.request.urlopen({url!r})
    except Exception:
        sys.exit(0)
    sys.exit(1)
    """
)

PROBE_BLOCKED_EXIT = 0
PROBE_REACHABLE_EXIT = 1


class ProbeOutcome(Enum):
    BLOCKED = "blocked"
    REACHABLE = "reachable"
    INCONCLUSIVE = "inconclusive"


class DockerManager:
    def __init__(self, container_name: str, docker_client: docker.DockerClient | None = None):
        self.container_name = container_name
        self._docker_client = docker_client
        self.logger = logging.getLogger(__name__)

    @cached_property
    def docker_client(self) -> docker.DockerClient:
        if self._docker_client is not None:
            return self._docker_client
        try:
            return docker.from_env()
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot connect to the Docker daemon: {e}") from e

    def get_container(self) -> docker.models.containers.Container:
        try:
            return self.docker_client.containers.get(self.container_name)
        except NotFound as e:
            self.logger.debug(f"Container '{self.container_name}' not found.")
            raise WorkloadNotRunning(self.container_name, "was not found") from e
        except DockerException as e:
            self.logger.exception(f"Error accessing container '{self.container_name}': {e}")
            raise ContainerRuntimeError(f"Error accessing container '{self.container_name}': {e}") from e

    def get_running_container(self) -> docker.models.containers.Container:
        container = self.get_container()
        if container.status != "running":
            raise WorkloadNotRunning(self.container_name, f"is not running (status: {container.status})")
        return container

    def is_running(self) -> bool:
        try:
            self.get_running_container()
        except WorkloadNotRunning:
            return False
        return True

    def get_container_ip(self) -> str:
        """
        Returns the address of the container on the first of its Docker networks
        that has one. The address may change whenever the container restarts, so
        it is looked up again on every call.
        """
        container = self.get_running_container()
        ip = self._extract_ip(container)
        if not ip:
            raise WorkloadNotRunning(self.container_name, "has no network address")
        self.logger.debug(f"Container '{self.container_name}' has address {ip}")
        return ip

    def run_probe(self, url: str, timeout: int = 3) -> ProbeOutcome:
        """
        Tries to open `url` from inside the container. BLOCKED is the desired
        outcome once isolation is enabled.
        """
        container = self.get_running_container()
        script = PROBE_SCRIPT.format(timeout=timeout, url=url)
        try:
            exit_code, output = container.exec_run(["python3", "-c", script])
        except DockerException as e:
            raise VerificationInconclusive(f"Could not run the probe in '{self.container_name}': {e}") from e

        if exit_code == PROBE_BLOCKED_EXIT:
            return ProbeOutcome.BLOCKED
        if exit_code == PROBE_REACHABLE_EXIT:
            return ProbeOutcome.REACHABLE

        detail = output.decode(errors="replace").strip() if isinstance(output, bytes) else output
        raise VerificationInconclusive(f"Probe exited with status {exit_code}: {detail}")

    def _extract_ip(self, container: docker.models.containers.Container) -> str | None:
        networks = container.attrs.get("NetworkSettings", {}).get("Networks") or {}
        for network in networks.values():
            ip = (network or {}).get("IPAddress")
            if ip:
                return ip
        return container.attrs.get("NetworkSettings", {}).get("IPAddress") or None
