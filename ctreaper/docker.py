"""Reaper provider backed by the docker (or podman) command line.

Only what is needed to run the reaper container is implemented here.
"""

import logging
import shutil
import socket
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional

from .config import ReaperSettings
from .container import ContainerRequest, ForListeningPort
from .reaper import split_endpoint

POLL_INTERVAL = 0.1

# Published on all interfaces; connect through localhost instead
_WILDCARD_HOSTS = ("0.0.0.0", "::", "[::]")


def _with_protocol(port: str) -> str:
    return port if "/" in port else f"{port}/tcp"


@dataclass
class DockerContainer:
    """A container started by DockerCLIProvider."""

    container_id: str
    runtime: str = "docker"

    def port_endpoint(self, port: str) -> str:
        """Return the host:port the given container port is published on."""
        output = _run_runtime(
            [self.runtime, "port", self.container_id, _with_protocol(port)]
        )
        mappings = [line.strip() for line in output.splitlines() if line.strip()]
        if not mappings:
            raise RuntimeError(
                f"Port {port} of container {self.container_id} is not published"
            )

        host, host_port = split_endpoint(mappings[0])
        if host in _WILDCARD_HOSTS:
            host = "localhost"
        return f"{host}:{host_port}"


class DockerCLIProvider:
    """Runs containers through the container runtime's CLI."""

    def __init__(self, settings: Optional[ReaperSettings] = None, dry_run: bool = False):
        self._settings = settings or ReaperSettings()
        self.dry_run = dry_run

    def config(self) -> ReaperSettings:
        return self._settings

    def default_network(self) -> Optional[str]:
        return self._settings.default_network

    def build_run_args(self, request: ContainerRequest) -> List[str]:
        """Build run arguments for the request.

        registry_credentials are not passed on; image pulls use whatever
        `docker login` state the runtime already has.
        """
        logging.debug("Building run arguments")

        args = [self._settings.runtime, "run", "--detach"]

        if request.auto_remove:
            args.append("--rm")

        if request.privileged:
            args.append("--privileged")

        for key, value in sorted(request.labels.items()):
            args.append(f"--label={key}={value}")

        for mount in request.mounts:
            args.append(f"--volume={mount.to_string()}")
            logging.debug(f"  Volume: {mount.to_string()}")

        for port in request.exposed_ports:
            args.append(f"--publish={port}")

        if request.network_mode:
            args.append(f"--network={request.network_mode}")
            logging.debug(f"Network mode: {request.network_mode}")

        args.append(request.image)
        return args

    def run_container(self, request: ContainerRequest) -> DockerContainer:
        """Start the container and wait until it is ready.

        Raises:
            RuntimeError: If the runtime is missing, fails, or the container
                does not become ready in time
        """
        args = self.build_run_args(request)
        logging.debug(f"Executing: {' '.join(args)}")

        if self.dry_run:
            print(" ".join(args))
            for network in request.networks:
                print(f"{self._settings.runtime} network connect {network} <container>")
            return DockerContainer("dry-run", runtime=self._settings.runtime)

        if shutil.which(self._settings.runtime) is None:
            raise RuntimeError(
                f"Container runtime '{self._settings.runtime}' not found. "
                "Please install Docker or Podman."
            )

        container_id = _run_runtime(args).strip()
        container = DockerContainer(container_id, runtime=self._settings.runtime)
        logging.debug(f"Started container {container_id}")

        for network in request.networks:
            _run_runtime([self._settings.runtime, "network", "connect", network, container_id])
            logging.debug(f"Connected {container_id} to network {network}")

        if isinstance(request.waiting_for, ForListeningPort):
            wait_for_listening_port(container, request.waiting_for)

        return container


def wait_for_listening_port(container: DockerContainer, strategy: ForListeningPort) -> None:
    """Poll until the container's published port accepts connections."""
    deadline = time.monotonic() + strategy.startup_timeout
    last_error: Optional[Exception] = None

    while time.monotonic() < deadline:
        try:
            host, port = split_endpoint(container.port_endpoint(strategy.port))
            with socket.create_connection((host, port), timeout=1.0):
                logging.debug(f"Port {strategy.port} of {container.container_id} is ready")
                return
        except (OSError, RuntimeError, ValueError) as e:
            last_error = e
        time.sleep(POLL_INTERVAL)

    raise RuntimeError(
        f"Port {strategy.port} of container {container.container_id} did not "
        f"accept connections within {strategy.startup_timeout}s: {last_error}"
    )


def _run_runtime(args: List[str]) -> str:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        error_msg = f"'{' '.join(args[:2])}' failed with exit code {e.returncode}"
        if e.stderr:
            error_msg += f": {e.stderr.strip()}"
        raise RuntimeError(error_msg) from e
    except FileNotFoundError:
        raise RuntimeError(
            f"Container runtime '{args[0]}' not found. Please install Docker or Podman."
        ) from None
    return result.stdout
