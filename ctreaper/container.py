"""Container request for the reaper.

This module handles building the reaper's container request including:
- VolumeSpec for the Docker socket bind mount
- ForListeningPort readiness strategy attached to the request
- ContainerRequest dataclass handed to the provider
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .labels import reaper_labels
from .provider import DefaultNetworkProvider, ReaperProvider

REAPER_DEFAULT_IMAGE = "docker.io/testcontainers/ryuk:0.3.4"
REAPER_PORT = "8080/tcp"
REAPER_DOCKER_SOCKET = "/var/run/docker.sock"

BRIDGE = "bridge"


@dataclass
class VolumeSpec:
    """Volume specification with host path, container path, and options."""

    host_path: str
    container_path: str
    options: List[str] = field(default_factory=list)

    def to_string(self) -> str:
        """Convert volume spec to Docker format string."""
        if self.options:
            return f"{self.host_path}:{self.container_path}:{','.join(self.options)}"
        return f"{self.host_path}:{self.container_path}"

    @classmethod
    def bind(cls, host_path: str, container_path: str, read_only: bool = False) -> "VolumeSpec":
        return cls(host_path, container_path, ["ro" if read_only else "rw"])


@dataclass(frozen=True)
class ForListeningPort:
    """Wait until the given container port accepts TCP connections.

    Providers are expected to honor this before returning from
    run_container().
    """

    port: str
    startup_timeout: float = 60.0


@dataclass(frozen=True)
class ReaperOptions:
    """Caller options for starting the reaper."""

    image_name: Optional[str] = None
    registry_credentials: Optional[str] = None


@dataclass(kw_only=True)
class ContainerRequest:
    """Everything a provider needs to start a container."""

    image: str
    exposed_ports: List[str] = field(default_factory=list)
    network_mode: Optional[str] = None
    networks: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    mounts: List[VolumeSpec] = field(default_factory=list)
    privileged: bool = False
    auto_remove: bool = False
    skip_reaper: bool = False
    registry_credentials: Optional[str] = None
    waiting_for: Optional[Any] = None
    # Deprecated: use image. Older configuration readers still look here.
    reaper_image: Optional[str] = None
    reaper_options: Optional[ReaperOptions] = None


def reaper_image(image_name: Optional[str]) -> str:
    if not image_name:
        return REAPER_DEFAULT_IMAGE
    return image_name


def build_reaper_request(
    session_id: str,
    provider: ReaperProvider,
    host_socket: str,
    options: Optional[ReaperOptions] = None,
) -> ContainerRequest:
    """Build the container request for the reaper of the given session.

    The image is taken from options first, then the provider's settings,
    then the built-in default.
    """
    options = options or ReaperOptions()
    settings = provider.config()

    request = ContainerRequest(
        image=reaper_image(options.image_name or settings.ryuk_image),
        exposed_ports=[REAPER_PORT],
        network_mode=BRIDGE,
        labels=reaper_labels(session_id),
        mounts=[VolumeSpec.bind(host_socket, REAPER_DOCKER_SOCKET)],
        privileged=settings.ryuk_privileged,
        auto_remove=True,
        skip_reaper=True,
        registry_credentials=options.registry_credentials,
        waiting_for=ForListeningPort(REAPER_PORT),
        reaper_options=options,
    )
    request.reaper_image = request.image

    # Attach the reaper to the provider's network if it has one
    if isinstance(provider, DefaultNetworkProvider):
        network = provider.default_network()
        if network:
            request.networks.append(network)

    logging.debug(f"Reaper request: image={request.image} socket={host_socket}")
    return request
