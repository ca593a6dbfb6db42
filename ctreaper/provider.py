"""Interfaces the reaper needs from whatever starts containers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .config import ReaperSettings
    from .container import ContainerRequest


class Container(Protocol):
    """Handle to a started container."""

    def port_endpoint(self, port: str) -> str:
        """Return "host:port" where the given container port is published."""
        ...


class ReaperProvider(Protocol):
    """Something that can run the reaper container."""

    def run_container(self, request: ContainerRequest) -> Container:
        """Start a container and wait for request.waiting_for, if set."""
        ...

    def config(self) -> ReaperSettings:
        ...


@runtime_checkable
class DefaultNetworkProvider(Protocol):
    """Optional provider capability: a network new containers should join."""

    def default_network(self) -> Optional[str]:
        ...
