"""ctreaper - Remove a test session's containers, even if the tests crash"""

from ctreaper.version import __version__
from ctreaper.config import ReaperSettings, SessionContext, resolve_host_socket
from ctreaper.container import (
    ContainerRequest,
    ForListeningPort,
    ReaperOptions,
    build_reaper_request,
)
from ctreaper.labels import label_filter, reaper_labels, session_labels
from ctreaper.provider import Container, DefaultNetworkProvider, ReaperProvider
from ctreaper.reaper import (
    ConnectionState,
    Reaper,
    ReaperConnection,
    ReaperConnectionError,
    ReaperRegistry,
    new_reaper,
)

__all__ = [
    "__version__",
    "Container",
    "ConnectionState",
    "ContainerRequest",
    "DefaultNetworkProvider",
    "ForListeningPort",
    "Reaper",
    "ReaperConnection",
    "ReaperConnectionError",
    "ReaperOptions",
    "ReaperProvider",
    "ReaperRegistry",
    "ReaperSettings",
    "SessionContext",
    "build_reaper_request",
    "label_filter",
    "new_reaper",
    "reaper_labels",
    "resolve_host_socket",
    "session_labels",
]
