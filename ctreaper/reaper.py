"""The reaper: a Ryuk sidecar that removes a session's containers.

A single reaper container is started per registry (normally one per test
process) with the Docker socket mounted into it. Each call to
Reaper.connect() opens a TCP connection and tells Ryuk which labels belong
to the session. Ryuk removes every matching container once that connection
is closed, including when the test process dies.

Typical lifecycle::

    registry = ReaperRegistry()
    reaper = registry.get_or_create(session_id, provider)
    connection = reaper.connect()
    # ... start containers labeled with reaper.labels() ...
    connection.terminate()
"""

import enum
import logging
import socket
import threading
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .config import SessionContext
from .container import ReaperOptions, build_reaper_request
from .labels import label_filter, session_labels
from .provider import ReaperProvider

DIAL_TIMEOUT = 10.0
NEGOTIATION_ATTEMPTS = 3
ACK = b"ACK\n"


class ReaperConnectionError(ConnectionError):
    """Raised when the reaper's endpoint cannot be reached."""


class ConnectionState(enum.Enum):
    DIALING = "dialing"
    CONNECTED = "connected"
    NEGOTIATING = "negotiating"
    ARMED = "armed"
    CLOSED = "closed"


def split_endpoint(endpoint: str) -> Tuple[str, int]:
    """Split "host:port" (or "[v6]:port") into host and port."""
    host, sep, port = endpoint.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid endpoint: {endpoint!r}")
    return host.strip("[]"), int(port)


@dataclass(frozen=True)
class Reaper:
    """A running reaper container."""

    provider: ReaperProvider
    session_id: str
    endpoint: str

    def labels(self) -> Dict[str, str]:
        """Labels to put on containers so this reaper cleans them up."""
        return session_labels(self.session_id)

    def connect(self) -> "ReaperConnection":
        """Connect to the reaper and register this session's labels.

        Returns once the TCP connection is open. The label negotiation runs
        on a background thread; call terminate() on the returned connection
        when the session is done.

        Raises:
            ReaperConnectionError: If the endpoint cannot be reached
        """
        host, port = split_endpoint(self.endpoint)
        try:
            sock = socket.create_connection((host, port), timeout=DIAL_TIMEOUT)
        except OSError as e:
            raise ReaperConnectionError(
                f"Connecting to Ryuk on {self.endpoint} failed: {e}"
            ) from e

        # Only the dial is bounded
        sock.settimeout(None)

        connection = ReaperConnection(
            sock,
            label_filter(self.labels()),
            endpoint=self.endpoint,
            session_id=self.session_id,
        )
        connection.start()
        return connection


class ReaperConnection:
    """Open connection to the reaper, owned by one background thread.

    The connection stays open until terminate() is called. Closing it is what
    tells Ryuk to remove the session's containers; nothing else is sent.
    """

    def __init__(
        self,
        sock: socket.socket,
        filter_line: str,
        endpoint: str = "",
        session_id: str = "",
    ):
        self.filter = filter_line
        self.endpoint = endpoint
        self.session_id = session_id
        self.attempts = 0
        self.state = ConnectionState.CONNECTED
        self._sock = sock
        self._armed = threading.Event()
        self._terminate = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"ctreaper-{endpoint}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def terminate(self) -> None:
        """Close the connection, letting the reaper clean up.

        Only the first call has an effect.
        """
        self._terminate.set()

    def wait_armed(self, timeout: Optional[float] = None) -> bool:
        """Wait until negotiation has finished, successfully or not."""
        return self._armed.wait(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the connection thread to finish. Returns True if it did."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def __enter__(self) -> "ReaperConnection":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.terminate()
        return False  # Don't suppress exceptions

    def _run(self) -> None:
        stream = None
        try:
            stream = self._sock.makefile("rwb")
            self.state = ConnectionState.NEGOTIATING
            self._negotiate(stream)

            # Armed whether or not Ryuk acknowledged the filter
            self.state = ConnectionState.ARMED
            self._armed.set()
            self._terminate.wait()
        finally:
            self._close(stream)
            self.state = ConnectionState.CLOSED
            self._armed.set()
            logging.debug(f"Closed Ryuk connection to {self.endpoint}")

    def _negotiate(self, stream) -> bool:
        line = (self.filter + "\n").encode()
        while self.attempts < NEGOTIATION_ATTEMPTS:
            self.attempts += 1
            try:
                stream.write(line)
                stream.flush()
                response = stream.readline()
            except OSError as e:
                logging.debug(f"Ryuk negotiation attempt {self.attempts} failed: {e}")
                continue

            if response == ACK:
                logging.debug(f"Ryuk acknowledged session {self.session_id}")
                return True
            logging.debug(
                f"Ryuk negotiation attempt {self.attempts}: unexpected response {response!r}"
            )

        logging.warning(
            f"Ryuk on {self.endpoint} did not acknowledge session "
            f"{self.session_id} after {self.attempts} attempts; "
            f"containers may not be cleaned up",
            extra={
                "event": "reaper.handshake_failed",
                "endpoint": self.endpoint,
                "session_id": self.session_id,
                "attempts": self.attempts,
            },
        )
        return False

    def _close(self, stream) -> None:
        for resource in (stream, self._sock):
            if resource is None:
                continue
            try:
                resource.close()
            except OSError:
                pass


class ReaperRegistry:
    """Holds the reaper for a test process.

    Owned by whatever runs the test session (see ctreaper.pytest_plugin).
    The first get_or_create() call starts the reaper; every later call
    returns that same reaper, even when called with a different session id
    or provider. The reaper is never stopped by the registry; it removes
    itself once all connections are gone.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reaper: Optional[Reaper] = None

    @property
    def reaper(self) -> Optional[Reaper]:
        return self._reaper

    def get_or_create(
        self,
        session_id: str,
        provider: ReaperProvider,
        context: Optional[SessionContext] = None,
        options: Optional[ReaperOptions] = None,
    ) -> Reaper:
        """Return the registry's reaper, starting it on first use.

        Raises whatever the provider raises; nothing is cached on failure so
        the next call starts over.
        """
        with self._lock:
            if self._reaper is not None:
                # Deliberately not compared with session_id/provider
                return self._reaper

            context = context or SessionContext.current()
            host_socket = context.host_socket()
            request = build_reaper_request(session_id, provider, host_socket, options)

            logging.debug(f"Starting reaper for session {session_id}")
            container = provider.run_container(request)
            endpoint = container.port_endpoint("8080")

            self._reaper = Reaper(
                provider=provider, session_id=session_id, endpoint=endpoint
            )
            logging.info(f"Reaper for session {session_id} listening on {endpoint}")
            return self._reaper


def new_reaper(
    session_id: str,
    provider: ReaperProvider,
    image_name: Optional[str],
    registry: ReaperRegistry,
) -> Reaper:
    """Deprecated: use ReaperRegistry.get_or_create()."""
    warnings.warn(
        "new_reaper() is deprecated, use ReaperRegistry.get_or_create()",
        DeprecationWarning,
        stacklevel=2,
    )
    return registry.get_or_create(
        session_id, provider, options=ReaperOptions(image_name=image_name)
    )
