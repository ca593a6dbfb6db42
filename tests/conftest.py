import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from unittest.mock import patch

import pytest

from ctreaper.config import ReaperSettings

pytest_plugins = ["pytester"]

ISOLATED_ENV = [
    "DOCKER_HOST",
    "RUNNER",
    "TESTCONTAINERS_DOCKER_SOCKET_OVERRIDE",
    "TESTCONTAINERS_RYUK_IMAGE",
    "TESTCONTAINERS_RYUK_CONTAINER_PRIVILEGED",
    "TESTCONTAINERS_RYUK_DISABLED",
]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the developer's environment and config files out of tests."""
    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)

    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    with patch("ctreaper.config.Path.home", return_value=home):
        yield


@pytest.fixture
def home_dir():
    return Path.home()


class FakeRyuk:
    """Minimal Ryuk stand-in: answers each received line from a script.

    Once the script is used up the last answer is repeated. Stops when the
    client closes the connection.
    """

    def __init__(self, responses: List[bytes]):
        self.responses = list(responses)
        self.lines: List[bytes] = []
        self.connected = threading.Event()
        self.disconnected = threading.Event()
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.bind(("127.0.0.1", 0))
        self._server.listen(1)
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def endpoint(self) -> str:
        host, port = self._server.getsockname()
        return f"{host}:{port}"

    def _serve(self) -> None:
        try:
            conn, _ = self._server.accept()
        except OSError:
            return
        self.connected.set()
        with conn, conn.makefile("rwb") as stream:
            try:
                while True:
                    line = stream.readline()
                    if not line:
                        break
                    self.lines.append(line)
                    index = min(len(self.lines), len(self.responses)) - 1
                    stream.write(self.responses[index])
                    stream.flush()
            except OSError:
                pass
        self.disconnected.set()

    def close(self) -> None:
        self._server.close()


@pytest.fixture
def fake_ryuk():
    servers = []

    def start(*responses: bytes) -> FakeRyuk:
        server = FakeRyuk(list(responses) or [b"ACK\n"])
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


@dataclass
class FakeContainer:
    endpoint: str
    ports: List[str] = field(default_factory=list)

    def port_endpoint(self, port: str) -> str:
        self.ports.append(port)
        return self.endpoint


class FakeProvider:
    """Records requests and hands out FakeContainers."""

    def __init__(
        self,
        settings: Optional[ReaperSettings] = None,
        endpoint: str = "localhost:32768",
        error: Optional[Exception] = None,
    ):
        self.settings = settings or ReaperSettings()
        self.endpoint = endpoint
        self.error = error
        self.requests = []

    def run_container(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return FakeContainer(self.endpoint)

    def config(self):
        return self.settings


class NetworkedProvider(FakeProvider):
    def __init__(self, network: Optional[str], **kwargs):
        super().__init__(**kwargs)
        self.network = network

    def default_network(self):
        return self.network


@pytest.fixture
def provider():
    return FakeProvider()
