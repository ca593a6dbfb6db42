"""pytest integration.

Enable with ``pytest --reaper`` (or ``reaper_enabled = true`` in the ini
file). Tests that request the ``reaper`` fixture get a reaper connected for
the whole test session; containers they start with ``reaper_labels`` are
removed when the session ends, or when pytest dies.
"""

import logging
import uuid

import pytest

from .config import ReaperSettings
from .docker import DockerCLIProvider
from .labels import session_labels
from .reaper import ReaperRegistry

registry_key = pytest.StashKey[ReaperRegistry]()


def pytest_addoption(parser):
    group = parser.getgroup("ctreaper")
    group.addoption(
        "--reaper",
        action="store_true",
        default=None,
        help="Start a Ryuk reaper for containers created by the tests",
    )
    parser.addini(
        "reaper_enabled",
        type="bool",
        default=False,
        help="Start a Ryuk reaper for containers created by the tests",
    )


def pytest_configure(config):
    config.stash[registry_key] = ReaperRegistry()


def reaper_enabled(config) -> bool:
    option = config.getoption("reaper")
    if option is not None:
        return option
    return config.getini("reaper_enabled")


@pytest.fixture(scope="session")
def reaper_session_id():
    """Identifier of this test session."""
    return uuid.uuid4().hex


@pytest.fixture(scope="session")
def reaper_labels(reaper_session_id):
    """Labels to put on containers the reaper should remove."""
    return session_labels(reaper_session_id)


@pytest.fixture(scope="session")
def reaper(pytestconfig, reaper_session_id):
    """Running reaper with this session's labels registered."""
    if not reaper_enabled(pytestconfig):
        pytest.skip("reaper not enabled (use --reaper)")

    settings = ReaperSettings.load(start_dir=pytestconfig.rootpath)
    if settings.ryuk_disabled:
        pytest.skip("reaper disabled by configuration")

    registry = pytestconfig.stash[registry_key]
    try:
        running = registry.get_or_create(reaper_session_id, DockerCLIProvider(settings))
    except RuntimeError as e:
        pytest.skip(f"could not start reaper: {e}")

    connection = running.connect()
    yield running

    logging.debug(f"Releasing reaper session {reaper_session_id}")
    connection.terminate()
    connection.join(timeout=10)
