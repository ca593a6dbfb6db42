"""Configuration handling for ctreaper.

Settings are read from TOML files and the environment. Lowest to highest
priority:

- built-in defaults
- user config (~/.ctreaper.toml)
- project config (.ctreaper.toml, searched upward from the start directory)
- explicit config files (in the order given)
- environment variables
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

try:
    import tomllib
except ImportError:
    # For python < 3.11
    import tomli as tomllib


CONFIG_FILE_NAME = ".ctreaper.toml"

DEFAULT_DOCKER_SOCKET = "/var/run/docker.sock"

DOCKER_SOCKET_OVERRIDE_ENV = "TESTCONTAINERS_DOCKER_SOCKET_OVERRIDE"
DOCKER_HOST_ENV = "DOCKER_HOST"

# Environment variable -> settings field
_ENV_SETTINGS = {
    "TESTCONTAINERS_RYUK_IMAGE": "ryuk_image",
    "TESTCONTAINERS_RYUK_CONTAINER_PRIVILEGED": "ryuk_privileged",
    "TESTCONTAINERS_RYUK_DISABLED": "ryuk_disabled",
    "RUNNER": "runtime",
}

# [reaper] table key -> settings field
_FILE_SETTINGS = {
    "image": "ryuk_image",
    "privileged": "ryuk_privileged",
    "disabled": "ryuk_disabled",
    "network": "default_network",
    "runtime": "runtime",
}

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off", "")


def resolve_host_socket(override: Optional[str], docker_host: Optional[str]) -> str:
    """Return the path of the local Docker socket to mount into the reaper.

    First match wins: a non-empty override, then the path of a unix://
    docker host URL, then the default socket path. Never raises.
    """
    if override:
        return override

    if not docker_host:
        return DEFAULT_DOCKER_SOCKET

    try:
        url = urlparse(docker_host)
    except ValueError:
        return DEFAULT_DOCKER_SOCKET

    if url.scheme == "unix":
        return url.path or DEFAULT_DOCKER_SOCKET
    return DEFAULT_DOCKER_SOCKET


@dataclass(frozen=True)
class SessionContext:
    """Environment-derived values for a test session."""

    docker_host: Optional[str] = None
    socket_override: Optional[str] = None

    @classmethod
    def current(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionContext":
        """Capture the context from the process environment."""
        if environ is None:
            environ = os.environ
        return cls(
            docker_host=environ.get(DOCKER_HOST_ENV) or None,
            socket_override=environ.get(DOCKER_SOCKET_OVERRIDE_ENV) or None,
        )

    def host_socket(self) -> str:
        return resolve_host_socket(self.socket_override, self.docker_host)


def parse_bool(value: Any, source: str) -> bool:
    """Parse a boolean from a TOML value or an environment string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Invalid boolean value {value!r} for {source}")


@dataclass(frozen=True)
class ReaperSettings:
    """Global settings consulted when starting the reaper."""

    ryuk_image: Optional[str] = None
    ryuk_privileged: bool = False
    ryuk_disabled: bool = False
    default_network: Optional[str] = None
    runtime: str = "docker"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, values: Mapping[str, Any], source: str = "config") -> "ReaperSettings":
        return cls().merged(values, source)

    def merged(self, values: Mapping[str, Any], source: str) -> "ReaperSettings":
        """Return a copy with the given settings fields applied."""
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in values.items():
            if key not in known:
                raise ValueError(f"Unknown setting '{key}' in {source}")
            if key in ("ryuk_privileged", "ryuk_disabled"):
                value = parse_bool(value, f"{key} in {source}")
            elif value is not None and not isinstance(value, str):
                raise ValueError(f"Setting '{key}' in {source} must be a string")
            changes[key] = value
        return replace(self, **changes)

    @classmethod
    def load(
        cls,
        explicit_config_files: Optional[List[Path]] = None,
        start_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ReaperSettings":
        """Load settings from config files and the environment."""
        if environ is None:
            environ = os.environ

        config_files = []

        user_config_path = find_user_config()
        if user_config_path:
            config_files.append(user_config_path)

        project_config_path = find_project_config(start_dir or Path.cwd())
        if project_config_path and project_config_path not in [
            path.resolve() for path in config_files
        ]:
            config_files.append(project_config_path)

        for config_file in explicit_config_files or []:
            if not config_file.exists():
                raise ValueError(f"Config file not found: {config_file}")
            config_files.append(config_file)

        settings = cls()
        for config_file in config_files:
            settings = settings.merged(
                _settings_from_file(config_file), str(config_file)
            )

        env_values = {
            field_name: environ[env_name]
            for env_name, field_name in _ENV_SETTINGS.items()
            if environ.get(env_name)
        }
        if env_values:
            settings = settings.merged(env_values, "environment")

        logging.debug(f"Reaper settings: {settings}")
        return settings


def _load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load and parse TOML configuration file."""
    try:
        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)
        logging.debug(f"Loaded config from {config_path}")
        return config_data
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Error reading {config_path}: {e}") from e


def _settings_from_file(config_path: Path) -> Dict[str, Any]:
    """Map the [reaper] table of a config file to settings fields."""
    reaper_table = _load_config_file(config_path).get("reaper", {})
    if not isinstance(reaper_table, dict):
        raise ValueError(f"[reaper] in {config_path} must be a table")

    result = {}
    for key, value in reaper_table.items():
        field_name = _FILE_SETTINGS.get(key)
        if field_name is None:
            raise ValueError(
                f"Unknown key '{key}' in [reaper] of {config_path}. "
                f"Available: {sorted(_FILE_SETTINGS)}"
            )
        result[field_name] = value
    return result


def find_user_config() -> Optional[Path]:
    """Find user configuration path (~/.ctreaper.toml)."""
    user_config_path = Path.home() / CONFIG_FILE_NAME

    if not user_config_path.is_file():
        return None

    return user_config_path


def find_project_config(start_dir: Path) -> Optional[Path]:
    """Find project configuration path (searched upward from start_dir)."""
    current = start_dir.resolve()
    while True:
        config_path = current / CONFIG_FILE_NAME
        if config_path.is_file():
            return config_path

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None
