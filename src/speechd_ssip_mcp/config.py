"""
Connection settings resolved from explicit arguments, environment and defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Tuple

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6560


@dataclass
class ConnectionSettings:
    """Where the Speech Dispatcher server is and how long to wait for it."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float | None = None


ENV_KEY_MAP: dict[str, Tuple[str, Callable[[str], Any]]] = {
    "SPEECHD_HOST": ("host", str),
    "SPEECHD_PORT": ("port", int),
    "SPEECHD_TIMEOUT": ("timeout", float),
}


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
    timeout: float | None = None,
) -> ConnectionSettings:
    """
    Resolve connection settings.

    Precedence: explicit arguments > environment variables > defaults.
    """

    data: dict[str, Any] = {}
    data.update(_load_from_env(env))
    overrides = {"host": host, "port": port, "timeout": timeout}
    data.update({key: value for key, value in overrides.items() if value is not None})
    return ConnectionSettings(**_validate(data))


def _load_from_env(env: Mapping[str, str] | None) -> dict[str, Any]:
    source = env if env is not None else os.environ
    result: dict[str, Any] = {}
    for env_key, (settings_key, caster) in ENV_KEY_MAP.items():
        if env_key in source and source[env_key] != "":
            try:
                result[settings_key] = caster(source[env_key])
            except ValueError as e:
                raise ValueError(f"{env_key} has an invalid value: {source[env_key]!r}") from e
    return result


def _validate(data: dict[str, Any]) -> dict[str, Any]:
    port = data.get("port")
    if port is not None and not (0 < int(port) < 65536):
        raise ValueError("port must be between 1 and 65535")

    timeout = data.get("timeout")
    if timeout is not None and float(timeout) <= 0:
        raise ValueError("timeout must be positive")

    host = data.get("host")
    if host is not None and not str(host).strip():
        raise ValueError("host must not be empty")

    return data
