"""Client configuration loading.

Settings come from an optional YAML file and are then overridden by
``FREEBOX_*`` environment variables, so a container can be configured
without shipping a file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_URL = "https://mafreebox.freebox.fr"
DEFAULT_REQUEST_TIMEOUT_MS = 10_000
DEFAULT_MAX_RETRIES = 2
DEFAULT_PROJECT_MARKERS: tuple[str, ...] = ("pyproject.toml", "setup.cfg", ".git")


@dataclass(frozen=True)
class FreeboxConfig:
    """Settings for talking to one Freebox.

    Attributes:
        url: Base URL of the box (public hostname or local address).
        local_ip: LAN address used when the hostname does not resolve.
        app_id: Application identifier registered on the box.
        app_name: Name shown on the box front panel during approval.
        app_version: Application version sent with registration/login.
        device_name: Host name shown on the box during approval.
        api_version: API prefix segment, e.g. ``v14``.
        request_timeout_ms: Default per-request deadline.
        max_retries: Retries allowed after the first attempt on slow hardware.
        token_file: Credential file; relative paths resolve against the
            project root.
        project_markers: File names identifying the project root.
        ca_file: Optional CA bundle to verify the box certificate against.
            Without it certificate verification is disabled for box requests.
    """

    url: str = DEFAULT_URL
    local_ip: str = "192.168.1.254"
    app_id: str = "fr.mynetwork.dashboard"
    app_name: str = "MynetworK Dashboard"
    app_version: str = "2.0.0"
    device_name: str = "MynetworK Web App"
    api_version: str = "v14"
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    token_file: str = ".freebox_token"
    project_markers: tuple[str, ...] = DEFAULT_PROJECT_MARKERS
    ca_file: str | None = None

    def __post_init__(self) -> None:
        if self.request_timeout_ms <= 0:
            raise ConfigError(
                f"request_timeout_ms must be positive, got {self.request_timeout_ms}"
            )
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def local_url(self) -> str:
        """Base URL pointing at the box LAN address."""
        return f"https://{self.local_ip}"


# Environment variable -> config field
_ENV_FIELDS: dict[str, str] = {
    "FREEBOX_URL": "url",
    "FREEBOX_LOCAL_IP": "local_ip",
    "FREEBOX_APP_ID": "app_id",
    "FREEBOX_APP_NAME": "app_name",
    "FREEBOX_APP_VERSION": "app_version",
    "FREEBOX_DEVICE_NAME": "device_name",
    "FREEBOX_API_VERSION": "api_version",
    "FREEBOX_REQUEST_TIMEOUT": "request_timeout_ms",
    "FREEBOX_TOKEN_FILE": "token_file",
    "FREEBOX_CA_FILE": "ca_file",
}

_INT_FIELDS = frozenset({"request_timeout_ms", "max_retries"})


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    # Allow either a flat file or one nested under a "freebox" key
    nested = data.get("freebox")
    return nested if isinstance(nested, dict) else data


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError) as err:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from err
    if name == "project_markers":
        if isinstance(value, str):
            return (value,)
        return tuple(value)
    return value


def load_config(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> FreeboxConfig:
    """Build a ``FreeboxConfig`` from a YAML file and the environment.

    Args:
        path: Optional YAML file. Unknown keys are ignored.
        env: Environment mapping, ``os.environ`` by default.

    Returns:
        The merged configuration.

    Raises:
        ConfigError: If the file is missing or a value is invalid.
    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(FreeboxConfig)}
    values: dict[str, Any] = {}

    if path is not None:
        for key, value in _load_yaml(Path(path)).items():
            if key in known and value is not None:
                values[key] = _coerce(key, value)

    # FREEBOX_HOST only sets the host; an explicit FREEBOX_URL wins
    if host := env.get("FREEBOX_HOST"):
        values["url"] = f"https://{host}"
    for var, name in _ENV_FIELDS.items():
        if (value := env.get(var)) not in (None, ""):
            values[name] = _coerce(name, value)

    return FreeboxConfig(**values)
