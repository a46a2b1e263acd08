"""Persistent storage for the application token issued at registration."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_PROJECT_MARKERS

_LOGGER = logging.getLogger(__name__)

MAX_ROOT_SEARCH_DEPTH = 10


@dataclass(frozen=True)
class Credential:
    """Long-lived application credential.

    Attributes:
        app_token: Secret issued by the box on registration.
        track_id: Registration id to poll while approval is pending.
        status: Last known registration status.
    """

    app_token: str
    track_id: int | None = None
    status: str | None = None


def find_project_root(
    start: Path,
    markers: tuple[str, ...] = DEFAULT_PROJECT_MARKERS,
    max_depth: int = MAX_ROOT_SEARCH_DEPTH,
) -> Path | None:
    """Walk upward from ``start`` looking for a directory holding a marker."""
    current = start
    for _ in range(max_depth):
        if any((current / marker).exists() for marker in markers):
            return current
        if current.parent == current:
            break
        current = current.parent
    return None


class CredentialStore:
    """Load, save and reset the app token on local storage.

    Usage:
        store = CredentialStore(".freebox_token")
        credential = store.load()
        store.save("new-token")
        store.reset()
    """

    def __init__(
        self,
        token_file: str | Path,
        *,
        project_markers: tuple[str, ...] = DEFAULT_PROJECT_MARKERS,
        cwd: Path | None = None,
    ) -> None:
        self._token_file = Path(token_file)
        self._project_markers = project_markers
        self._cwd = cwd
        self._credential: Credential | None = None

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def app_token(self) -> str | None:
        return self._credential.app_token if self._credential else None

    @property
    def path(self) -> Path:
        return self.resolve_path()

    def resolve_path(self) -> Path:
        """Resolve the configured token path.

        Absolute paths are used as-is. Relative paths are resolved against
        the nearest ancestor of the working directory that holds a project
        marker, or against the working directory when none is found.
        """
        if self._token_file.is_absolute():
            return self._token_file
        cwd = self._cwd or Path.cwd()
        root = find_project_root(cwd, self._project_markers) or cwd
        return (root / self._token_file).resolve()

    def load(self) -> Credential | None:
        """Load the credential from disk, replacing the in-memory one."""
        token_path = self.resolve_path()
        _LOGGER.debug("Token file path: %s", token_path)

        if not token_path.exists():
            _LOGGER.info("No token file found at %s - registration required", token_path)
            self._credential = None
            return None

        try:
            data = json.loads(token_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            _LOGGER.warning("Failed to load token file %s: %s", token_path, err)
            self._credential = None
            return None

        app_token = data.get("appToken") if isinstance(data, dict) else None
        if not isinstance(app_token, str) or not app_token:
            _LOGGER.warning("Token file %s holds no appToken", token_path)
            self._credential = None
            return None

        self._credential = Credential(
            app_token=app_token,
            track_id=data.get("trackId"),
            status=data.get("status"),
        )
        _LOGGER.info("Loaded app_token from %s", token_path)
        return self._credential

    def reload(self) -> Credential | None:
        """Re-read the token file, e.g. after it was replaced externally."""
        _LOGGER.info("Reloading token from file")
        return self.load()

    def save(
        self,
        app_token: str,
        *,
        track_id: int | None = None,
        status: str | None = None,
    ) -> Credential:
        """Persist a new app token, creating parent directories as needed.

        ``track_id`` and ``status`` are written alongside the token when
        given, so a restart during approval can resume polling.
        """
        token_path = self.resolve_path()
        token_path.parent.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {"appToken": app_token}
        if track_id is not None:
            data["trackId"] = track_id
        if status is not None:
            data["status"] = status
        token_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        self._credential = Credential(app_token=app_token, track_id=track_id, status=status)
        _LOGGER.info("Saved app_token to %s", token_path)
        return self._credential

    def update_status(self, status: str) -> Credential | None:
        """Record the latest registration status next to the current token."""
        if self._credential is None:
            return None
        return self.save(
            self._credential.app_token,
            track_id=self._credential.track_id,
            status=status,
        )

    def reset(self) -> None:
        """Delete the token file and forget the credential. Idempotent."""
        token_path = self.resolve_path()
        if token_path.exists():
            token_path.unlink()
            _LOGGER.info("Deleted token file: %s", token_path)
        self._credential = None
