"""Hardware identification used to pick timing behaviour."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .http import FreeboxHttpClient

_LOGGER = logging.getLogger(__name__)

# Identifiers of the legacy generation (Revolution / v6, board fbxgw1)
SLOW_MODEL_MARKERS: tuple[str, ...] = ("revolution", "v6", "fbxgw1")

# Seconds before a failed identification request is sent again
DEFAULT_RETRY_INTERVAL = 60.0


def is_slow_model(model_identifier: str | None) -> bool:
    """Case-insensitive match against the legacy model markers."""
    if not model_identifier:
        return False
    lowered = model_identifier.lower()
    return any(marker in lowered for marker in SLOW_MODEL_MARKERS)


class DeviceProfile:
    """Lazily loaded box identification.

    Until the version endpoint has answered the device is treated as a
    normal one; nothing on the request path waits on the profile. A failed
    request is not sent again before ``retry_interval`` seconds have passed.
    """

    def __init__(
        self,
        transport: FreeboxHttpClient,
        *,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
    ) -> None:
        self._transport = transport
        self._retry_interval = retry_interval
        self._version_info: dict[str, Any] | None = None
        self._load_task: asyncio.Task[bool] | None = None
        self._retry_at: float | None = None

    @property
    def loaded(self) -> bool:
        return self._version_info is not None

    @property
    def version_info(self) -> dict[str, Any] | None:
        return self._version_info

    @property
    def model_identifier(self) -> str:
        info = self._version_info or {}
        return str(info.get("box_model_name") or info.get("box_model") or "")

    def is_slow_class(self) -> bool:
        """True only for the legacy hardware generation; False until loaded."""
        return is_slow_model(self.model_identifier)

    def set_version_info(self, info: dict[str, Any]) -> None:
        """Seed the profile from an already fetched version payload."""
        self._version_info = info
        self._retry_at = None

    def reset(self) -> None:
        """Forget the cached identification, e.g. after switching box."""
        self._version_info = None
        self._retry_at = None
        if self._load_task is not None:
            self._load_task.cancel()
            self._load_task = None

    def start_loading(self) -> asyncio.Task[bool] | None:
        """Start identification in the background without waiting for it.

        Returns:
            The running load task, or None when the model is already known
            or a failed request is still cooling down.
        """
        if self._version_info is not None:
            return None
        if self._load_task is None:
            loop = asyncio.get_running_loop()
            if self._retry_at is not None and loop.time() < self._retry_at:
                return None
            self._load_task = asyncio.ensure_future(self._load())
            self._load_task.add_done_callback(self._load_done)
        return self._load_task

    async def ensure_loaded(self) -> bool:
        """Fetch identification once; concurrent callers share the request.

        Returns:
            True if identification is available.
        """
        task = self.start_loading()
        if task is None:
            return self._version_info is not None
        return await asyncio.shield(task)

    def _load_done(self, task: asyncio.Task[bool]) -> None:
        if self._load_task is task:
            self._load_task = None
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.warning("Box identification failed: %s", err)
        if err is not None or not task.result():
            self._retry_at = task.get_loop().time() + self._retry_interval

    async def _load(self) -> bool:
        response = await self._transport.fetch_api_version()
        if not response.success or not isinstance(response.result, dict):
            _LOGGER.warning(
                "Could not identify box model: %s", response.msg or response.error_code
            )
            return False
        self._version_info = response.result
        _LOGGER.info(
            "Detected box model %r (slow class: %s)",
            self.model_identifier,
            self.is_slow_class(),
        )
        return True
