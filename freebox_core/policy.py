"""Per-hardware timeout and retry policies.

The legacy hardware generation answers a few endpoint families much more
slowly than current boxes. Those endpoints get a long deadline and a
small number of retries on timeout; everything else on that hardware gets
a moderately raised deadline, and other boxes keep the default.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from .config import DEFAULT_MAX_RETRIES, DEFAULT_REQUEST_TIMEOUT_MS

if TYPE_CHECKING:
    from .device import DeviceProfile

SLOW_ENDPOINTS: tuple[str, ...] = (
    "/dhcp/dynamic_lease/",
    "/dhcp/static_lease/",
    "/fw/redir/",
    "/lan/browser/pub/",
)

SLOW_ENDPOINT_TIMEOUT_MS = 45_000
SLOW_DEVICE_TIMEOUT_MS = 25_000


def is_slow_endpoint(path: str) -> bool:
    """Substring match against the slow endpoint fragments."""
    return any(fragment in path for fragment in SLOW_ENDPOINTS)


class TimeoutPolicy:
    """Choose the request deadline from the path and device class."""

    def __init__(
        self,
        default_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
        *,
        slow_endpoint_ms: int = SLOW_ENDPOINT_TIMEOUT_MS,
        slow_device_ms: int = SLOW_DEVICE_TIMEOUT_MS,
    ) -> None:
        self.default_ms = default_ms
        self.slow_endpoint_ms = slow_endpoint_ms
        self.slow_device_ms = slow_device_ms

    def deadline_for(self, path: str, profile: DeviceProfile | None) -> int:
        """Deadline in milliseconds for a request to ``path``."""
        if profile is None or not profile.is_slow_class():
            return self.default_ms
        if is_slow_endpoint(path):
            return self.slow_endpoint_ms
        return self.slow_device_ms


class RetryPolicy:
    """Decide whether a timed-out request is worth another attempt.

    Only timeouts on slow endpoints of slow hardware are retried. HTTP and
    application errors (rights, auth, validation) are returned as-is since
    a retry cannot change their outcome.

    Args:
        max_retries: Attempts allowed after the first one.
        schedule: Optional backoff table in milliseconds, one entry per
            retry in order. Defaults to doubling from one second.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        schedule: Sequence[int] | None = None,
    ) -> None:
        self.max_retries = max_retries
        self._schedule = tuple(schedule) if schedule is not None else None

    def should_retry(
        self,
        path: str,
        profile: DeviceProfile | None,
        attempts_remaining: int,
        was_timeout: bool,
    ) -> bool:
        if attempts_remaining <= 0 or not was_timeout:
            return False
        if profile is None or not profile.is_slow_class():
            return False
        return is_slow_endpoint(path)

    def backoff_for(self, attempts_remaining: int) -> int:
        """Backoff in milliseconds before the next retry.

        Indexed by retries already used, ``max_retries - attempts_remaining``,
        so the first retry always waits 1000 ms and each later one doubles.
        With the default two retries that is 1000 ms while 2 remain and
        2000 ms while 1 remains. An injected schedule is indexed the same way.
        """
        retry_index = max(self.max_retries - attempts_remaining, 0)
        if self._schedule:
            return self._schedule[min(retry_index, len(self._schedule) - 1)]
        return 2**retry_index * 1000
