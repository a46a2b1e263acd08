"""Request coordination: single-flight dedup plus timeout/retry policies."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .policy import RetryPolicy, TimeoutPolicy
from .protocol import ERROR_REQUEST_FAILED, ApiResponse, operation_key

if TYPE_CHECKING:
    from .device import DeviceProfile
    from .http import FreeboxHttpClient

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Share one in-flight execution between concurrent callers of a key.

    The shared work runs in its own task, so a waiter being cancelled does
    not abort it for the others. The key is released by a done callback,
    which runs on success, failure and cancellation alike and before any
    waiter resumes.
    """

    def __init__(self) -> None:
        self._calls: dict[str, asyncio.Task[T]] = {}

    @property
    def in_flight(self) -> tuple[str, ...]:
        return tuple(self._calls)

    def __contains__(self, key: object) -> bool:
        return key in self._calls

    async def do(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._calls.get(key)
        if task is not None and not task.done():
            _LOGGER.debug("Joining in-flight request %s", key)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(factory())
        self._calls[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]


class RequestCoordinator:
    """Compose transport, deadlines and retries behind one ``execute`` call.

    At most one attempt sequence per ``(method, path)`` is in flight; every
    concurrent caller for that key receives the same ``ApiResponse``.

    The key leaves out the request body. Two writes with
    different payloads to the same path issued concurrently collapse into
    the first one, and the second caller receives the first caller's
    result. Callers issuing parameterized writes concurrently must
    serialize them.
    """

    def __init__(
        self,
        transport: FreeboxHttpClient,
        profile: DeviceProfile | None = None,
        *,
        timeouts: TimeoutPolicy | None = None,
        retries: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._profile = profile
        self._timeouts = timeouts or TimeoutPolicy()
        self._retries = retries or RetryPolicy()
        self._sleep = sleep
        self._flights: SingleFlight[tuple[ApiResponse, str | None]] = SingleFlight()

    @property
    def in_flight(self) -> tuple[str, ...]:
        """Operation keys with an attempt currently running."""
        return self._flights.in_flight

    async def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        session_token: str | None = None,
    ) -> ApiResponse:
        response, _ = await self.dispatch(
            method, path, body, session_token=session_token
        )
        return response

    async def dispatch(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        session_token: str | None = None,
    ) -> tuple[ApiResponse, str | None]:
        """Like ``execute``, also returning the session token actually sent.

        A caller joining an in-flight attempt gets the token of the caller
        that started it, which may differ from its own.
        """
        key = operation_key(method, path)
        return await self._flights.do(
            key, lambda: self._attempt(method, path, body, session_token)
        )

    async def _attempt(
        self,
        method: str,
        path: str,
        body: Any,
        session_token: str | None,
    ) -> tuple[ApiResponse, str | None]:
        attempts_remaining = self._retries.max_retries
        while True:
            timeout_ms = self._timeouts.deadline_for(path, self._profile)
            try:
                response = await self._transport.send(
                    method,
                    path,
                    body,
                    session_token=session_token,
                    timeout_ms=timeout_ms,
                )
            except Exception as err:  # Transport is expected to never raise
                _LOGGER.exception("Unexpected transport error: %s %s", method, path)
                response = ApiResponse.failure(
                    ERROR_REQUEST_FAILED, str(err) or "Request failed"
                )

            if response.success or not self._retries.should_retry(
                path, self._profile, attempts_remaining, response.is_timeout
            ):
                return response, session_token

            delay_ms = self._retries.backoff_for(attempts_remaining)
            _LOGGER.warning(
                "Timeout on %s %s, retrying in %d ms (%d retries left)",
                method,
                path,
                delay_ms,
                attempts_remaining,
            )
            await self._sleep(delay_ms / 1000)
            attempts_remaining -= 1
