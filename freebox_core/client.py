"""Public entry point for authenticated Freebox OS API calls."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from .auth import (
    AuthState,
    Registration,
    RegistrationStatus,
    Session,
    SessionAuthenticator,
)
from .config import FreeboxConfig
from .coordinator import RequestCoordinator
from .credentials import Credential, CredentialStore
from .device import DeviceProfile
from .http import FreeboxHttpClient, build_ssl_context
from .policy import RetryPolicy, TimeoutPolicy
from .protocol import ApiResponse

_LOGGER = logging.getLogger(__name__)

AuthRequiredCallback = Callable[[ApiResponse], Awaitable[None] | None]


class FreeboxClient:
    """Facade routing every call through the authenticator and coordinator.

    One instance per box and process. Build it with ``from_config`` or
    inject the collaborators directly (tests pass a fake transport).

    Usage:
        async with FreeboxClient.from_config(load_config()) as client:
            if not client.is_registered():
                registration = await client.register()
                ...  # poll until granted
            await client.login()
            response = await client.get("/system/")

    A session error (``auth_required``/``invalid_session``) clears the
    local session and fires the ``on_auth_required`` callback. The request
    is not retried: re-authenticating is left to the caller.
    """

    def __init__(
        self,
        transport: FreeboxHttpClient,
        credentials: CredentialStore,
        config: FreeboxConfig | None = None,
        *,
        profile: DeviceProfile | None = None,
        timeouts: TimeoutPolicy | None = None,
        retries: RetryPolicy | None = None,
        coordinator: RequestCoordinator | None = None,
    ) -> None:
        self._config = config or FreeboxConfig()
        self._transport = transport
        self._credentials = credentials
        self._profile = profile or DeviceProfile(transport)
        self._timeouts = timeouts or TimeoutPolicy(self._config.request_timeout_ms)
        self._retries = retries or RetryPolicy(self._config.max_retries)
        self._coordinator = coordinator or RequestCoordinator(
            transport,
            self._profile,
            timeouts=self._timeouts,
            retries=self._retries,
        )
        self._auth = SessionAuthenticator(
            transport,
            credentials,
            self._config,
            timeouts=self._timeouts,
            profile=self._profile,
        )
        self._auth_required_callback: AuthRequiredCallback | None = None

    @classmethod
    def from_config(
        cls,
        config: FreeboxConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> FreeboxClient:
        """Composition root: build every collaborator from ``config``.

        When no ``session`` is given the client creates one and closes it
        in ``close()``. Must be called from within a running event loop.
        """
        owns_session = session is None
        transport = FreeboxHttpClient(
            session or aiohttp.ClientSession(),
            config.url,
            api_version=config.api_version,
            default_timeout_ms=config.request_timeout_ms,
            ssl_context=build_ssl_context(config.ca_file),
            owns_session=owns_session,
        )
        credentials = CredentialStore(
            config.token_file, project_markers=config.project_markers
        )
        credentials.load()
        return cls(transport, credentials, config)

    async def __aenter__(self) -> FreeboxClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._transport.close()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> FreeboxConfig:
        return self._config

    @property
    def profile(self) -> DeviceProfile:
        return self._profile

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    @property
    def auth_state(self) -> AuthState:
        return self._auth.state

    @property
    def session_token(self) -> str | None:
        return self._auth.session_token

    @property
    def permissions(self) -> dict[str, bool]:
        return self._auth.permissions

    @property
    def credential(self) -> Credential | None:
        return self._credentials.credential

    @property
    def base_url(self) -> str:
        return self._transport.base_url

    @base_url.setter
    def base_url(self, url: str) -> None:
        if url.rstrip("/") != self._transport.base_url:
            _LOGGER.info("Switching box URL to %s", url)
            self._transport.base_url = url
            self._profile.reset()
            self._auth.invalidate()

    def on_auth_required(self, callback: AuthRequiredCallback) -> None:
        """Register callback fired when a call reports an expired session."""
        self._auth_required_callback = callback

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def is_registered(self) -> bool:
        return self._auth.is_registered()

    def is_authenticated(self) -> bool:
        return self._auth.is_authenticated()

    async def register(self) -> Registration:
        return await self._auth.register()

    async def poll_status(self, track_id: int) -> RegistrationStatus:
        return await self._auth.poll_status(track_id)

    async def login(self) -> Session:
        return await self._auth.login()

    async def logout(self) -> None:
        await self._auth.logout()

    async def check_session(self) -> bool:
        return await self._auth.check_session()

    def compute_password(self, challenge: str) -> str:
        return self._auth.compute_password(challenge)

    def reset_credential(self) -> None:
        """Delete the stored app token; a new registration is required."""
        self._auth.forget_credential()

    def reload_credential(self) -> Credential | None:
        """Re-read the token file, e.g. after a volume was remounted."""
        credential = self._credentials.reload()
        self._auth.sync_credential()
        return credential

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def get_api_version(self) -> ApiResponse:
        """Fetch box identification and seed the device profile with it."""
        response = await self._transport.fetch_api_version(
            timeout_ms=self._config.request_timeout_ms
        )
        if response.success and isinstance(response.result, dict):
            self._profile.set_version_info(response.result)
        return response

    async def execute(self, method: str, path: str, body: Any = None) -> ApiResponse:
        """Run an authenticated request and return its envelope.

        Args:
            method: HTTP method.
            path: Endpoint path below the API version prefix.
            body: Optional JSON body. Not part of the dedup key.

        Returns:
            The response envelope; this never raises for request failures.
        """
        # Not awaited: until the model is known the default timing applies
        self._profile.start_loading()

        response, sent_token = await self._coordinator.dispatch(
            method, path, body, session_token=self._auth.session_token
        )
        if response.is_session_error:
            await self._handle_session_error(method, path, response, sent_token)
        elif not response.success:
            _LOGGER.debug(
                "%s %s failed: %s %s", method, path, response.error_code, response.msg
            )
        return response

    async def _handle_session_error(
        self, method: str, path: str, response: ApiResponse, sent_token: str | None
    ) -> None:
        _LOGGER.warning(
            "%s %s rejected (%s), session cleared", method, path, response.error_code
        )
        # Only the token the box rejected is stale; a newer login is kept
        if self._auth.session_token == sent_token:
            self._auth.invalidate()
        if self._auth_required_callback:
            result = self._auth_required_callback(response)
            if inspect.iscoroutine(result):
                await result

    async def get(self, path: str) -> ApiResponse:
        return await self.execute("GET", path)

    async def post(self, path: str, body: Any = None) -> ApiResponse:
        return await self.execute("POST", path, body)

    async def put(self, path: str, body: Any = None) -> ApiResponse:
        return await self.execute("PUT", path, body)

    async def delete(self, path: str) -> ApiResponse:
        return await self.execute("DELETE", path)
