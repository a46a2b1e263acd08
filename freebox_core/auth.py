"""Application registration and session login for the Freebox OS API.

Registration is a one-time step confirmed on the box front panel. It
yields an ``app_token`` stored by ``CredentialStore``. Each login then
answers a fresh challenge with ``HMAC-SHA1(app_token, challenge)`` and
receives a short-lived session token sent as ``X-Fbx-App-Auth``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import FreeboxConfig
from .errors import FreeboxAuthError, FreeboxNoCredentialError, FreeboxStateError
from .protocol import (
    LOGIN,
    LOGIN_AUTHORIZE,
    LOGIN_LOGOUT,
    LOGIN_SESSION,
    REGISTRATION_STATUSES,
    ApiResponse,
    build_login_body,
    build_register_body,
    compute_password,
)

if TYPE_CHECKING:
    from .credentials import CredentialStore
    from .device import DeviceProfile
    from .http import FreeboxHttpClient
    from .policy import TimeoutPolicy

_LOGGER = logging.getLogger(__name__)


class AuthState(Enum):
    """Authentication lifecycle states."""

    UNREGISTERED = "unregistered"
    PENDING_APPROVAL = "pending_approval"
    REGISTERED = "registered"
    AUTHENTICATED = "authenticated"


class RegistrationStatus(Enum):
    """Status reported while a registration awaits approval on the box."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    TIMEOUT = "timeout"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class Registration:
    """Result of a registration request."""

    track_id: int
    app_token: str


@dataclass(frozen=True)
class Session:
    """In-memory login session."""

    session_token: str
    challenge: str
    permissions: dict[str, bool] = field(default_factory=lambda: {})


def _failure_message(response: ApiResponse, fallback: str) -> str:
    return response.msg or response.error_code or fallback


class SessionAuthenticator:
    """Registration/login state machine on top of the credential store.

    Usage:
        auth = SessionAuthenticator(transport, store, config)
        registration = await auth.register()
        while await auth.poll_status(registration.track_id) is RegistrationStatus.PENDING:
            await asyncio.sleep(1)
        await auth.login()
    """

    def __init__(
        self,
        transport: FreeboxHttpClient,
        credentials: CredentialStore,
        config: FreeboxConfig | None = None,
        *,
        timeouts: TimeoutPolicy | None = None,
        profile: DeviceProfile | None = None,
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._config = config or FreeboxConfig()
        self._timeouts = timeouts
        self._profile = profile

        self._session: Session | None = None
        self._challenge: str | None = None
        self._state = (
            AuthState.REGISTERED if credentials.credential else AuthState.UNREGISTERED
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def session_token(self) -> str | None:
        return self._session.session_token if self._session else None

    @property
    def permissions(self) -> dict[str, bool]:
        return dict(self._session.permissions) if self._session else {}

    @property
    def challenge(self) -> str | None:
        return self._challenge

    def is_registered(self) -> bool:
        return self._credentials.credential is not None

    def is_authenticated(self) -> bool:
        return self._session is not None

    def invalidate(self) -> None:
        """Drop the session locally without contacting the box."""
        if self._session is not None:
            _LOGGER.info("Session invalidated")
        self._session = None
        self._state = (
            AuthState.REGISTERED if self.is_registered() else AuthState.UNREGISTERED
        )

    def forget_credential(self) -> None:
        """Delete the stored app token and drop any session."""
        self._credentials.reset()
        self._session = None
        self._challenge = None
        self._state = AuthState.UNREGISTERED
        _LOGGER.info("Token reset - re-registration required")

    def sync_credential(self) -> None:
        """Align the state with the credential store after an external reload."""
        if self._state is AuthState.AUTHENTICATED:
            return
        self._state = (
            AuthState.REGISTERED if self.is_registered() else AuthState.UNREGISTERED
        )

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        authenticated: bool = False,
    ) -> ApiResponse:
        timeout_ms = (
            self._timeouts.deadline_for(path, self._profile) if self._timeouts else None
        )
        return await self._transport.send(
            method,
            path,
            body,
            session_token=self.session_token if authenticated else None,
            timeout_ms=timeout_ms,
        )

    def compute_password(self, challenge: str) -> str:
        """Answer ``challenge`` with the stored app token."""
        app_token = self._credentials.app_token
        if not app_token:
            raise FreeboxNoCredentialError("No app_token available")
        return compute_password(app_token, challenge)

    async def register(self) -> Registration:
        """Request a new app token; the user must approve it on the box.

        Raises:
            FreeboxStateError: If a registration is pending or a session is open.
            FreeboxAuthError: If the box rejects the request.
        """
        if self._state not in (AuthState.UNREGISTERED, AuthState.REGISTERED):
            raise FreeboxStateError(f"Cannot register while {self._state.value}")

        config = self._config
        response = await self._send(
            "POST",
            LOGIN_AUTHORIZE,
            build_register_body(
                app_id=config.app_id,
                app_name=config.app_name,
                app_version=config.app_version,
                device_name=config.device_name,
            ),
        )
        result = response.result if isinstance(response.result, dict) else None
        if (
            not response.success
            or not result
            or not result.get("app_token")
            or result.get("track_id") is None
        ):
            raise FreeboxAuthError(
                _failure_message(response, "Registration failed"), response.error_code
            )

        track_id = int(result["track_id"])
        # Persisted before approval so a restart can resume polling
        self._credentials.save(
            result["app_token"],
            track_id=track_id,
            status=RegistrationStatus.PENDING.value,
        )
        self._state = AuthState.PENDING_APPROVAL
        _LOGGER.info("Registration requested (track_id=%s), waiting for approval", track_id)
        return Registration(track_id=track_id, app_token=result["app_token"])

    async def poll_status(self, track_id: int) -> RegistrationStatus:
        """Check whether a registration has been approved on the box."""
        response = await self._send("GET", f"{LOGIN_AUTHORIZE}{track_id}")
        result = response.result if isinstance(response.result, dict) else None
        if not response.success or not result:
            raise FreeboxAuthError(
                _failure_message(response, "Failed to check registration status"),
                response.error_code,
            )

        raw_status = result.get("status")
        status = (
            RegistrationStatus(raw_status)
            if raw_status in REGISTRATION_STATUSES
            else RegistrationStatus.UNKNOWN
        )
        if challenge := result.get("challenge"):
            self._challenge = challenge

        credential = self._credentials.credential
        if credential is not None and credential.track_id == track_id:
            self._credentials.update_status(status.value)

        if status is RegistrationStatus.GRANTED:
            self._state = AuthState.REGISTERED
        elif status in (RegistrationStatus.DENIED, RegistrationStatus.TIMEOUT):
            self._state = AuthState.UNREGISTERED
        _LOGGER.debug("Registration %s status: %s", track_id, status.value)
        return status

    async def get_challenge(self) -> str:
        """Fetch a fresh login challenge."""
        response = await self._send("GET", LOGIN)
        result = response.result if isinstance(response.result, dict) else None
        if not response.success or not result or not result.get("challenge"):
            raise FreeboxAuthError(
                _failure_message(response, "Failed to get challenge"),
                response.error_code,
            )
        self._challenge = result["challenge"]
        return self._challenge

    async def login(self) -> Session:
        """Open a session.

        Raises:
            FreeboxNoCredentialError: If no app token is stored (no I/O is done).
            FreeboxAuthError: If the challenge or the login request fails.
        """
        if not self._credentials.app_token:
            _LOGGER.error("Login failed: no app_token available, register first")
            raise FreeboxNoCredentialError()

        _LOGGER.info("Starting login to %s", self._transport.base_url)
        # A challenge cached while polling registration may be stale
        try:
            challenge = await self.get_challenge()
        except FreeboxAuthError as err:
            _LOGGER.error("Failed to get challenge: %s", err)
            raise FreeboxAuthError(f"Failed to get challenge: {err}", err.code) from err

        response = await self._send(
            "POST",
            LOGIN_SESSION,
            build_login_body(
                app_id=self._config.app_id,
                app_version=self._config.app_version,
                password=self.compute_password(challenge),
            ),
        )
        result = response.result if isinstance(response.result, dict) else None
        if not response.success or not result or not result.get("session_token"):
            message = _failure_message(response, "Login failed")
            _LOGGER.error("Login failed: %s", message)
            raise FreeboxAuthError(message, response.error_code)

        self._session = Session(
            session_token=result["session_token"],
            challenge=result.get("challenge") or challenge,
            permissions=dict(result.get("permissions") or {}),
        )
        self._challenge = self._session.challenge
        self._state = AuthState.AUTHENTICATED
        _LOGGER.info(
            "Login successful, %d permissions granted", len(self._session.permissions)
        )
        return self._session

    async def logout(self) -> None:
        """Close the session on the box; the local session is always dropped."""
        if self._session is None:
            return
        try:
            response = await self._send("POST", LOGIN_LOGOUT, authenticated=True)
            if not response.success:
                _LOGGER.warning(
                    "Logout request failed: %s", _failure_message(response, "unknown")
                )
        finally:
            self.invalidate()
        _LOGGER.info("Logged out")

    async def check_session(self) -> bool:
        """Ask the box whether the current session is still logged in."""
        if self._session is None:
            return False

        response = await self._send("GET", LOGIN, authenticated=True)
        if not response.success:
            _LOGGER.info(
                "Session check failed: %s", _failure_message(response, "unknown")
            )
            self.invalidate()
            return False

        result = response.result if isinstance(response.result, dict) else {}
        if result.get("logged_in") is not True:
            _LOGGER.info("Session expired")
            self.invalidate()
            return False
        return True
