"""Protocol helpers for the Freebox OS API wire format."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Final

from .errors import ApiError, ApiErrorKind

AUTH_HEADER: Final = "X-Fbx-App-Auth"

API_VERSION_PATH: Final = "/api_version"
LOGIN: Final = "/login/"
LOGIN_AUTHORIZE: Final = "/login/authorize/"
LOGIN_SESSION: Final = "/login/session/"
LOGIN_LOGOUT: Final = "/login/logout/"

# Synthetic codes produced locally, never by the device
ERROR_REQUEST_FAILED: Final = "request_failed"
ERROR_INVALID_RESPONSE: Final = "invalid_response"

ERROR_AUTH_REQUIRED: Final = "auth_required"
ERROR_INVALID_SESSION: Final = "invalid_session"
ERROR_INSUFFICIENT_RIGHTS: Final = "insufficient_rights"
ERROR_DEPRECATED: Final = "deprecated"

SESSION_ERROR_CODES: frozenset[str] = frozenset(
    {ERROR_AUTH_REQUIRED, ERROR_INVALID_SESSION}
)

REGISTRATION_STATUSES: tuple[str, ...] = (
    "unknown",
    "pending",
    "timeout",
    "granted",
    "denied",
)


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """Uniform success/error envelope.

    Mirrors ``{"success", "result", "error_code", "msg"}`` from the device;
    ``is_timeout`` is local only and marks a request abandoned at its
    deadline.
    """

    success: bool
    result: Any = None
    error_code: str | None = None
    msg: str | None = None
    missing_right: str | None = None
    is_timeout: bool = False

    @classmethod
    def from_wire(cls, data: Any) -> ApiResponse:
        """Build an envelope from a decoded JSON body."""
        if not isinstance(data, dict) or "success" not in data:
            return cls.failure(
                ERROR_INVALID_RESPONSE, "API returned an unexpected JSON payload"
            )
        return cls(
            success=bool(data["success"]),
            result=data.get("result"),
            error_code=data.get("error_code"),
            msg=data.get("msg"),
            missing_right=data.get("missing_right"),
        )

    @classmethod
    def failure(
        cls, error_code: str, msg: str | None = None, *, is_timeout: bool = False
    ) -> ApiResponse:
        return cls(success=False, error_code=error_code, msg=msg, is_timeout=is_timeout)

    @property
    def is_session_error(self) -> bool:
        """True for ``auth_required``/``invalid_session`` style failures."""
        return not self.success and self.error_code in SESSION_ERROR_CODES

    @property
    def error(self) -> ApiError | None:
        """Classify a failed response; ``None`` on success."""
        if self.success:
            return None
        return ApiError(
            kind=_classify(self),
            code=self.error_code,
            message=self.msg,
            missing_right=self.missing_right,
        )

    def to_wire(self) -> dict[str, Any]:
        """Render back to the device envelope shape."""
        wire: dict[str, Any] = {"success": self.success}
        if self.result is not None:
            wire["result"] = self.result
        if self.error_code is not None:
            wire["error_code"] = self.error_code
        if self.msg is not None:
            wire["msg"] = self.msg
        if self.missing_right is not None:
            wire["missing_right"] = self.missing_right
        return wire


def _classify(response: ApiResponse) -> ApiErrorKind:
    if response.is_timeout:
        return ApiErrorKind.TIMEOUT
    code = response.error_code
    if code == ERROR_REQUEST_FAILED:
        return ApiErrorKind.NETWORK
    if code == ERROR_INVALID_RESPONSE:
        return ApiErrorKind.MALFORMED_RESPONSE
    if code in SESSION_ERROR_CODES:
        return ApiErrorKind.SESSION_EXPIRED
    if code == ERROR_INSUFFICIENT_RIGHTS:
        return ApiErrorKind.INSUFFICIENT_RIGHTS
    if code == ERROR_DEPRECATED:
        return ApiErrorKind.DEPRECATED
    return ApiErrorKind.APPLICATION


def operation_key(method: str, path: str) -> str:
    """Key used to coalesce in-flight requests. The body is not part of it."""
    return f"{method.upper()}:{path}"


def compute_password(app_token: str, challenge: str) -> str:
    """Answer a login challenge: lowercase hex HMAC-SHA1 keyed by the app token."""
    return hmac.new(
        app_token.encode("utf-8"), challenge.encode("utf-8"), hashlib.sha1
    ).hexdigest()


def build_register_body(
    *, app_id: str, app_name: str, app_version: str, device_name: str
) -> dict[str, str]:
    """Build the ``/login/authorize/`` request body."""
    return {
        "app_id": app_id,
        "app_name": app_name,
        "app_version": app_version,
        "device_name": device_name,
    }


def build_login_body(
    *, app_id: str, app_version: str, password: str
) -> dict[str, str]:
    """Build the ``/login/session/`` request body."""
    return {
        "app_id": app_id,
        "app_version": app_version,
        "password": password,
    }
