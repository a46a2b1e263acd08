"""Client error types for Freebox OS API interactions.

Network and device failures never raise: they travel inside an
``ApiResponse`` and are classified with ``ApiErrorKind``. The exceptions
below are reserved for flow errors the immediate caller must handle.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FreeboxClientError(Exception):
    """Base error for Freebox client failures."""


class FreeboxAuthError(FreeboxClientError):
    """Registration, challenge or login request was rejected."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class FreeboxNoCredentialError(FreeboxAuthError):
    """No application token is stored; registration is required."""

    def __init__(
        self, message: str = "No app_token available. Please register first."
    ) -> None:
        super().__init__(message, code="no_credential")


class FreeboxStateError(FreeboxClientError):
    """Operation is not valid in the current authentication state."""


class ConfigError(FreeboxClientError):
    """Configuration file is missing or holds invalid values."""


class ApiErrorKind(Enum):
    """Classification of a failed ``ApiResponse``."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    SESSION_EXPIRED = "session_expired"
    INSUFFICIENT_RIGHTS = "insufficient_rights"
    DEPRECATED = "deprecated"
    APPLICATION = "application"


@dataclass(frozen=True)
class ApiError:
    """Tagged error carried by a failed response.

    Attributes:
        kind: Error family used by callers to branch.
        code: Raw ``error_code`` reported by the device (or synthesized).
        message: Human readable message, if any.
        missing_right: Permission name for ``INSUFFICIENT_RIGHTS``.
    """

    kind: ApiErrorKind
    code: str | None = None
    message: str | None = None
    missing_right: str | None = None
