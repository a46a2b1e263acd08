"""Session and request orchestration client for the Freebox OS API."""

__version__ = "0.1.0"

from .auth import (
    AuthState,
    Registration,
    RegistrationStatus,
    Session,
    SessionAuthenticator,
)
from .client import FreeboxClient
from .config import FreeboxConfig, load_config
from .coordinator import RequestCoordinator, SingleFlight
from .credentials import Credential, CredentialStore
from .device import DeviceProfile
from .errors import (
    ApiError,
    ApiErrorKind,
    ConfigError,
    FreeboxAuthError,
    FreeboxClientError,
    FreeboxNoCredentialError,
    FreeboxStateError,
)
from .http import FreeboxHttpClient
from .policy import RetryPolicy, TimeoutPolicy
from .protocol import ApiResponse, compute_password

__all__ = [
    "ApiError",
    "ApiErrorKind",
    "ApiResponse",
    "AuthState",
    "ConfigError",
    "Credential",
    "CredentialStore",
    "DeviceProfile",
    "FreeboxAuthError",
    "FreeboxClient",
    "FreeboxClientError",
    "FreeboxConfig",
    "FreeboxHttpClient",
    "FreeboxNoCredentialError",
    "FreeboxStateError",
    "Registration",
    "RegistrationStatus",
    "RequestCoordinator",
    "RetryPolicy",
    "Session",
    "SessionAuthenticator",
    "SingleFlight",
    "TimeoutPolicy",
    "__version__",
    "compute_password",
    "load_config",
]
