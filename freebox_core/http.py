"""HTTP transport for Freebox OS API endpoints."""

from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp

from .config import DEFAULT_REQUEST_TIMEOUT_MS
from .protocol import (
    API_VERSION_PATH,
    AUTH_HEADER,
    ERROR_INVALID_RESPONSE,
    ERROR_REQUEST_FAILED,
    ApiResponse,
)

_LOGGER = logging.getLogger(__name__)


def build_ssl_context(ca_file: str | None) -> ssl.SSLContext | bool:
    """Return the ``ssl`` argument for requests to the box.

    The box serves a self-signed certificate. With a CA bundle the chain is
    verified against it (host name checks stay off since the box is also
    reached by IP); without one verification is disabled. Either value is
    passed per request and never touches the process-wide TLS defaults.
    """
    if ca_file is None:
        return False
    context = ssl.create_default_context(cafile=ca_file)
    context.check_hostname = False
    return context


class FreeboxHttpClient:
    """HTTP client wrapper for Freebox OS API endpoints.

    Every call returns an ``ApiResponse``; transport failures are folded
    into the envelope instead of being raised.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        api_version: str = "v14",
        default_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
        ssl_context: ssl.SSLContext | bool = False,
        owns_session: bool = False,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._default_timeout_ms = default_timeout_ms
        self._ssl = ssl_context
        self._owns_session = owns_session

    @property
    def base_url(self) -> str:
        return self._base_url

    @base_url.setter
    def base_url(self, url: str) -> None:
        # Switch between the public hostname and the LAN address
        self._base_url = url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self._base_url}/api/{self._api_version}{path}"

    @staticmethod
    def _headers(session_token: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if session_token:
            headers[AUTH_HEADER] = session_token
        return headers

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        session_token: str | None = None,
        timeout_ms: int | None = None,
    ) -> ApiResponse:
        """Issue one request and normalize the outcome.

        Args:
            method: HTTP method.
            path: Endpoint path below the API version prefix, e.g. ``/system/``.
            body: JSON-serializable request body.
            session_token: Sent as ``X-Fbx-App-Auth`` when present.
            timeout_ms: Deadline for the whole request.

        Returns:
            The device envelope, or a synthesized failure envelope.
        """
        url = self._url(path)
        deadline_ms = timeout_ms or self._default_timeout_ms
        try:
            async with self._session.request(
                method,
                url,
                json=body,
                headers=self._headers(session_token),
                timeout=aiohttp.ClientTimeout(total=deadline_ms / 1000),
                ssl=self._ssl,
            ) as resp:
                content_type = resp.headers.get("Content-Type", "")
                if "application/json" not in content_type:
                    text = await resp.text()
                    _LOGGER.error(
                        "Non-JSON response: %s %s (%s) %s",
                        method,
                        url,
                        resp.status,
                        text[:200],
                    )
                    return ApiResponse.failure(
                        ERROR_INVALID_RESPONSE,
                        f"API returned non-JSON response ({resp.status})",
                    )
                try:
                    data = await resp.json(content_type=None)
                except ValueError as err:
                    _LOGGER.error("Malformed JSON: %s %s: %s", method, url, err)
                    return ApiResponse.failure(
                        ERROR_INVALID_RESPONSE,
                        f"API returned malformed JSON ({resp.status})",
                    )
                return ApiResponse.from_wire(data)
        except TimeoutError:
            _LOGGER.warning(
                "Request timed out after %d ms: %s %s", deadline_ms, method, url
            )
            return ApiResponse.failure(
                ERROR_REQUEST_FAILED,
                f"Request aborted after {deadline_ms} ms",
                is_timeout=True,
            )
        except (aiohttp.ClientError, OSError) as err:
            _LOGGER.warning("Request failed: %s %s: %s", method, url, err)
            return ApiResponse.failure(ERROR_REQUEST_FAILED, str(err) or "Request failed")

    async def fetch_api_version(self, *, timeout_ms: int | None = None) -> ApiResponse:
        """Fetch ``/api_version`` (unauthenticated, not enveloped by the box).

        The raw JSON is wrapped into a success envelope so callers see the
        same shape as every other request.
        """
        url = f"{self._base_url}{API_VERSION_PATH}"
        deadline_ms = timeout_ms or self._default_timeout_ms
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=deadline_ms / 1000),
                ssl=self._ssl,
            ) as resp:
                data = await resp.json(content_type=None)
        except TimeoutError:
            _LOGGER.warning("API version request timed out: %s", url)
            return ApiResponse.failure(
                ERROR_REQUEST_FAILED, "Failed to get API version", is_timeout=True
            )
        except (aiohttp.ClientError, OSError, ValueError) as err:
            _LOGGER.warning("Failed to get API version from %s: %s", url, err)
            return ApiResponse.failure(ERROR_REQUEST_FAILED, "Failed to get API version")

        if not isinstance(data, dict):
            return ApiResponse.failure(
                ERROR_INVALID_RESPONSE, "API version payload is not an object"
            )
        return ApiResponse(success=True, result=data)

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._owns_session and not self._session.closed:
            await self._session.close()
