"""Pytest configuration and fixtures for freebox_core tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from freebox_core.credentials import CredentialStore
from freebox_core.device import DeviceProfile
from freebox_core.protocol import ApiResponse

REVOLUTION_INFO: dict[str, Any] = {
    "api_version": "10.0",
    "box_model": "fbxgw-r1/full",
    "box_model_name": "Freebox Server (r1) - Revolution",
    "device_name": "Freebox Server",
}

DELTA_INFO: dict[str, Any] = {
    "api_version": "14.0",
    "box_model": "fbxgw7-r1/full",
    "box_model_name": "Freebox v7 (r1)",
    "device_name": "Freebox Server",
}


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    content_type: str = "application/json; charset=utf-8",
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        content_type: Value of the Content-Type header

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.headers = {"Content-Type": content_type}

    if json_data is not None:
        response.json.return_value = json_data
    response.text.return_value = text_data or ""

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeTransport:
    """In-memory stand-in for ``FreeboxHttpClient``.

    Responses are queued per ``(method, path)``; the last queued response
    is repeated once the queue drains. Unqueued calls succeed with an
    empty result. Setting ``gate`` holds every ``send`` until it is set;
    an event in ``gates`` holds only sends to its ``(method, path)``.
    """

    def __init__(self, version_info: dict[str, Any] | None = None) -> None:
        self.base_url = "https://mafreebox.freebox.fr"
        self.version_info = version_info if version_info is not None else DELTA_INFO
        self.calls: list[dict[str, Any]] = []
        self.version_calls = 0
        self.gate: asyncio.Event | None = None
        self.gates: dict[tuple[str, str], asyncio.Event] = {}
        self._queues: dict[tuple[str, str], list[ApiResponse | Exception]] = {}

    def queue(self, method: str, path: str, *responses: ApiResponse | Exception) -> None:
        self._queues.setdefault((method, path), []).extend(responses)

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        session_token: str | None = None,
        timeout_ms: int | None = None,
    ) -> ApiResponse:
        self.calls.append(
            {
                "method": method,
                "path": path,
                "body": body,
                "session_token": session_token,
                "timeout_ms": timeout_ms,
            }
        )
        gate = self.gates.get((method, path), self.gate)
        if gate is not None:
            await gate.wait()
        queue = self._queues.get((method, path))
        if not queue:
            return ApiResponse(success=True, result={})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_api_version(self, *, timeout_ms: int | None = None) -> ApiResponse:
        self.version_calls += 1
        return ApiResponse(success=True, result=self.version_info)

    async def close(self) -> None:
        return None


def timeout_response() -> ApiResponse:
    return ApiResponse.failure("request_failed", "Request aborted", is_timeout=True)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "freebox_token.json"


@pytest.fixture
def credential_store(token_path: Path) -> CredentialStore:
    """Store pointing at an absolute path under tmp_path (no token yet)."""
    return CredentialStore(token_path)


@pytest.fixture
def registered_store(credential_store: CredentialStore) -> CredentialStore:
    credential_store.save("app-token-123")
    return credential_store


@pytest.fixture
def slow_profile() -> DeviceProfile:
    profile = DeviceProfile(FakeTransport(REVOLUTION_INFO))  # type: ignore[arg-type]
    profile.set_version_info(REVOLUTION_INFO)
    return profile


@pytest.fixture
def normal_profile() -> DeviceProfile:
    profile = DeviceProfile(FakeTransport(DELTA_INFO))  # type: ignore[arg-type]
    profile.set_version_info(DELTA_INFO)
    return profile
