"""Tests for single-flight dedup and the retry loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from freebox_core.coordinator import RequestCoordinator, SingleFlight
from freebox_core.device import DeviceProfile
from freebox_core.errors import ApiErrorKind
from freebox_core.policy import RetryPolicy, TimeoutPolicy
from freebox_core.protocol import ApiResponse

from .conftest import FakeTransport, timeout_response


class TestSingleFlight:
    """Generic keyed dedup map."""

    async def test_waiters_share_result(self) -> None:
        flights: SingleFlight[int] = SingleFlight()
        release = asyncio.Event()
        runs = 0

        async def work() -> int:
            nonlocal runs
            runs += 1
            await release.wait()
            return 42

        first = asyncio.create_task(flights.do("k", work))
        second = asyncio.create_task(flights.do("k", work))
        await asyncio.sleep(0)
        assert "k" in flights

        release.set()
        assert await asyncio.gather(first, second) == [42, 42]
        assert runs == 1
        assert flights.in_flight == ()

    async def test_failure_releases_key(self) -> None:
        flights: SingleFlight[int] = SingleFlight()

        async def boom() -> int:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await flights.do("k", boom)
        assert flights.in_flight == ()

    async def test_cancelled_waiter_does_not_abort_shared_work(self) -> None:
        flights: SingleFlight[str] = SingleFlight()
        release = asyncio.Event()

        async def work() -> str:
            await release.wait()
            return "done"

        first = asyncio.create_task(flights.do("k", work))
        second = asyncio.create_task(flights.do("k", work))
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await second == "done"
        assert first.cancelled()
        assert flights.in_flight == ()


class TestRequestCoordinator:
    """Dedup, deadline and retry composition."""

    async def test_concurrent_identical_calls_issue_one_attempt(
        self, fake_transport: FakeTransport
    ) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]
        fake_transport.gate = asyncio.Event()
        fake_transport.queue(
            "GET", "/system/", ApiResponse(success=True, result={"uptime": "1 jour"})
        )

        first = asyncio.create_task(coordinator.execute("GET", "/system/"))
        second = asyncio.create_task(coordinator.execute("GET", "/system/"))
        await asyncio.sleep(0)
        assert coordinator.in_flight == ("GET:/system/",)

        fake_transport.gate.set()
        r1, r2 = await asyncio.gather(first, second)

        assert len(fake_transport.calls) == 1
        assert r1 == r2
        assert r1.result == {"uptime": "1 jour"}
        assert coordinator.in_flight == ()

    async def test_settled_key_starts_fresh_attempt(
        self, fake_transport: FakeTransport
    ) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]

        await coordinator.execute("GET", "/system/")
        await coordinator.execute("GET", "/system/")

        assert len(fake_transport.calls) == 2

    async def test_different_keys_run_concurrently(
        self, fake_transport: FakeTransport
    ) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]
        fake_transport.gate = asyncio.Event()

        tasks = [
            asyncio.create_task(coordinator.execute("GET", "/system/")),
            asyncio.create_task(coordinator.execute("GET", "/connection/")),
            asyncio.create_task(coordinator.execute("PUT", "/system/", {"a": 1})),
        ]
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert len(fake_transport.calls) == 3
        assert set(coordinator.in_flight) == {
            "GET:/system/",
            "GET:/connection/",
            "PUT:/system/",
        }

        fake_transport.gate.set()
        await asyncio.gather(*tasks)

    async def test_body_is_not_part_of_key(self, fake_transport: FakeTransport) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]
        fake_transport.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.execute("PUT", "/lcd/config/", {"v": 1}))
        second = asyncio.create_task(coordinator.execute("PUT", "/lcd/config/", {"v": 2}))
        await asyncio.sleep(0)
        fake_transport.gate.set()
        await asyncio.gather(first, second)

        assert [c["body"] for c in fake_transport.calls] == [{"v": 1}]

    async def test_applies_deadline_from_policy(
        self, fake_transport: FakeTransport, slow_profile: DeviceProfile
    ) -> None:
        coordinator = RequestCoordinator(
            fake_transport,  # type: ignore[arg-type]
            slow_profile,
            timeouts=TimeoutPolicy(10_000),
        )

        await coordinator.execute("GET", "/fw/redir/")
        await coordinator.execute("GET", "/system/")

        assert [c["timeout_ms"] for c in fake_transport.calls] == [45_000, 25_000]

    async def test_passes_session_token(self, fake_transport: FakeTransport) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]

        await coordinator.execute("GET", "/system/", session_token="sess")

        assert fake_transport.calls[0]["session_token"] == "sess"

    async def test_retries_timeouts_with_backoff(
        self, fake_transport: FakeTransport, slow_profile: DeviceProfile
    ) -> None:
        sleep = AsyncMock()
        coordinator = RequestCoordinator(
            fake_transport,  # type: ignore[arg-type]
            slow_profile,
            retries=RetryPolicy(2),
            sleep=sleep,
        )
        ok = ApiResponse(success=True, result=[{"mac": "00:11:22:33:44:55"}])
        fake_transport.queue(
            "GET", "/dhcp/dynamic_lease/", timeout_response(), timeout_response(), ok
        )

        response = await coordinator.execute("GET", "/dhcp/dynamic_lease/")

        assert response == ok
        assert len(fake_transport.calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_gives_up_after_max_retries(
        self, fake_transport: FakeTransport, slow_profile: DeviceProfile
    ) -> None:
        sleep = AsyncMock()
        coordinator = RequestCoordinator(
            fake_transport,  # type: ignore[arg-type]
            slow_profile,
            sleep=sleep,
        )
        fake_transport.queue("GET", "/dhcp/static_lease/", timeout_response())

        response = await coordinator.execute("GET", "/dhcp/static_lease/")

        assert not response.success
        assert response.is_timeout
        assert len(fake_transport.calls) == 3
        assert sleep.await_count == 2
        assert coordinator.in_flight == ()

    async def test_no_retry_on_normal_device(
        self, fake_transport: FakeTransport, normal_profile: DeviceProfile
    ) -> None:
        sleep = AsyncMock()
        coordinator = RequestCoordinator(
            fake_transport,  # type: ignore[arg-type]
            normal_profile,
            sleep=sleep,
        )
        fake_transport.queue("GET", "/dhcp/dynamic_lease/", timeout_response())

        response = await coordinator.execute("GET", "/dhcp/dynamic_lease/")

        assert response.is_timeout
        assert len(fake_transport.calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.parametrize("path", ["/dhcp/dynamic_lease/", "/wifi/config/"])
    async def test_no_retry_for_insufficient_rights(
        self, fake_transport: FakeTransport, slow_profile: DeviceProfile, path: str
    ) -> None:
        sleep = AsyncMock()
        coordinator = RequestCoordinator(
            fake_transport,  # type: ignore[arg-type]
            slow_profile,
            retries=RetryPolicy(5),
            sleep=sleep,
        )
        fake_transport.queue(
            "GET",
            path,
            ApiResponse(
                success=False,
                error_code="insufficient_rights",
                msg="Cette application n'est pas autorisée à accéder à cette fonction",
                missing_right="settings",
            ),
        )

        response = await coordinator.execute("GET", path)

        assert len(fake_transport.calls) == 1
        sleep.assert_not_awaited()
        assert response.error is not None
        assert response.error.kind is ApiErrorKind.INSUFFICIENT_RIGHTS
        assert response.error.missing_right == "settings"

    async def test_transport_exception_becomes_envelope(
        self, fake_transport: FakeTransport
    ) -> None:
        coordinator = RequestCoordinator(fake_transport)  # type: ignore[arg-type]
        fake_transport.queue("GET", "/system/", RuntimeError("socket exploded"))

        response = await coordinator.execute("GET", "/system/")

        assert not response.success
        assert response.error_code == "request_failed"
        assert response.msg == "socket exploded"
        assert coordinator.in_flight == ()
