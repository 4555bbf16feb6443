"""Tests for single-flight refresh coordination.

High-impact tests covering the refresh state machine:
- Concurrent expiries share exactly one refresh call
- Waiters are released in FIFO order with one shared outcome
- Failures log out once and always return the coordinator to IDLE
- Cancellation never breaks the shared refresh or the remaining waiters
"""

import asyncio
import gc

import pytest

from tests.fakes import ScriptedTransport, envelope
from tokenguard.auth.models.attempts import RequestAttempt
from tokenguard.auth.models.errors import RefreshFailedError
from tokenguard.auth.services.coordinator import RefreshCoordinator, RefreshState
from tokenguard.auth.services.refresh import RefreshExchange
from tokenguard.transport.base import HttpRequest, HttpResponse, TransportError


def attempt(path: str) -> RequestAttempt:
    return RequestAttempt(HttpRequest("GET", f"http://api.test{path}"))


async def wait_for_waiters(coordinator: RefreshCoordinator, count: int) -> None:
    async def poll():
        while coordinator.waiter_count < count:
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=1.0)


class GatedRefreshServer:
    """Refresh endpoint that answers only once the test opens the gate."""

    def __init__(self, response: HttpResponse):
        self.response = response
        self.gate = asyncio.Event()

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        await self.gate.wait()
        return self.response


class TestSingleFlight:
    @pytest.fixture(autouse=True)
    def setup_coordinator(self, store, settings, logout_handler, observer):
        self.store = store
        self.observer = observer
        self.server = GatedRefreshServer(
            HttpResponse(200, body=envelope(200, {"accessToken": "A2"}))
        )
        self.transport = ScriptedTransport(self.server)
        self.coordinator = RefreshCoordinator(
            RefreshExchange(self.transport, store, settings), logout_handler
        )

    async def test_single_caller_gets_new_token(self):
        # Arrange
        self.server.gate.set()

        # Act
        token = await self.coordinator.on_auth_expired(attempt("/notes"))

        # Assert
        assert token == "A2"
        assert self.store.get("access_token") == "A2"
        assert self.coordinator.state is RefreshState.IDLE
        assert len(self.transport.requests) == 1

    async def test_concurrent_expiries_trigger_one_refresh(self):
        # Arrange
        paths = [f"/notes/{i}" for i in range(5)]
        tasks = [
            asyncio.create_task(self.coordinator.on_auth_expired(attempt(p)))
            for p in paths
        ]
        await wait_for_waiters(self.coordinator, 4)
        assert self.coordinator.state is RefreshState.REFRESHING

        # Act
        self.server.gate.set()
        tokens = await asyncio.gather(*tasks)

        # Assert
        assert tokens == ["A2"] * 5
        assert len(self.transport.requests_to("/auth/refresh")) == 1
        assert self.coordinator.state is RefreshState.IDLE
        assert self.coordinator.waiter_count == 0

    async def test_waiters_are_released_in_fifo_order(self):
        # Arrange
        order = []

        async def expire(path):
            await self.coordinator.on_auth_expired(attempt(path))
            order.append(path)

        trigger = asyncio.create_task(expire("/first"))
        await asyncio.sleep(0)
        waiters = [asyncio.create_task(expire(f"/w{i}")) for i in range(3)]
        await wait_for_waiters(self.coordinator, 3)

        # Act
        self.server.gate.set()
        await asyncio.gather(trigger, *waiters)

        # Assert
        assert [p for p in order if p != "/first"] == ["/w0", "/w1", "/w2"]

    async def test_new_episode_after_completion_refreshes_again(self):
        # Arrange
        self.server.gate.set()
        await self.coordinator.on_auth_expired(attempt("/a"))

        # Act
        await self.coordinator.on_auth_expired(attempt("/b"))

        # Assert
        assert len(self.transport.requests_to("/auth/refresh")) == 2

    async def test_refresh_reads_refresh_token_at_refresh_time(self):
        # Arrange
        task = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/a")))
        await asyncio.sleep(0)

        # Act
        self.server.gate.set()
        await task

        # Assert
        assert self.transport.requests[0].body == {"refreshToken": "R1"}


class TestRefreshFailure:
    @pytest.fixture(autouse=True)
    def setup_coordinator(self, store, settings, logout_handler, observer):
        self.store = store
        self.observer = observer
        self.server = GatedRefreshServer(HttpResponse(401, body=None))
        self.transport = ScriptedTransport(self.server)
        self.coordinator = RefreshCoordinator(
            RefreshExchange(self.transport, store, settings), logout_handler
        )

    async def test_all_callers_share_one_error_and_logout_happens_once(self):
        # Arrange
        tasks = [
            asyncio.create_task(self.coordinator.on_auth_expired(attempt(f"/n/{i}")))
            for i in range(4)
        ]
        await wait_for_waiters(self.coordinator, 3)

        # Act
        self.server.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Assert
        assert all(isinstance(r, RefreshFailedError) for r in results)
        assert all(r is results[0] for r in results)
        assert self.observer.return_paths == ["/n/0"]
        assert self.store.get("access_token") is None
        assert self.store.get("refresh_token") is None
        assert self.coordinator.state is RefreshState.IDLE
        assert len(self.transport.requests) == 1

    async def test_error_carries_return_path_and_login_url(self):
        # Arrange
        self.server.gate.set()

        # Act
        with pytest.raises(RefreshFailedError) as exc_info:
            await self.coordinator.on_auth_expired(attempt("/notes"), "/dashboard")

        # Assert
        assert exc_info.value.return_path == "/dashboard"
        assert exc_info.value.login_url == "/auth/login?redirectTo=%2Fdashboard"

    async def test_missing_refresh_token_fails_and_returns_to_idle(self):
        # Arrange
        self.store.clear("refresh_token")

        # Act
        with pytest.raises(RefreshFailedError, match="No refresh token"):
            await self.coordinator.on_auth_expired(attempt("/notes"))

        # Assert
        assert self.transport.requests == []
        assert self.observer.return_paths == ["/notes"]
        assert self.coordinator.state is RefreshState.IDLE

    async def test_transport_failure_is_a_refresh_failure(self):
        # Arrange
        def unreachable(request):
            raise TransportError("connection refused")

        self.transport.handler = unreachable

        # Act & Assert
        with pytest.raises(RefreshFailedError):
            await self.coordinator.on_auth_expired(attempt("/notes"))
        assert self.coordinator.state is RefreshState.IDLE

    async def test_unexpected_exchange_error_still_releases_waiters(self):
        # Arrange
        async def broken(request):
            await self.server.gate.wait()
            raise RuntimeError("store exploded")

        self.transport.handler = broken
        tasks = [
            asyncio.create_task(self.coordinator.on_auth_expired(attempt(f"/n/{i}")))
            for i in range(3)
        ]
        await wait_for_waiters(self.coordinator, 2)

        # Act
        self.server.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Assert
        assert all(isinstance(r, RefreshFailedError) for r in results)
        assert isinstance(results[0].__cause__, RuntimeError)
        assert self.coordinator.state is RefreshState.IDLE


class TestCancellation:
    @pytest.fixture(autouse=True)
    def setup_coordinator(self, store, settings, logout_handler):
        self.store = store
        self.server = GatedRefreshServer(
            HttpResponse(200, body=envelope(200, {"accessToken": "A2"}))
        )
        self.transport = ScriptedTransport(self.server)
        self.coordinator = RefreshCoordinator(
            RefreshExchange(self.transport, store, settings), logout_handler
        )

    async def test_cancelled_waiter_is_removed_and_others_still_released(self):
        # Arrange
        trigger = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/t")))
        first = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/1")))
        second = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/2")))
        await wait_for_waiters(self.coordinator, 2)

        # Act
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert self.coordinator.waiter_count == 1

        self.server.gate.set()

        # Assert
        assert await trigger == "A2"
        assert await second == "A2"
        assert self.coordinator.state is RefreshState.IDLE

    async def test_cancelling_trigger_does_not_abort_shared_refresh(self):
        # Arrange
        trigger = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/t")))
        waiter = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/w")))
        await wait_for_waiters(self.coordinator, 1)

        # Act
        trigger.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trigger
        assert self.coordinator.state is RefreshState.REFRESHING

        self.server.gate.set()

        # Assert
        assert await waiter == "A2"
        assert self.store.get("access_token") == "A2"
        assert self.coordinator.state is RefreshState.IDLE

    async def test_refresh_cancelled_before_it_runs_returns_to_idle(self):
        # Arrange
        trigger = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/t")))
        await asyncio.sleep(0)

        # Act
        self.coordinator._refresh_task.cancel()
        waiter = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/w")))
        results = await asyncio.gather(trigger, waiter, return_exceptions=True)

        # Assert
        assert all(isinstance(r, RefreshFailedError) for r in results)
        assert self.coordinator.state is RefreshState.IDLE
        assert self.coordinator.waiter_count == 0
        assert self.transport.requests == []

    async def test_refresh_cancelled_mid_flight_rejects_waiters(self):
        # Arrange
        trigger = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/t")))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/w")))
        await wait_for_waiters(self.coordinator, 1)

        # Act
        self.coordinator._refresh_task.cancel()
        results = await asyncio.gather(trigger, waiter, return_exceptions=True)

        # Assert
        assert all(isinstance(r, RefreshFailedError) for r in results)
        assert self.coordinator.state is RefreshState.IDLE
        assert self.coordinator.waiter_count == 0

    async def test_failed_refresh_after_trigger_cancelled_is_not_left_unretrieved(
        self, caplog
    ):
        # Arrange
        self.server.response = HttpResponse(401, body=None)
        trigger = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/t")))
        waiter = asyncio.create_task(self.coordinator.on_auth_expired(attempt("/w")))
        await wait_for_waiters(self.coordinator, 1)
        trigger.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trigger

        # Act
        self.server.gate.set()
        with pytest.raises(RefreshFailedError):
            await waiter
        await asyncio.sleep(0)
        gc.collect()

        # Assert
        assert self.coordinator.state is RefreshState.IDLE
        assert "never retrieved" not in caplog.text
