"""Single-flight coordination of access token refreshes.

When several requests fail with an expired token at the same time, only the
first one starts a refresh. The others queue up as waiters and are released,
in arrival order, with the outcome of that one refresh: either all of them get
the new token or all of them get the same error.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from tokenguard.auth.models.attempts import RequestAttempt
from tokenguard.auth.models.errors import RefreshFailedError
from tokenguard.auth.services.logout import LogoutHandler
from tokenguard.auth.services.refresh import RefreshExchange

logger = logging.getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(eq=False)
class Waiter:
    """A caller suspended until the in-flight refresh completes."""

    attempt: RequestAttempt
    future: asyncio.Future[str] = field(repr=False)


class RefreshCoordinator:
    """Owns the refresh state machine and the waiter queue.

    States are IDLE and REFRESHING. The check of the current state, the move to
    REFRESHING and the enqueueing of waiters all happen without yielding to the
    event loop, so they form one critical section.

    The refresh itself runs in its own task. Cancelling the caller that
    triggered it, or any waiter, never aborts the shared refresh; a cancelled
    waiter is simply dropped from the queue.

    Must be used from a single event loop.
    """

    def __init__(self, exchange: RefreshExchange, logout_handler: LogoutHandler):
        self._exchange = exchange
        self._logout_handler = logout_handler
        self._refresh_task: asyncio.Task[str] | None = None
        self._waiters: deque[Waiter] = deque()

    @property
    def state(self) -> RefreshState:
        if self._refresh_task is not None:
            return RefreshState.REFRESHING
        return RefreshState.IDLE

    @property
    def in_progress(self) -> bool:
        """True while a refresh call is outstanding."""
        return self._refresh_task is not None

    @property
    def waiter_count(self) -> int:
        return len(self._waiters)

    async def on_auth_expired(
        self, attempt: RequestAttempt, return_path: str | None = None
    ) -> str:
        """Get a fresh access token for a request that failed as expired.

        Starts a refresh if none is running, otherwise waits for the running
        one.

        Args:
            attempt: The failed request attempt
            return_path: Path to return to if the refresh forces a logout;
                defaults to the request's own path

        Returns:
            The new access token

        Raises:
            RefreshFailedError: If the refresh failed. The session has been
                logged out by then.
        """
        if self._refresh_task is not None:
            return await self._wait_for_refresh(attempt)

        return_path = return_path or attempt.request.path
        logger.debug(f"Starting token refresh for {attempt.request.path}")
        task = asyncio.create_task(self._run_refresh(return_path))
        task.add_done_callback(self._on_refresh_done)
        self._refresh_task = task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                raise RefreshFailedError("Token refresh was cancelled") from None
            raise

    async def _wait_for_refresh(self, attempt: RequestAttempt) -> str:
        waiter = Waiter(attempt, asyncio.get_running_loop().create_future())
        self._waiters.append(waiter)
        logger.debug(
            f"Refresh in progress, queued {attempt.request.path} "
            f"({len(self._waiters)} waiting)"
        )

        try:
            return await waiter.future
        except asyncio.CancelledError:
            self._discard_waiter(waiter)
            raise

    async def _run_refresh(self, return_path: str) -> str:
        try:
            try:
                token = await self._exchange.refresh()
            except RefreshFailedError as e:
                raise self._fail(return_path, e.message) from e
            except Exception as e:
                raise self._fail(
                    return_path, f"Unexpected error during token refresh: {e}"
                ) from e

            self._logout_handler.reset()
            self._release(token=token)
            return token
        except asyncio.CancelledError:
            self._reject_cancelled()
            raise
        finally:
            self._refresh_task = None

    def _on_refresh_done(self, task: asyncio.Task[str]) -> None:
        """Return to IDLE even if the refresh task was cancelled before it ran."""
        if not task.cancelled():
            task.exception()  # the triggering caller may be gone

        if self._refresh_task is task:
            self._refresh_task = None
            self._reject_cancelled()

    def _reject_cancelled(self) -> None:
        if self._waiters:
            logger.warning("Token refresh was cancelled, rejecting queued requests")
            self._release(error=RefreshFailedError("Token refresh was cancelled"))

    def _fail(self, return_path: str, message: str) -> RefreshFailedError:
        """Reject every waiter and log out once. Returns the shared error."""
        logger.warning(f"Token refresh failed: {message}")
        error = self._logout_handler.error_for(return_path, RefreshFailedError, message)
        self._release(error=error)
        self._logout_handler.logout(return_path)
        return error

    def _release(
        self, token: str | None = None, error: BaseException | None = None
    ) -> None:
        """Drain the queue in FIFO order with one shared outcome."""
        waiters, self._waiters = self._waiters, deque()
        if waiters:
            logger.debug(f"Releasing {len(waiters)} queued requests")

        for waiter in waiters:
            if waiter.future.done():
                continue
            if error is not None:
                waiter.future.set_exception(error)
            else:
                waiter.future.set_result(token)

    def _discard_waiter(self, waiter: Waiter) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass  # already drained
