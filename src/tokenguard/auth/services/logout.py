"""Forced logout handling.

A forced logout clears both stored tokens and tells the SessionObserver where
the user should come back to after logging in again. It happens once per
failure episode: further calls clear the store again but do not notify the
observer until new credentials are stored.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable
from typing import Protocol
from urllib.parse import urlencode

from tokenguard.auth.models.errors import (
    SESSION_EXPIRED_MESSAGE,
    ForcedLogoutError,
)
from tokenguard.auth.storage import CredentialStore
from tokenguard.config import ClientSettings

logger = logging.getLogger(__name__)


class SessionObserver(Protocol):
    """Protocol for reacting to forced logouts, e.g. redirecting a UI.

    Implementations may be sync or async. They are fire-and-forget: the
    failing request does not wait for them.
    """

    def on_forced_logout(self, return_path: str) -> Awaitable[None] | None:
        """Handle a forced logout.

        Args:
            return_path: Path to return to after re-authentication
        """
        ...


class LoggingSessionObserver:
    """Observer that only logs. Used when the application supplies none."""

    def on_forced_logout(self, return_path: str) -> None:
        logger.warning(f"{SESSION_EXPIRED_MESSAGE} (return to {return_path})")


class LogoutHandler:
    """Clears credentials and notifies the session observer."""

    def __init__(
        self,
        store: CredentialStore,
        settings: ClientSettings,
        observer: SessionObserver | None = None,
    ):
        self.store = store
        self.settings = settings
        self.observer = observer or LoggingSessionObserver()
        self._notified = False
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def logged_out(self) -> bool:
        """True once a logout happened and no credentials were stored since."""
        return self._notified

    def build_login_url(self, return_path: str) -> str:
        return f"{self.settings.login_path}?{urlencode({'redirectTo': return_path})}"

    def logout(self, return_path: str) -> None:
        """Clear both tokens and notify the observer once per episode."""
        self.store.clear(self.settings.access_token_key)
        self.store.clear(self.settings.refresh_token_key)

        if self._notified:
            logger.debug("Forced logout already signalled for this session")
            return
        self._notified = True

        logger.info(f"Forced logout, return path {return_path}")
        self._notify(return_path)

    def error_for(
        self,
        return_path: str,
        error_cls: type[ForcedLogoutError] = ForcedLogoutError,
        message: str = SESSION_EXPIRED_MESSAGE,
    ) -> ForcedLogoutError:
        """Build the error raised to a caller whose session was logged out."""
        return error_cls(
            message,
            return_path=return_path,
            login_url=self.build_login_url(return_path),
        )

    def reset(self) -> None:
        """Re-arm notification after a new login or a successful refresh."""
        self._notified = False

    async def drain(self) -> None:
        """Wait for outstanding async observer notifications."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _notify(self, return_path: str) -> None:
        try:
            result = self.observer.on_forced_logout(return_path)
        except Exception:
            logger.exception("Session observer failed during forced logout")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_notification_done)

    def _on_notification_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Session observer failed during forced logout: {task.exception()}"
            )
