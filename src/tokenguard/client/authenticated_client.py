"""Authenticated HTTP client.

Composes the request pipeline explicitly: attach token, send, classify. An
expired token is recovered by one refresh and exactly one replay of the
original request. Everything else goes back to the caller as a typed error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any, Self

from tokenguard.auth.models.attempts import RequestAttempt
from tokenguard.auth.models.errors import (
    AuthExpiredError,
    ForcedLogoutError,
    RefreshFailedError,
)
from tokenguard.auth.models.outcomes import ClassifiedOutcome
from tokenguard.auth.services.authenticator import RequestAuthenticator
from tokenguard.auth.services.classifier import ResponseClassifier
from tokenguard.auth.services.coordinator import RefreshCoordinator
from tokenguard.auth.services.logout import LogoutHandler, SessionObserver
from tokenguard.auth.services.refresh import RefreshExchange
from tokenguard.auth.storage import CredentialStore, InMemoryCredentialStore
from tokenguard.config import ClientSettings
from tokenguard.transport.base import HttpRequest, Transport, TransportError
from tokenguard.transport.httpx_transport import HttpxTransport

logger = logging.getLogger(__name__)


class AuthenticatedClient:
    """HTTP client that renews expired access tokens transparently.

    The coordinator is passed in explicitly; clients that share one coordinator
    share its single-flight refresh.
    """

    def __init__(
        self,
        transport: Transport,
        store: CredentialStore,
        coordinator: RefreshCoordinator,
        logout_handler: LogoutHandler,
        settings: ClientSettings | None = None,
        current_path: Callable[[], str] | None = None,
    ):
        """Initialize the client.

        Args:
            transport: Transport performing the HTTP exchanges
            store: Credential store holding both tokens
            coordinator: Refresh coordinator shared by concurrent requests
            logout_handler: Handler performing forced logouts
            settings: Client settings
            current_path: Returns the path to come back to after a forced
                logout. Defaults to the failing request's path.
        """
        self.transport = transport
        self.store = store
        self.coordinator = coordinator
        self.logout_handler = logout_handler
        self.settings = settings or ClientSettings()
        self.authenticator = RequestAuthenticator(store, self.settings)
        self.classifier = ResponseClassifier()
        self._current_path = current_path

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings | None = None,
        store: CredentialStore | None = None,
        observer: SessionObserver | None = None,
        transport: Transport | None = None,
        current_path: Callable[[], str] | None = None,
    ) -> AuthenticatedClient:
        """Wire a client with default collaborators where none are given."""
        settings = settings or ClientSettings()
        store = store if store is not None else InMemoryCredentialStore()
        transport = transport or HttpxTransport(
            base_url=settings.base_url, timeout=settings.timeout
        )
        logout_handler = LogoutHandler(store, settings, observer)
        coordinator = RefreshCoordinator(
            RefreshExchange(transport, store, settings), logout_handler
        )
        return cls(
            transport,
            store,
            coordinator,
            logout_handler,
            settings=settings,
            current_path=current_path,
        )

    # ================================
    # Convenience methods
    # ================================

    async def get(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.execute(
            HttpRequest("GET", url, query_params=dict(params or {}))
        )

    async def post(self, url: str, data: Any = None) -> Any:
        return await self.execute(HttpRequest("POST", url, body=_or_empty(data)))

    async def put(self, url: str, data: Any = None) -> Any:
        return await self.execute(HttpRequest("PUT", url, body=_or_empty(data)))

    async def delete(self, url: str, data: Any = None) -> Any:
        """Send a DELETE request. The data, if any, travels as a JSON body."""
        return await self.execute(HttpRequest("DELETE", url, body=_or_empty(data)))

    # ================================
    # Request pipeline
    # ================================

    async def execute(self, request: HttpRequest) -> Any:
        """Send a request, recovering once from an expired access token.

        Returns:
            The response payload. For enveloped responses this is the whole
            envelope; otherwise the decoded body.

        Raises:
            AuthExpiredError: If the replayed request was rejected as expired
            RefreshFailedError: If the token could not be renewed
            ForcedLogoutError: If the server declared the session invalid
            BusinessError: If the server rejected the request
            ServerError: If the server failed
            NetworkError: If no response was received
        """
        attempt = RequestAttempt(self.authenticator.attach(request))
        outcome = await self._send(attempt)

        if outcome.is_auth_expired():
            outcome = await self._recover_expired(attempt)

        return self._resolve(attempt, outcome)

    async def _send(self, attempt: RequestAttempt) -> ClassifiedOutcome:
        try:
            response = await self.transport.send(attempt.request)
        except TransportError as e:
            logger.debug(f"No response for {attempt.request.path}: {e}")
            return self.classifier.classify(e)
        return self.classifier.classify(response)

    async def _recover_expired(self, attempt: RequestAttempt) -> ClassifiedOutcome:
        """Refresh the token and replay the request exactly once."""
        if attempt.retried:
            raise AuthExpiredError("Access token expired after retry")

        if self.settings.targets_refresh_endpoint(attempt.request.url):
            logger.warning("Refresh endpoint rejected the request, forcing logout")
            return_path = self._return_path(attempt)
            self.logout_handler.logout(return_path)
            raise self.logout_handler.error_for(return_path, RefreshFailedError)

        token = await self.coordinator.on_auth_expired(
            attempt, return_path=self._return_path(attempt)
        )

        replay = attempt.mark_retried(
            self.authenticator.attach_token(attempt.request, token)
        )
        logger.debug(f"Replaying {replay.request.path} with refreshed token")
        outcome = await self._send(replay)

        if outcome.is_auth_expired():
            raise AuthExpiredError("Access token expired after retry")
        return outcome

    def _resolve(self, attempt: RequestAttempt, outcome: ClassifiedOutcome) -> Any:
        if outcome.is_success():
            return outcome.payload

        if outcome.is_forced_logout():
            return_path = self._return_path(attempt)
            layer = outcome.layer.value if outcome.layer else "http"
            logger.warning(f"Session rejected ({layer} 403) for {attempt.request.path}")
            self.logout_handler.logout(return_path)
            raise self.logout_handler.error_for(return_path, ForcedLogoutError)

        error = outcome.to_error()
        logger.debug(f"{attempt.request.path} failed: {error.message}")
        raise error

    def _return_path(self, attempt: RequestAttempt) -> str:
        if self._current_path is not None:
            return self._current_path()
        return attempt.request.path

    # ================================
    # Session management
    # ================================

    def set_credentials(
        self, access_token: str, refresh_token: str | None = None
    ) -> None:
        """Store tokens from a fresh login."""
        self.store.set(self.settings.access_token_key, access_token)
        if refresh_token:
            self.store.set(self.settings.refresh_token_key, refresh_token)
        self.logout_handler.reset()

    async def close(self) -> None:
        """Close the transport. Safe to call multiple times."""
        await self.transport.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        return None


def _or_empty(data: Any) -> Any:
    return {} if data is None else data
