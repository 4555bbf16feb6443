"""Refresh token exchange.

Talks to the refresh endpoint directly on the transport. It deliberately skips
the request authenticator and the response classifier, so a 401 from the
refresh endpoint can never start another refresh.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from tokenguard.auth.models.credentials import Credentials
from tokenguard.auth.models.errors import RefreshFailedError
from tokenguard.auth.models.refresh import (
    RefreshedTokens,
    RefreshEnvelope,
    RefreshRequest,
)
from tokenguard.auth.storage import CredentialStore
from tokenguard.config import ClientSettings
from tokenguard.transport.base import HttpRequest, Transport, TransportError

logger = logging.getLogger(__name__)


class RefreshExchange:
    """Performs one refresh call and persists its result.

    Any failure is reported as RefreshFailedError: a missing refresh token,
    a transport failure, a non-2xx status, a malformed envelope or an
    envelope code other than 200.
    """

    def __init__(
        self,
        transport: Transport,
        store: CredentialStore,
        settings: ClientSettings,
    ):
        self.transport = transport
        self.store = store
        self.settings = settings

    async def refresh(self) -> str:
        """Exchange the stored refresh token for a new access token.

        Returns:
            The new access token, already written to the store

        Raises:
            RefreshFailedError: If the token could not be renewed
        """
        credentials = Credentials.load(self.store, self.settings)
        if not credentials.can_refresh():
            raise RefreshFailedError("No refresh token available")

        refresh_request = RefreshRequest(
            refresh_url=self.settings.refresh_url,
            refresh_token=credentials.refresh_token,
        )
        logger.debug(f"Refreshing access token at {refresh_request.refresh_url}")

        tokens = await self._exchange(refresh_request)

        self.store.set(self.settings.access_token_key, tokens.access_token)
        if tokens.refresh_token:
            self.store.set(self.settings.refresh_token_key, tokens.refresh_token)
            logger.debug("Refresh token rotated")

        logger.info("Successfully refreshed access token")
        return tokens.access_token

    async def _exchange(self, refresh_request: RefreshRequest) -> RefreshedTokens:
        request = HttpRequest(
            method="POST",
            url=refresh_request.refresh_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            body=refresh_request.to_json(),
        )

        try:
            response = await self.transport.send(request)
        except TransportError as e:
            raise RefreshFailedError(f"HTTP error during token refresh: {e}") from e

        if not response.ok:
            logger.warning(f"Refresh endpoint returned HTTP {response.status}")
            raise RefreshFailedError(
                f"Refresh endpoint returned HTTP {response.status}"
            )

        try:
            envelope = RefreshEnvelope.parse(response.body)
        except ValidationError as e:
            raise RefreshFailedError(f"Invalid refresh response format: {e}") from e

        if not envelope.is_success():
            logger.warning(
                f"Token refresh rejected with code {envelope.code}: "
                f"{envelope.failure_reason()}"
            )
            raise RefreshFailedError(envelope.failure_reason())

        return envelope.data
