"""Credential models.

Credentials are owned by a CredentialStore. The snapshot type here is only a
convenience for reading both tokens at once and is never cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tokenguard.auth.storage import CredentialStore
    from tokenguard.config import ClientSettings


@dataclass(frozen=True)
class Credentials:
    """Point-in-time view of the stored access and refresh tokens."""

    access_token: str | None = None
    refresh_token: str | None = None

    @classmethod
    def load(cls, store: CredentialStore, settings: ClientSettings) -> Credentials:
        """Read both tokens from a store."""
        return cls(
            access_token=store.get(settings.access_token_key),
            refresh_token=store.get(settings.refresh_token_key),
        )

    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token

    def can_refresh(self) -> bool:
        """Check if a refresh token is available."""
        return bool(self.refresh_token)
