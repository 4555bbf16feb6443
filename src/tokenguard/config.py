"""Client configuration.

Defaults match a backend serving its API and auth endpoints from one origin.
Values can be overridden through TOKENGUARD_* environment variables; callers
that keep those in a .env file should call dotenv.load_dotenv() first.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field


class ClientSettings(BaseModel):
    """Immutable settings for an authenticated client."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://localhost:8080"
    timeout: float = Field(default=5.0, gt=0)  # seconds
    refresh_path: str = "/auth/refresh"
    login_path: str = "/auth/login"
    access_token_key: str = "access_token"
    refresh_token_key: str = "refresh_token"
    token_type: str = "Bearer"

    @classmethod
    def from_env(
        cls, prefix: str = "TOKENGUARD_", environ: Mapping[str, str] | None = None
    ) -> ClientSettings:
        """Build settings from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>``, e.g. TOKENGUARD_BASE_URL.
        Unset variables keep their defaults.

        Raises:
            pydantic.ValidationError: If a value cannot be converted
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            value = environ.get(f"{prefix}{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)

    @property
    def refresh_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.refresh_path}"

    def targets_refresh_endpoint(self, url: str) -> bool:
        """True if a request URL points at the refresh endpoint."""
        return self.refresh_path in url
