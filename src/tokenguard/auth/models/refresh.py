"""Refresh exchange request and response models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class RefreshRequest:
    """Parameters for one call to the refresh endpoint."""

    refresh_url: str
    refresh_token: str

    def to_json(self) -> dict[str, str]:
        return {"refreshToken": self.refresh_token}


class RefreshedTokens(BaseModel):
    """Token payload inside a successful refresh envelope.

    Accepts both camelCase and snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str | None = Field(
        default=None, validation_alias=AliasChoices("accessToken", "access_token")
    )
    refresh_token: str | None = Field(
        default=None, validation_alias=AliasChoices("refreshToken", "refresh_token")
    )


class RefreshEnvelope(BaseModel):
    """Response envelope returned by the refresh endpoint.

    ``code == 200`` is the only success signal.
    """

    code: int
    data: RefreshedTokens | None = None
    msg: str | None = None

    def is_success(self) -> bool:
        """Check if the envelope carries a usable access token."""
        return (
            self.code == 200
            and self.data is not None
            and bool(self.data.access_token)
        )

    def failure_reason(self) -> str:
        if self.code == 200:
            return "Refresh response missing access token"
        return self.msg or "Refresh failed"

    @classmethod
    def parse(cls, body: Any) -> RefreshEnvelope:
        """Validate a decoded response body.

        Raises:
            pydantic.ValidationError: If the body is not a valid envelope
        """
        return cls.model_validate(body)
