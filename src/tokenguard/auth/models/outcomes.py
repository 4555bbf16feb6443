"""Classified response outcomes.

A ClassifiedOutcome is produced once per response or transport failure and
consumed straight away by the client. It is never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from tokenguard.auth.models.errors import (
    PERMISSION_DENIED_MESSAGE,
    SERVER_ERROR_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    AuthExpiredError,
    BusinessError,
    ClientError,
    NetworkError,
    PermissionDeniedError,
    ServerError,
)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    BUSINESS_ERROR = "business_error"
    AUTH_EXPIRED = "auth_expired"
    AUTH_FORBIDDEN = "auth_forbidden"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"


class ForbiddenLayer(str, Enum):
    """Where a forced-logout condition was signalled."""

    HTTP = "http"
    BUSINESS = "business"


@dataclass(frozen=True)
class ClassifiedOutcome:
    """Tagged outcome of a single HTTP exchange.

    Only the fields relevant to ``kind`` are populated: ``payload`` for
    successes, ``code`` and ``message`` for failures.
    """

    kind: OutcomeKind
    payload: Any = None
    code: int | None = None
    message: str | None = None
    layer: ForbiddenLayer | None = None

    @classmethod
    def success(cls, payload: Any) -> ClassifiedOutcome:
        return cls(OutcomeKind.SUCCESS, payload=payload)

    @classmethod
    def business_error(cls, code: int | None, message: str) -> ClassifiedOutcome:
        return cls(OutcomeKind.BUSINESS_ERROR, code=code, message=message)

    @classmethod
    def auth_expired(cls) -> ClassifiedOutcome:
        return cls(OutcomeKind.AUTH_EXPIRED, code=401, message="Access token expired")

    @classmethod
    def auth_forbidden(
        cls, layer: ForbiddenLayer, message: str | None = None
    ) -> ClassifiedOutcome:
        return cls(OutcomeKind.AUTH_FORBIDDEN, code=403, message=message, layer=layer)

    @classmethod
    def server_error(cls, message: str, code: int | None = None) -> ClassifiedOutcome:
        return cls(OutcomeKind.SERVER_ERROR, code=code, message=message)

    @classmethod
    def network_error(cls, message: str) -> ClassifiedOutcome:
        return cls(OutcomeKind.NETWORK_ERROR, message=message)

    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def is_auth_expired(self) -> bool:
        return self.kind is OutcomeKind.AUTH_EXPIRED

    def is_forced_logout(self) -> bool:
        return self.kind is OutcomeKind.AUTH_FORBIDDEN

    def to_error(self) -> ClientError:
        """Build the exception surfaced to callers for a non-logout failure.

        Raises:
            ValueError: For successes and forced-logout outcomes, which the
                client handles itself
        """
        if self.kind is OutcomeKind.NETWORK_ERROR:
            return NetworkError(self.message) if self.message else NetworkError()
        if self.kind is OutcomeKind.SERVER_ERROR:
            return ServerError(self.message or SERVER_ERROR_MESSAGE, status=self.code)
        if self.kind is OutcomeKind.AUTH_EXPIRED:
            return AuthExpiredError(self.message or "Access token expired")
        if self.kind is OutcomeKind.BUSINESS_ERROR:
            if self.code == 401:
                return PermissionDeniedError(self.message or PERMISSION_DENIED_MESSAGE)
            return BusinessError(self.code, self.message or UNKNOWN_ERROR_MESSAGE)
        raise ValueError(f"Outcome {self.kind.value} has no caller-facing error")
