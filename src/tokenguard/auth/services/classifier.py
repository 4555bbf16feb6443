"""Response classification.

Backends signal problems on two channels: the HTTP status and a ``code`` field
inside a JSON envelope. Only an HTTP 401 means the access token expired.
Business code 401 means the user lacks privileges and must never start a
refresh.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from tokenguard.auth.models.errors import (
    PERMISSION_DENIED_MESSAGE,
    SERVER_ERROR_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
)
from tokenguard.auth.models.outcomes import ClassifiedOutcome, ForbiddenLayer
from tokenguard.transport.base import HttpResponse, TransportError

logger = logging.getLogger(__name__)


class ResponseClassifier:
    """Maps a response or transport failure to a ClassifiedOutcome.

    Rules, first match wins:
    1. Transport failure -> NETWORK_ERROR
    2. HTTP 401 -> AUTH_EXPIRED
    3. HTTP 403 -> AUTH_FORBIDDEN (http layer)
    4. Envelope with ``code``: 200 success, 401 permission denied,
       403 AUTH_FORBIDDEN (business layer), 500 server error,
       anything else a business error
    5. No envelope: 2xx success, 5xx server error, else business error
    """

    def classify(self, result: HttpResponse | TransportError) -> ClassifiedOutcome:
        if isinstance(result, TransportError):
            return ClassifiedOutcome.network_error(str(result))

        if result.status == 401:
            return ClassifiedOutcome.auth_expired()
        if result.status == 403:
            return ClassifiedOutcome.auth_forbidden(
                ForbiddenLayer.HTTP, self._message(result.body)
            )

        if self._is_envelope(result.body):
            return self._classify_envelope(result.body)

        if result.ok:
            return ClassifiedOutcome.success(result.body)

        message = self._message(result.body)
        if result.status >= 500:
            return ClassifiedOutcome.server_error(
                message or SERVER_ERROR_MESSAGE, code=result.status
            )

        logger.debug(f"Unexpected HTTP status {result.status} without envelope")
        return ClassifiedOutcome.business_error(
            result.status, message or UNKNOWN_ERROR_MESSAGE
        )

    def _classify_envelope(self, body: Mapping[str, Any]) -> ClassifiedOutcome:
        code = body["code"]
        message = self._message(body)

        if code == 200:
            return ClassifiedOutcome.success(body)
        if code == 401:
            return ClassifiedOutcome.business_error(
                401, message or PERMISSION_DENIED_MESSAGE
            )
        if code == 403:
            return ClassifiedOutcome.auth_forbidden(ForbiddenLayer.BUSINESS, message)
        if code == 500:
            return ClassifiedOutcome.server_error(
                message or SERVER_ERROR_MESSAGE, code=500
            )
        return ClassifiedOutcome.business_error(
            code if isinstance(code, int) else None, message or UNKNOWN_ERROR_MESSAGE
        )

    @staticmethod
    def _is_envelope(body: Any) -> bool:
        return isinstance(body, Mapping) and body.get("code") is not None

    @staticmethod
    def _message(body: Any) -> str | None:
        """Pull a human-readable message out of a body, if it has one."""
        if not isinstance(body, Mapping):
            return None
        for key in ("msg", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return None
