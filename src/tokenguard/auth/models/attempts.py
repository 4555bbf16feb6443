from __future__ import annotations

from dataclasses import dataclass, replace

from tokenguard.transport.base import HttpRequest


@dataclass(frozen=True)
class RequestAttempt:
    """A request together with whether it was already replayed after a refresh.

    A request is retried at most once because of an expired token.
    """

    request: HttpRequest
    retried: bool = False

    def mark_retried(self, request: HttpRequest | None = None) -> RequestAttempt:
        """Return the replay attempt, optionally with an updated request."""
        return replace(self, request=request or self.request, retried=True)
