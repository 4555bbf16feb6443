from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import TracebackType
from typing import Any, Self
from urllib.parse import urlsplit


class TransportError(ConnectionError):
    """Raised when an HTTP exchange produced no response at all.

    Timeouts, refused connections and DNS failures end up here. A response with
    an error status is not a transport error.
    """


@dataclass(frozen=True)
class HttpRequest:
    """Immutable description of an outgoing HTTP request.

    Header changes produce a new request, so an original request can be replayed
    safely after a token refresh.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    query_params: Mapping[str, Any] = field(default_factory=dict)

    def with_header(self, name: str, value: str) -> "HttpRequest":
        """Return a copy of this request with one header set."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return replace(self, headers=headers)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None

    @property
    def path(self) -> str:
        """Path component of the URL, with the query string when present."""
        parts = urlsplit(self.url)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path


@dataclass(frozen=True)
class HttpResponse:
    """A received HTTP response with its body already decoded."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(ABC):
    """Abstract transport performing single HTTP exchanges.

    Transports know nothing about credentials or response semantics. They send
    exactly what they are given and hand back whatever the server answered.
    """

    @abstractmethod
    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request and return the server's response.

        Args:
            request: The request to send

        Returns:
            HttpResponse: The response, whatever its status code

        Raises:
            TransportError: If no response was received
        """

    async def close(self) -> None:
        """Release transport resources. Safe to call multiple times."""

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
