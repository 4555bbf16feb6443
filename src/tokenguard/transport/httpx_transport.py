"""HTTP transport backed by a shared httpx.AsyncClient."""

import logging
from typing import Any

import httpx

from tokenguard.transport.base import (
    HttpRequest,
    HttpResponse,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)


class HttpxTransport(Transport):
    """Sends requests through one long-lived httpx.AsyncClient.

    The client keeps a cookie jar, so cookies set by the server travel with
    every later request. Relative request URLs are resolved against base_url.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Base URL that relative request URLs are joined to
            timeout: Per-request timeout in seconds
            http_client: Preconfigured client to use instead of creating one
        """
        self.base_url = base_url
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout
        )

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request via httpx.

        Raises:
            TransportError: If httpx could not complete the exchange
        """
        logger.debug(f"Sending {request.method} {request.url}")

        try:
            response = await self._http_client.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                params=dict(request.query_params) or None,
                json=request.body,
            )
        except httpx.RequestError as e:
            raise TransportError(
                f"HTTP request failed for {request.method} {request.url}: {e}"
            ) from e

        logger.debug(f"{request.method} {request.url} -> {response.status_code}")
        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=self._decode_body(response),
        )

    def _decode_body(self, response: httpx.Response) -> Any:
        """Decode a JSON body, falling back to text for anything else."""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def close(self) -> None:
        """Close the underlying HTTP client. Safe to call multiple times."""
        if not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug("HTTP client closed")
