"""HTTP transport for the rules-list client.

Thin wrapper over httpx that returns the response body and status, and
raises RemoteTransportError on network failure, redirect exhaustion or a
non-2xx status. Connection retries are delegated to httpx.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from allowlist_sync.exceptions import RemoteTransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_REDIRECTS = 3
USER_AGENT = "allowlist-sync/0.1"


@dataclass(frozen=True)
class TransportResponse:
    """Body and status of a completed request."""

    status_code: int
    text: str


class HttpTransport:
    """Synchronous HTTP transport with JSON bodies.

    Example:
        ```python
        transport = HttpTransport(timeout=15, max_redirects=3)
        response = transport.get(url, headers={"Authorization": "Bearer ..."})
        ```
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_retries: int = 0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Request timeout in seconds.
            max_redirects: Redirects followed before failing.
            max_retries: Connection retries performed by httpx.
            client: Optional preconfigured httpx client (used by tests).
        """
        self._client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
            transport=httpx.HTTPTransport(retries=max_retries),
            headers={"User-Agent": USER_AGENT},
        )

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> TransportResponse:
        """Send a request and return its body.

        Args:
            method: HTTP method.
            url: Absolute URL.
            headers: Extra request headers.
            params: Query parameters.
            json: JSON-serializable request body.

        Returns:
            TransportResponse with status and body text.

        Raises:
            RemoteTransportError: On network failure or non-2xx status.
        """
        try:
            response = self._client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
            )
        except httpx.TooManyRedirects as e:
            msg = f"HTTP {method} request exceeded redirect limit: {e}"
            raise RemoteTransportError(msg) from e
        except httpx.HTTPError as e:
            msg = f"HTTP {method} request failed: {e}"
            raise RemoteTransportError(msg) from e

        logger.debug("%s %s -> %d", method, response.request.url.path, response.status_code)

        if not response.is_success:
            msg = f"HTTP request failed with status: {response.status_code}"
            raise RemoteTransportError(
                msg,
                status_code=response.status_code,
                body=response.text,
            )

        return TransportResponse(status_code=response.status_code, text=response.text)

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> TransportResponse:
        return self.request("GET", url, headers=headers, params=params)

    def post(
        self, url: str, body: Any = None, headers: dict[str, str] | None = None
    ) -> TransportResponse:
        return self.request("POST", url, headers=headers, json=body)

    def put(
        self, url: str, body: Any = None, headers: dict[str, str] | None = None
    ) -> TransportResponse:
        return self.request("PUT", url, headers=headers, json=body)

    def delete(
        self, url: str, body: Any = None, headers: dict[str, str] | None = None
    ) -> TransportResponse:
        return self.request("DELETE", url, headers=headers, json=body)
