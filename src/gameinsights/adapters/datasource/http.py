"""Shared HTTP session for API-backed adapters.

Wraps one ``httpx.AsyncClient`` per adapter connection, runs every request
through the connection's ``CancellationToken`` and maps transport failures
and HTTP statuses onto the adapter error hierarchy.
"""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from gameinsights.adapters.datasource.cancellation import CancellationToken
from gameinsights.adapters.datasource.errors import (
    AccessDeniedError,
    AuthenticationFailedError,
    ConnectionFailedError,
    QueryError,
    QueryTimeoutError,
    RateLimitedError,
)

DEFAULT_TIMEOUT_SECONDS = 30.0


def bearer_auth(token: str) -> dict[str, str]:
    """``Authorization: Bearer`` header."""
    return {"Authorization": f"Bearer {token}"}


def basic_auth(credentials: str) -> dict[str, str]:
    """``Authorization: Basic`` header for a ``user:password`` string."""
    encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}


def _retry_after(response: httpx.Response) -> int:
    raw = response.headers.get("Retry-After", "")
    try:
        return max(0, int(raw))
    except ValueError:
        return 60


def _error_text(response: httpx.Response) -> str:
    text = response.text.strip()
    return text[:200] if text else response.reason_phrase


def raise_for_status(response: httpx.Response, source: str) -> None:
    """Map a non-2xx response onto a typed adapter error.

    Args:
        response: The received response.
        source: Human-readable source label used in messages.

    Raises:
        AuthenticationFailedError: On 401.
        AccessDeniedError: On 403.
        RateLimitedError: On 429.
        QueryError: On any other non-2xx status.
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 401:
        raise AuthenticationFailedError(
            message=f"{source} rejected the credentials",
            details={"status_code": status},
        )
    if status == 403:
        raise AccessDeniedError(message=f"{source} denied access", resource=str(response.url))
    if status == 429:
        raise RateLimitedError(
            message=f"{source} rate limit exceeded",
            retry_after_seconds=_retry_after(response),
        )
    raise QueryError(
        message=f"{source} returned HTTP {status}: {_error_text(response)}",
        status_code=status,
    )


class HTTPSession:
    """One connection's HTTP client.

    Attributes:
        source: Label used in error messages and logs.
        token: Cancellation token every request is run through.
    """

    def __init__(
        self,
        source: str,
        token: CancellationToken,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the underlying client.

        Args:
            source: Label used in error messages.
            token: The connection's cancellation token.
            base_url: Prefix for relative request URLs.
            headers: Headers sent with every request.
            timeout: Per-request timeout in seconds.
            transport: Optional transport, e.g. ``httpx.MockTransport``.
        """
        self.source = source
        self.token = token
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    @property
    def closed(self) -> bool:
        """Whether the client has been closed."""
        return self._client.is_closed

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json: Any = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        check_status: bool = True,
        cancellable: bool = True,
    ) -> httpx.Response:
        """Send a request through the cancellation token.

        Requests with ``cancellable=False`` bypass the token. Only the
        best-effort teardown call made after cancellation uses this.

        Raises:
            QueryCancelledError: If the connection was cancelled.
            QueryTimeoutError: If the request timed out.
            ConnectionFailedError: On transport failures.
            AdapterError: Mapped from the HTTP status when ``check_status``.
        """
        call = self._client.request(
            method, url, params=params, json=json, data=data, headers=headers
        )
        try:
            response = await (self.token.run(call) if cancellable else call)
        except httpx.TimeoutException as e:
            raise QueryTimeoutError(
                message=f"Request to {self.source} timed out",
                timeout_seconds=self.timeout,
            ) from e
        except httpx.TransportError as e:
            raise ConnectionFailedError(
                message=f"Could not reach {self.source}: {e}",
                details={"error": type(e).__name__},
            ) from e

        if check_status:
            raise_for_status(response, self.source)
        return response

    async def get_json(
        self,
        url: str,
        *,
        params: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body."""
        response = await self.request("GET", url, params=params, headers=headers)
        return self._decode(response)

    async def post_json(
        self,
        url: str,
        body: Any,
        *,
        headers: dict[str, str] | None = None,
        check_status: bool = True,
        cancellable: bool = True,
    ) -> Any:
        """POST a JSON body and decode the JSON response."""
        response = await self.request(
            "POST",
            url,
            json=body,
            headers=headers,
            check_status=check_status,
            cancellable=cancellable,
        )
        return self._decode(response)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a long-lived streaming request whose body the caller reads.

        Reads never time out. Transport failures while reading are mapped
        like those of ``request``.

        Raises:
            QueryCancelledError: If the connection was cancelled.
            ConnectionFailedError: On transport failures.
            AdapterError: Mapped from a non-2xx status.
        """
        self.token.raise_if_cancelled()
        timeout = httpx.Timeout(self.timeout, read=None)
        try:
            async with self._client.stream(
                method, url, headers=headers, timeout=timeout
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise_for_status(response, self.source)
                yield response
        except httpx.TimeoutException as e:
            raise QueryTimeoutError(
                message=f"Stream from {self.source} timed out",
                timeout_seconds=self.timeout,
            ) from e
        except httpx.TransportError as e:
            raise ConnectionFailedError(
                message=f"Lost stream from {self.source}: {e}",
                details={"error": type(e).__name__},
            ) from e

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise QueryError(
                message=f"{self.source} returned a non-JSON response",
                status_code=response.status_code,
            ) from e

    async def aclose(self) -> None:
        """Close the underlying client."""
        await self._client.aclose()
