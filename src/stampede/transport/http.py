"""HTTP transport for virtual users.

Wraps an ``httpx.AsyncClient`` behind a single ``issue_request()`` call that
never raises for network problems: connection errors and timeouts come back
as a Response with ``status=0`` and an ``error`` reason, so checks see a
failing response instead of the run aborting.

Example:
    async with HttpTransport(max_connections=500) as transport:
        response = await transport.issue_request("GET", "http://svc/health", timeout=5.0)
        response.status, response.latency_ms
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Protocol

import httpx
import orjson

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class Response:
    """Result of one request as seen by checks."""

    status: int
    latency_ms: float
    body: bytes = b""
    error: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        """Decode the body as JSON. Raises ``orjson.JSONDecodeError`` if invalid."""
        return orjson.loads(self.body)

    def json_path(self, path: str, default: Any = _MISSING) -> Any:
        """Look up a dotted path (``"data.users.0.id"``) in the JSON body.

        Raises:
            KeyError: If the path is absent and no default was given
        """
        try:
            node: Any = self.json()
        except orjson.JSONDecodeError:
            if default is _MISSING:
                raise KeyError(path) from None
            return default

        for part in path.split(".") if path else []:
            if isinstance(node, dict) and part in node:
                node = node[part]
            elif isinstance(node, list) and part.lstrip("-").isdigit():
                index = int(part)
                if not -len(node) <= index < len(node):
                    if default is _MISSING:
                        raise KeyError(path)
                    return default
                node = node[index]
            else:
                if default is _MISSING:
                    raise KeyError(path)
                return default
        return node


class Transport(Protocol):
    """Anything that can issue a request and report status and latency."""

    async def issue_request(
        self,
        method: str,
        url: str,
        timeout: float,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response: ...


class HttpTransport:
    """httpx-backed transport with a shared connection pool.

    Args:
        max_connections: Upper bound on concurrent connections
        max_keepalive_connections: Idle connections kept for reuse
        follow_redirects: Follow 3xx responses
        verify: Verify TLS certificates
        client: Pre-built client (tests pass one with ``httpx.MockTransport``)
    """

    def __init__(
        self,
        max_connections: int = 1000,
        max_keepalive_connections: int = 200,
        follow_redirects: bool = True,
        verify: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            follow_redirects=follow_redirects,
            verify=verify,
        )

    async def issue_request(
        self,
        method: str,
        url: str,
        timeout: float,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Issue one request; failures are returned, not raised."""
        started = time.perf_counter()
        try:
            # httpx timeouts are per phase; wait_for bounds the whole exchange
            status, content, response_headers = await asyncio.wait_for(
                self._send(method, url, timeout, headers, body), timeout=timeout
            )
        except (httpx.TimeoutException, TimeoutError) as e:
            return self._failure(started, "timeout", e)
        except httpx.TransportError as e:
            return self._failure(started, f"connection_error: {type(e).__name__}", e)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return self._failure(started, f"http_error: {type(e).__name__}", e)
        except UnicodeEncodeError as e:
            # raised by httpx while building headers that are not ASCII
            return self._failure(started, f"invalid_request: {type(e).__name__}", e)

        return Response(
            status=status,
            latency_ms=(time.perf_counter() - started) * 1000.0,
            body=content,
            headers=response_headers,
        )

    async def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        headers: dict[str, str] | None,
        body: bytes | None,
    ) -> tuple[int, bytes, dict[str, str]]:
        response = await self._client.request(
            method,
            url,
            headers=headers,
            content=body,
            timeout=httpx.Timeout(timeout),
        )
        return response.status_code, response.content, dict(response.headers)

    @staticmethod
    def _failure(started: float, reason: str, exc: Exception) -> Response:
        logger.debug(f"Request failed: {reason} ({exc})")
        return Response(
            status=0,
            latency_ms=(time.perf_counter() - started) * 1000.0,
            error=reason,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
