"""Global pytest configuration and fixtures.

Provides an in-process transport fake so engine tests never touch the network.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from stampede.core.clock import ManualClock
from stampede.transport.http import Response


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: full-length end-to-end scenarios")


class FakeTransport:
    """Transport returning canned responses.

    Args:
        responder: Maps ``(method, url)`` to a Response; defaults to 200 with ``{}``
        delay: Seconds each request takes (0 still yields to the loop)
    """

    def __init__(
        self,
        responder: Callable[[str, str], Response] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responder = responder or (lambda method, url: Response(200, 1.0, b"{}"))
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def issue_request(
        self,
        method: str,
        url: str,
        timeout: float,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        self.calls.append((method, url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return self.responder(method, url)
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_transport() -> FakeTransport:
    """A transport that answers every request with 200 OK."""
    return FakeTransport()


@pytest.fixture
def manual_clock() -> ManualClock:
    """A started clock that only moves when told to."""
    clock = ManualClock()
    clock.start()
    return clock
