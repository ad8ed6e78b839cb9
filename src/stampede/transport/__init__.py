"""Request transports used by virtual users."""

from stampede.transport.http import HttpTransport, Response, Transport

__all__ = ["HttpTransport", "Response", "Transport"]
