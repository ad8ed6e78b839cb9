"""Observability for Stampede runs: structured logging with run correlation."""

from stampede.observability.logging import LogContext, configure_logging

__all__ = ["LogContext", "configure_logging"]
