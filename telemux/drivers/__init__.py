"""
Built-in telemetry drivers for telemux.

This package provides drivers for:
- noop (discard everything, useful in tests and local development)
- log (CloudEvents structured records through the logging module)
- otel (OpenTelemetry spans exported over OTLP)
"""

from telemux.drivers.log import LogDriver, LogTransaction
from telemux.drivers.noop import NoopDriver, NoopTransaction
from telemux.drivers.otel import OpenTelemetryDriver, OpenTelemetryTransaction

BUILTIN_DRIVERS = ("noop", "log", "otel")

__all__ = [
    "BUILTIN_DRIVERS",
    "LogDriver",
    "LogTransaction",
    "NoopDriver",
    "NoopTransaction",
    "OpenTelemetryDriver",
    "OpenTelemetryTransaction",
]
