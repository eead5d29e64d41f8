"""
telemux: a multi-backend telemetry facade.

An application emits logs, traces and segment timings once; telemux fans
every call out to all active backends (drivers) and keeps the process id and
trace id identical across them.

The package is organized as:
- transaction: Driver and Transaction interfaces
- registry: driver registry and active configuration
- multiplexer: transaction multiplexer and start_transaction()
- errors: error types and the error aggregator
- drivers: built-in no-op, structured log and OpenTelemetry drivers
- core: configuration and the Telemetry facade
"""

__version__ = "0.1.0"

# Interfaces
from telemux.transaction import Driver, Transaction

# Errors
from telemux.errors import (
    DriverNotRegisteredError,
    DriverOperationError,
    DriverStartError,
    ErrorAggregator,
    TelemetryError,
    TelemetryErrorGroup,
    TraceAuthorityError,
    TraceDriverNotRegisteredError,
    UnknownSegmentError,
)

# Registry and multiplexer
from telemux.registry import DriverRegistry
from telemux.multiplexer import TransactionMultiplexer, start_transaction

# Facade
from telemux.core import Telemetry, TelemetryConfig
