"""
Error types for the telemux facade.

Start-time failures (an unknown driver, a driver that cannot initialize, an
unreachable trace authority) are raised to the caller. Failures that happen
after every backend started are best-effort: the multiplexer logs them, and
only identifier propagation collects them through an ErrorAggregator.
"""

from typing import Iterator, List, Optional

# Prefix used for every driver-scoped error message
TELEMETRY_DRIVER_ERROR = "Telemetry error in driver: "


class TelemetryError(Exception):
    """Base class for all telemux errors."""
    pass


class DriverNotRegisteredError(TelemetryError):
    """Raised when a driver name is not present in the registry."""

    def __init__(self, driver_name: str):
        self.driver_name = driver_name
        super().__init__(f"provided telemetry driver is not registered. Driver name: {driver_name}")


class DriverStartError(TelemetryError):
    """Raised when a driver fails to initialize a transaction."""

    def __init__(self, driver_name: str, cause: Exception):
        self.driver_name = driver_name
        self.cause = cause
        super().__init__(f"{TELEMETRY_DRIVER_ERROR}{driver_name} - {cause}")


class TraceDriverNotRegisteredError(TelemetryError):
    """Raised when the trace authority has no started transaction."""

    def __init__(self, driver_name: str):
        self.driver_name = driver_name
        super().__init__(
            f"provided telemetry trace driver is not registered. Trace driver name: {driver_name}"
        )


class TraceAuthorityError(TelemetryError):
    """Raised when the trace authority fails to mint or report an identifier."""

    def __init__(self, driver_name: str, operation: str, cause: Exception):
        self.driver_name = driver_name
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"{TELEMETRY_DRIVER_ERROR}{driver_name} - function: {operation} - error: {cause}"
        )


class DriverOperationError(TelemetryError):
    """A single driver failed a single broadcast operation."""

    def __init__(self, driver_name: str, operation: str, cause: Exception):
        self.driver_name = driver_name
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"{TELEMETRY_DRIVER_ERROR}{driver_name} - function: {operation} - error: {cause}"
        )


class UnknownSegmentError(TelemetryError):
    """Raised by drivers when a segment id has no in-flight segment."""

    def __init__(self, segment_id: str):
        self.segment_id = segment_id
        super().__init__(f"unknown segment: {segment_id}")


class TelemetryErrorGroup(TelemetryError):
    """
    Several driver errors joined into one.

    The group keeps every error in the order it was added. Iterating over the
    group, or reading ``errors``, enumerates them.
    """

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))

    def __iter__(self) -> Iterator[Exception]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


class ErrorAggregator:
    """Ordered accumulator for errors raised during one broadcast."""

    def __init__(self):
        self._errors: List[Exception] = []

    def add(self, err: Exception) -> None:
        self._errors.append(err)

    def error(self) -> Optional[TelemetryErrorGroup]:
        """
        Resolve the collected errors.

        Returns:
            None when nothing was collected, otherwise one TelemetryErrorGroup
            holding every collected error.
        """
        if not self._errors:
            return None
        return TelemetryErrorGroup(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)
