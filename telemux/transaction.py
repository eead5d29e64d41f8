"""
Driver and Transaction interfaces for telemux.

This module defines the abstract capabilities every telemetry backend
(no-op, structured log, OpenTelemetry, ...) must implement. The multiplexer
only ever talks to backends through these interfaces.
"""

import abc
import logging
from typing import Any

logger = logging.getLogger("telemux.transaction")


class Logger(abc.ABC):
    """Log messages on a transaction or one of its segments."""

    @abc.abstractmethod
    def info(self, segment_id: str, message: str) -> None:
        """
        Record an informational message.

        Args:
            segment_id: Segment to scope the message to, or "" for the transaction
            message: Message text
        """
        pass

    @abc.abstractmethod
    def error(self, segment_id: str, message: str) -> None:
        """
        Record an error message.

        Args:
            segment_id: Segment to scope the message to, or "" for the transaction
            message: Error text
        """
        pass


class Tracer(abc.ABC):
    """Mint, accept and report the trace id shared by all backends."""

    @abc.abstractmethod
    def create_trace(self) -> str:
        """Mint a new trace id in this backend's format."""
        pass

    @abc.abstractmethod
    def set_trace(self, trace: str) -> None:
        """Adopt a trace id minted by the trace authority."""
        pass

    @abc.abstractmethod
    def trace(self) -> str:
        """Return the trace id this transaction belongs to."""
        pass


class Processor(abc.ABC):
    """Mint, accept and report the process id shared by all backends."""

    @abc.abstractmethod
    def create_process_id(self) -> str:
        pass

    @abc.abstractmethod
    def set_process_id(self, process_id: str) -> None:
        pass

    @abc.abstractmethod
    def process_id(self) -> str:
        pass


class Allocator(abc.ABC):
    """Release backend resources."""

    @abc.abstractmethod
    def erase(self) -> None:
        """Release every resource held by the transaction. Must not raise."""
        pass


class Transaction(Logger, Tracer, Processor, Allocator):
    """
    One backend's view of a single logical operation.

    A Transaction is created by its Driver, receives the shared process and
    trace ids, is started, records attributes, segments and log lines, and is
    finally completed with done() and released with erase().

    Failures are signalled by raising; the multiplexer decides whether a
    failure is fatal or only logged.
    """

    @abc.abstractmethod
    def start(self, name: str) -> None:
        """
        Begin recording the transaction.

        Args:
            name: Transaction name
        """
        pass

    @abc.abstractmethod
    def add_transaction_attribute(self, key: str, value: Any) -> None:
        pass

    @abc.abstractmethod
    def segment_start(self, segment_id: str, name: str) -> None:
        """
        Open a segment.

        Args:
            segment_id: Correlation id generated by the multiplexer
            name: Segment name
        """
        pass

    @abc.abstractmethod
    def add_segment_attribute(self, segment_id: str, key: str, value: Any) -> None:
        pass

    @abc.abstractmethod
    def segment_end(self, segment_id: str) -> None:
        pass

    @abc.abstractmethod
    def done(self) -> None:
        """Complete the transaction."""
        pass


class Driver(abc.ABC):
    """
    Abstract base class for all telemetry backends.

    A Driver is a factory for Transactions. It is registered once under a
    name in a DriverRegistry and consulted every time a transaction starts.
    """

    @abc.abstractmethod
    def initialize_transaction(self, name: str) -> Transaction:
        """
        Create a backend transaction.

        Args:
            name: Name of the logical transaction

        Returns:
            transaction: The backend transaction
        """
        pass

    def shutdown(self) -> None:
        """Flush and release driver-wide resources. Optional."""
        logger.debug(f"Driver {type(self).__name__} has nothing to shut down")
