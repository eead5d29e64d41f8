"""
Transaction multiplexer for telemux.

A TransactionMultiplexer holds one backend transaction per active driver and
re-broadcasts every operation to all of them. It owns the process id and
trace id minted by the trace authority and makes sure every backend receives
them before the transaction starts.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Union

from telemux.errors import (
    DriverNotRegisteredError,
    DriverOperationError,
    DriverStartError,
    ErrorAggregator,
    TelemetryErrorGroup,
    TraceAuthorityError,
    TraceDriverNotRegisteredError,
)
from telemux.registry import DriverRegistry
from telemux.transaction import Transaction

logger = logging.getLogger("telemux.multiplexer")


def _new_segment_id() -> str:
    return str(uuid.uuid4())


def _erase(driver_name: str, transaction: Transaction) -> None:
    try:
        transaction.erase()
    except Exception as e:
        logger.error(str(DriverOperationError(driver_name, "erase", e)))


class TransactionMultiplexer:
    """
    Fan one logical transaction out to every active telemetry backend.

    Only start_transaction() (or inert()) should create a multiplexer. After
    done() it is finished: further calls are ignored with a warning.
    """

    def __init__(
        self,
        name: str,
        transactions: Dict[str, Transaction],
        trace_driver: Optional[str] = None,
        segment_id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize the multiplexer.

        Args:
            name: Transaction name
            transactions: Started backend transactions keyed by driver name
            trace_driver: Name of the trace authority driver
            segment_id_factory: Callable producing segment ids (UUID4 by default)
        """
        self.name = name
        self.trace_driver = trace_driver
        self.process_id: Optional[str] = None
        self.trace_id: Optional[str] = None

        # Non-fatal identifier propagation failures collected during start
        self.propagation_error: Optional[TelemetryErrorGroup] = None

        self._transactions = dict(transactions)
        self._segment_id_factory = segment_id_factory or _new_segment_id
        self._segment_ids: Set[str] = set()
        self._lock = threading.Lock()
        self._finished = False

    @classmethod
    def inert(cls, name: str) -> "TransactionMultiplexer":
        """Create a multiplexer without backends, e.g. as a fallback after start failed."""
        return cls(name, {})

    @property
    def driver_names(self) -> List[str]:
        return list(self._transactions)

    @property
    def finished(self) -> bool:
        return self._finished

    def transaction(self, driver_name: str) -> Transaction:
        """Return the backend transaction of one driver."""
        return self._transactions[driver_name]

    def _active(self, operation: str) -> bool:
        if self._finished:
            logger.warning(f"Ignoring {operation} on finished transaction {self.name}")
            return False
        return True

    def _broadcast(
        self,
        operation: str,
        call: Callable[[Transaction], Any],
        aggregator: Optional[ErrorAggregator] = None,
    ) -> None:
        # Without an aggregator every failure is logged and dropped
        for driver_name, transaction in list(self._transactions.items()):
            try:
                call(transaction)
            except Exception as e:
                err = DriverOperationError(driver_name, operation, e)
                if aggregator is None:
                    logger.error(str(err))
                else:
                    aggregator.add(err)

    def set_process_id(self, process_id: str) -> None:
        """
        Propagate a process id to every backend.

        Every backend is tried even if some fail.

        Raises:
            TelemetryErrorGroup: One DriverOperationError per failed backend
        """
        if not self._active("set_process_id"):
            return
        self.process_id = process_id
        aggregator = ErrorAggregator()
        self._broadcast("set_process_id", lambda t: t.set_process_id(process_id), aggregator)
        err = aggregator.error()
        if err is not None:
            raise err

    def set_trace(self, trace: str) -> None:
        """
        Propagate a trace id to every backend.

        Raises:
            TelemetryErrorGroup: One DriverOperationError per failed backend
        """
        if not self._active("set_trace"):
            return
        self.trace_id = trace
        aggregator = ErrorAggregator()
        self._broadcast("set_trace", lambda t: t.set_trace(trace), aggregator)
        err = aggregator.error()
        if err is not None:
            raise err

    def _authority(self) -> Transaction:
        authority = self._transactions.get(self.trace_driver)
        if authority is None:
            raise TraceDriverNotRegisteredError(self.trace_driver)
        return authority

    def trace(self) -> str:
        """
        Ask the trace authority for the trace id.

        Raises:
            TraceDriverNotRegisteredError: If the authority has no backend transaction
            TraceAuthorityError: If the authority fails to report its trace
        """
        authority = self._authority()
        try:
            return authority.trace()
        except Exception as e:
            raise TraceAuthorityError(self.trace_driver, "trace", e) from e

    def process(self) -> str:
        """Ask the trace authority for the process id."""
        authority = self._authority()
        try:
            return authority.process_id()
        except Exception as e:
            raise TraceAuthorityError(self.trace_driver, "process_id", e) from e

    def add_transaction_attribute(self, key: str, value: Any) -> None:
        if not self._active("add_transaction_attribute"):
            return
        self._broadcast("add_transaction_attribute", lambda t: t.add_transaction_attribute(key, value))

    def segment_start(self, name: str) -> str:
        """
        Start a segment in every backend.

        Args:
            name: Segment name

        Returns:
            segment_id: Fresh id to pass to the other segment operations
        """
        with self._lock:
            segment_id = self._segment_id_factory()
            if segment_id in self._segment_ids:
                logger.warning(f"Segment id {segment_id} was already issued, generating a new one")
                segment_id = _new_segment_id()
            self._segment_ids.add(segment_id)

        if self._active("segment_start"):
            self._broadcast("segment_start", lambda t: t.segment_start(segment_id, name))
        return segment_id

    def add_segment_attribute(self, segment_id: str, key: str, value: Any) -> None:
        if not self._active("add_segment_attribute"):
            return
        self._broadcast(
            "add_segment_attribute",
            lambda t: t.add_segment_attribute(segment_id, key, value),
        )

    def segment_end(self, segment_id: str) -> None:
        if not self._active("segment_end"):
            return
        self._broadcast("segment_end", lambda t: t.segment_end(segment_id))

    @contextmanager
    def segment(self, name: str) -> Iterator[str]:
        """
        Run a block inside a segment.

        An exception escaping the block is recorded on the segment through
        error() and re-raised.

        Example:
            with multiplexer.segment("charge-card") as segment_id:
                multiplexer.add_segment_attribute(segment_id, "amount", 42)
        """
        segment_id = self.segment_start(name)
        try:
            yield segment_id
        except Exception as e:
            self.error(segment_id, e)
            raise
        finally:
            self.segment_end(segment_id)

    def info(self, segment_id: str, message: str) -> None:
        """
        Log a message in every backend.

        Args:
            segment_id: Segment to log on, or "" for the transaction itself
            message: Message text
        """
        if not self._active("info"):
            return
        self._broadcast("info", lambda t: t.info(segment_id, message))

    def error(self, segment_id: str, err: Union[Exception, str]) -> None:
        """
        Log an error in every backend.

        Args:
            segment_id: Segment to log on, or "" for the transaction itself
            err: Exception or error text
        """
        if not self._active("error"):
            return
        message = str(err)
        self._broadcast("error", lambda t: t.error(segment_id, message))

    def done(self) -> None:
        """Complete every backend transaction and release it, even if completion failed."""
        if self._finished:
            logger.warning(f"Transaction {self.name} is already done")
            return
        self._finished = True

        for driver_name, transaction in list(self._transactions.items()):
            try:
                transaction.done()
            except Exception as e:
                logger.error(str(DriverOperationError(driver_name, "done", e)))
            _erase(driver_name, transaction)

    def __enter__(self) -> "TransactionMultiplexer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if isinstance(exc, Exception):
            self.error("", exc)
        self.done()
        return False

    def __repr__(self) -> str:
        return (
            f"TransactionMultiplexer(name={self.name!r}, drivers={self.driver_names!r}, "
            f"trace_id={self.trace_id!r})"
        )


def start_transaction(
    registry: DriverRegistry,
    name: str,
    segment_id_factory: Optional[Callable[[], str]] = None,
) -> TransactionMultiplexer:
    """
    Start a logical transaction on every active driver.

    Each active driver initializes a backend transaction; the trace authority
    then mints a process id and a trace id which are propagated to every
    backend before the transaction is started everywhere.

    Args:
        registry: Registry holding the drivers and the active configuration
        name: Transaction name
        segment_id_factory: Callable producing segment ids (UUID4 by default)

    Returns:
        multiplexer: The started multiplexer. Identifier propagation failures
            do not abort start; they are available as ``propagation_error``.

    Raises:
        DriverNotRegisteredError: An active driver is not registered
        DriverStartError: An active driver failed to initialize its transaction
        TraceDriverNotRegisteredError: The trace authority is not among the started drivers
        TraceAuthorityError: The trace authority failed to mint an identifier
    """
    transactions: Dict[str, Transaction] = {}

    def release_all():
        for driver_name, transaction in transactions.items():
            _erase(driver_name, transaction)

    for driver_name in registry.active_drivers:
        if driver_name in transactions:
            logger.warning(f"Telemetry driver {driver_name} is configured twice, ignoring duplicate")
            continue

        try:
            driver = registry.lookup(driver_name)
        except DriverNotRegisteredError:
            release_all()
            raise

        try:
            transactions[driver_name] = driver.initialize_transaction(name)
        except Exception as e:
            release_all()
            raise DriverStartError(driver_name, e) from e

    multiplexer = TransactionMultiplexer(name, transactions, registry.trace_driver, segment_id_factory)
    if not transactions:
        logger.debug(f"No active telemetry drivers, transaction {name} is inert")
        return multiplexer

    trace_driver = registry.trace_driver
    authority = transactions.get(trace_driver)
    if authority is None:
        release_all()
        raise TraceDriverNotRegisteredError(trace_driver)

    aggregator = ErrorAggregator()

    try:
        process_id = authority.create_process_id()
    except Exception as e:
        release_all()
        raise TraceAuthorityError(trace_driver, "create_process_id", e) from e

    try:
        multiplexer.set_process_id(process_id)
    except TelemetryErrorGroup as group:
        for err in group:
            aggregator.add(err)

    try:
        trace = authority.create_trace()
    except Exception as e:
        release_all()
        raise TraceAuthorityError(trace_driver, "create_trace", e) from e

    try:
        multiplexer.set_trace(trace)
    except TelemetryErrorGroup as group:
        for err in group:
            aggregator.add(err)

    multiplexer._broadcast("start", lambda t: t.start(name))

    multiplexer.propagation_error = aggregator.error()
    if multiplexer.propagation_error is not None:
        logger.warning(
            f"Transaction {name} started with {len(multiplexer.propagation_error)} "
            f"identifier propagation error(s):\n{multiplexer.propagation_error}"
        )
    else:
        logger.debug(f"Started transaction {name} with trace {trace} on {multiplexer.driver_names}")

    return multiplexer
