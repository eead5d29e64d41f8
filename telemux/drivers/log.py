"""
Structured log telemetry driver.

This driver writes every transaction lifecycle event as a CloudEvents 1.0
structured JSON envelope through a standard library logger, so any log
pipeline that understands CloudEvents can correlate the records by trace and
process id.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cloudevents.conversion import to_structured
from cloudevents.http import CloudEvent

from telemux.errors import TelemetryError, UnknownSegmentError
from telemux.transaction import Driver, Transaction

logger = logging.getLogger("telemux.drivers.log")

DEFAULT_SOURCE = "urn:telemux:log"
DEFAULT_EVENT_LOGGER = "telemux.events"

_PRIMITIVES = (str, int, float, bool, type(None))


def _jsonable(value: Any) -> Any:
    """Convert a value into something json.dumps accepts."""
    if isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return str(value)


@dataclass
class LogSegment:
    """An in-flight segment."""
    name: str
    started_at: float = field(default_factory=time.monotonic)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def duration_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000.0


class LogTransaction(Transaction):
    """Transaction that emits CloudEvents-formatted log records."""

    def __init__(self, name: str, event_logger: logging.Logger, source: str = DEFAULT_SOURCE):
        """
        Initialize the transaction.

        Args:
            name: Transaction name
            event_logger: Logger the event records are written to
            source: CloudEvents source attribute
        """
        self.name = name
        self.event_logger = event_logger
        self.source = source

        self.attributes: Dict[str, Any] = {}
        self.segments: Dict[str, LogSegment] = {}
        self.started_at: Optional[float] = None

        self._process_id: Optional[str] = None
        self._trace: Optional[str] = None

    def _emit(self, event_type: str, level: int, data: Dict[str, Any]) -> None:
        payload = {
            "transaction": self.name,
            "trace": self._trace,
            "process_id": self._process_id,
        }
        payload.update(data)

        event = CloudEvent(
            {
                "type": f"telemux.{event_type}",
                "source": self.source,
                "subject": self.name,
            },
            _jsonable(payload),
        )
        # Keep data as a nested JSON object instead of a JSON-encoded string
        _, body = to_structured(event, data_marshaller=lambda data: data)
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        self.event_logger.log(level, body)

    def _segment(self, segment_id: str) -> LogSegment:
        try:
            return self.segments[segment_id]
        except KeyError:
            raise UnknownSegmentError(segment_id) from None

    def start(self, name: str) -> None:
        self.started_at = time.monotonic()
        self._emit("transaction.start", logging.INFO, {"name": name})

    def add_transaction_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def segment_start(self, segment_id: str, name: str) -> None:
        self.segments[segment_id] = LogSegment(name=name)
        self._emit("segment.start", logging.DEBUG, {"segment_id": segment_id, "name": name})

    def add_segment_attribute(self, segment_id: str, key: str, value: Any) -> None:
        self._segment(segment_id).attributes[key] = value

    def segment_end(self, segment_id: str) -> None:
        segment = self._segment(segment_id)
        del self.segments[segment_id]
        self._emit(
            "segment.end",
            logging.INFO,
            {
                "segment_id": segment_id,
                "name": segment.name,
                "duration_ms": round(segment.duration_ms(), 3),
                "attributes": segment.attributes,
            },
        )

    def _log(self, event_type: str, level: int, segment_id: str, message: str) -> None:
        data: Dict[str, Any] = {"message": message}
        if segment_id:
            data["segment_id"] = segment_id
            data["segment"] = self._segment(segment_id).name
        self._emit(event_type, level, data)

    def info(self, segment_id: str, message: str) -> None:
        self._log("log.info", logging.INFO, segment_id, message)

    def error(self, segment_id: str, message: str) -> None:
        self._log("log.error", logging.ERROR, segment_id, message)

    def done(self) -> None:
        if self.started_at is None:
            raise TelemetryError(f"transaction {self.name} was never started")

        self._emit(
            "transaction.done",
            logging.INFO,
            {
                "duration_ms": round((time.monotonic() - self.started_at) * 1000.0, 3),
                "attributes": self.attributes,
                "open_segments": sorted(self.segments),
            },
        )

    def erase(self) -> None:
        self.attributes.clear()
        self.segments.clear()

    def create_process_id(self) -> str:
        return uuid.uuid4().hex

    def set_process_id(self, process_id: str) -> None:
        if not process_id:
            raise ValueError("process id must not be empty")
        self._process_id = process_id

    def process_id(self) -> str:
        if self._process_id is None:
            raise TelemetryError(f"transaction {self.name} has no process id")
        return self._process_id

    def create_trace(self) -> str:
        return uuid.uuid4().hex

    def set_trace(self, trace: str) -> None:
        if not trace:
            raise ValueError("trace must not be empty")
        self._trace = trace

    def trace(self) -> str:
        if self._trace is None:
            raise TelemetryError(f"transaction {self.name} has no trace")
        return self._trace


class LogDriver(Driver):
    """Driver writing CloudEvents structured log records."""

    def __init__(self, event_logger: Optional[logging.Logger] = None, source: str = DEFAULT_SOURCE):
        """
        Initialize the driver.

        Args:
            event_logger: Logger for event records (defaults to "telemux.events")
            source: CloudEvents source attribute
        """
        self.event_logger = event_logger or logging.getLogger(DEFAULT_EVENT_LOGGER)
        self.source = source

    def initialize_transaction(self, name: str) -> LogTransaction:
        logger.debug(f"Initializing log transaction {name}")
        return LogTransaction(name, self.event_logger, self.source)
