"""
OpenTelemetry telemetry driver.

This driver maps a telemux transaction onto OpenTelemetry spans: the
transaction is a root span, each segment a child span, and log lines are span
events. The trace id propagated by the trace authority becomes the remote
parent of the root span, so every span joins the shared trace.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.id_generator import RandomIdGenerator
from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    Span,
    SpanKind,
    Status,
    StatusCode,
    TraceFlags,
    Tracer,
    format_trace_id,
)

from telemux.errors import TelemetryError, UnknownSegmentError
from telemux.transaction import Driver, Transaction

logger = logging.getLogger("telemux.drivers.otel")

PROCESS_ID_ATTRIBUTE = "telemux.process_id"
SEGMENT_ID_ATTRIBUTE = "telemux.segment_id"

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

_id_generator = RandomIdGenerator()


def _attribute_value(value: Any) -> Any:
    """OpenTelemetry only accepts primitives and homogeneous sequences of them."""
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, (str, bool, int, float)) for v in value):
        return list(value)
    return str(value)


def parse_trace_id(value: str) -> int:
    """
    Parse a 32 character hex trace id.

    Raises:
        ValueError: If value is not a valid, non-zero OpenTelemetry trace id
    """
    if len(value) != 32 or any(c not in _HEX_DIGITS for c in value):
        raise ValueError(f"invalid OpenTelemetry trace id: {value!r}")
    trace_id = int(value, 16)
    if trace_id == 0:
        raise ValueError(f"invalid OpenTelemetry trace id: {value!r}")
    return trace_id


class OpenTelemetryTransaction(Transaction):
    """Transaction recorded as OpenTelemetry spans."""

    def __init__(self, name: str, tracer: Tracer):
        self.name = name
        self.tracer = tracer

        self.root: Optional[Span] = None
        self.segments: Dict[str, Span] = {}

        self._trace_id: Optional[int] = None
        self._process_id: Optional[str] = None
        self._pending_attributes: Dict[str, Any] = {}

    def _parent_context(self):
        if self.root is not None:
            return trace.set_span_in_context(self.root)

        if self._trace_id is not None:
            remote = SpanContext(
                trace_id=self._trace_id,
                span_id=_id_generator.generate_span_id(),
                is_remote=True,
                trace_flags=TraceFlags(TraceFlags.SAMPLED),
            )
            return trace.set_span_in_context(NonRecordingSpan(remote))

        return None

    def _span(self, segment_id: str) -> Span:
        if segment_id:
            try:
                return self.segments[segment_id]
            except KeyError:
                raise UnknownSegmentError(segment_id) from None

        if self.root is None:
            raise TelemetryError(f"transaction {self.name} was never started")
        return self.root

    def start(self, name: str) -> None:
        attributes = {k: _attribute_value(v) for k, v in self._pending_attributes.items()}
        if self._process_id is not None:
            attributes[PROCESS_ID_ATTRIBUTE] = self._process_id

        self.root = self.tracer.start_span(
            name,
            context=self._parent_context(),
            kind=SpanKind.INTERNAL,
            attributes=attributes,
        )
        self._pending_attributes.clear()

    def add_transaction_attribute(self, key: str, value: Any) -> None:
        if self.root is None:
            self._pending_attributes[key] = value
            return
        self.root.set_attribute(key, _attribute_value(value))

    def segment_start(self, segment_id: str, name: str) -> None:
        self.segments[segment_id] = self.tracer.start_span(
            name,
            context=self._parent_context(),
            kind=SpanKind.INTERNAL,
            attributes={SEGMENT_ID_ATTRIBUTE: segment_id},
        )

    def add_segment_attribute(self, segment_id: str, key: str, value: Any) -> None:
        self._span(segment_id).set_attribute(key, _attribute_value(value))

    def segment_end(self, segment_id: str) -> None:
        span = self._span(segment_id)
        del self.segments[segment_id]
        span.end()

    def info(self, segment_id: str, message: str) -> None:
        self._span(segment_id).add_event("info", {"message": message})

    def error(self, segment_id: str, message: str) -> None:
        span = self._span(segment_id)
        span.add_event("error", {"message": message})
        span.set_status(Status(StatusCode.ERROR, message))

    def done(self) -> None:
        if self.root is None:
            raise TelemetryError(f"transaction {self.name} was never started")

        for segment_id, span in list(self.segments.items()):
            logger.debug(f"Ending unfinished segment {segment_id} of {self.name}")
            span.end()
        self.segments.clear()

        self.root.end()

    def erase(self) -> None:
        self.segments.clear()
        self._pending_attributes.clear()
        self.root = None

    def create_process_id(self) -> str:
        return format_trace_id(_id_generator.generate_trace_id())

    def set_process_id(self, process_id: str) -> None:
        if not process_id:
            raise ValueError("process id must not be empty")
        self._process_id = process_id
        if self.root is not None:
            self.root.set_attribute(PROCESS_ID_ATTRIBUTE, process_id)

    def process_id(self) -> str:
        if self._process_id is None:
            raise TelemetryError(f"transaction {self.name} has no process id")
        return self._process_id

    def create_trace(self) -> str:
        return format_trace_id(_id_generator.generate_trace_id())

    def set_trace(self, trace_id: str) -> None:
        self._trace_id = parse_trace_id(trace_id)

    def trace(self) -> str:
        if self._trace_id is not None:
            return format_trace_id(self._trace_id)
        if self.root is not None:
            return format_trace_id(self.root.get_span_context().trace_id)
        raise TelemetryError(f"transaction {self.name} has no trace")


class OpenTelemetryDriver(Driver):
    """
    APM driver backed by the OpenTelemetry SDK.

    When no tracer provider is passed in, the driver creates its own and
    exports spans over OTLP/gRPC if an endpoint is configured.
    """

    def __init__(
        self,
        tracer_provider: Optional[TracerProvider] = None,
        otlp_endpoint: Optional[str] = None,
        service_name: str = "telemux",
    ):
        """
        Initialize the driver.

        Args:
            tracer_provider: Tracer provider to use (optional)
            otlp_endpoint: OpenTelemetry endpoint URL (e.g., "http://localhost:4317")
            service_name: Name of the service for telemetry data
        """
        self._owns_provider = tracer_provider is None

        if tracer_provider is None:
            tracer_provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
            if otlp_endpoint:
                tracer_provider.add_span_processor(
                    BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
                )
                logger.info(f"Exporting spans to {otlp_endpoint}")
            else:
                logger.warning("No OTLP endpoint provided, spans will not be exported")

        self.tracer_provider = tracer_provider
        self.tracer = tracer_provider.get_tracer("telemux.drivers.otel")

    def initialize_transaction(self, name: str) -> OpenTelemetryTransaction:
        return OpenTelemetryTransaction(name, self.tracer)

    def shutdown(self) -> None:
        if self._owns_provider:
            self.tracer_provider.shutdown()
            logger.info("Tracer provider shut down")
