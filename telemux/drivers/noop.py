"""
No-op telemetry driver.

The no-op driver records nothing. It keeps the process and trace ids so it
can still act as trace authority, e.g. in tests or local development.
"""

import uuid
from typing import Any, Optional

from telemux.transaction import Driver, Transaction


class NoopTransaction(Transaction):
    """Transaction that discards everything except the shared identifiers."""

    def __init__(self, name: str):
        self.name = name
        self._process_id: Optional[str] = None
        self._trace: Optional[str] = None

    def start(self, name: str) -> None:
        pass

    def add_transaction_attribute(self, key: str, value: Any) -> None:
        pass

    def segment_start(self, segment_id: str, name: str) -> None:
        pass

    def add_segment_attribute(self, segment_id: str, key: str, value: Any) -> None:
        pass

    def segment_end(self, segment_id: str) -> None:
        pass

    def done(self) -> None:
        pass

    def erase(self) -> None:
        self._process_id = None
        self._trace = None

    def info(self, segment_id: str, message: str) -> None:
        pass

    def error(self, segment_id: str, message: str) -> None:
        pass

    def create_process_id(self) -> str:
        return uuid.uuid4().hex

    def set_process_id(self, process_id: str) -> None:
        self._process_id = process_id

    def process_id(self) -> str:
        return self._process_id or ""

    def create_trace(self) -> str:
        return uuid.uuid4().hex

    def set_trace(self, trace: str) -> None:
        self._trace = trace

    def trace(self) -> str:
        return self._trace or ""


class NoopDriver(Driver):
    """Driver producing NoopTransactions."""

    def initialize_transaction(self, name: str) -> NoopTransaction:
        return NoopTransaction(name)
