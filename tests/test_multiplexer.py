import logging

import pytest

from fakes import RecordingDriver, sequential_ids
from telemux.errors import (
    DriverNotRegisteredError,
    DriverOperationError,
    DriverStartError,
    TelemetryErrorGroup,
    TraceAuthorityError,
    TraceDriverNotRegisteredError,
)
from telemux.multiplexer import TransactionMultiplexer, start_transaction
from telemux.registry import DriverRegistry


def make_registry(drivers, active=None, trace_driver=None):
    registry = DriverRegistry()
    for name, driver in drivers.items():
        registry.register(name, driver)
    registry.set_active_drivers(*(active if active is not None else drivers))
    registry.set_trace_driver(trace_driver if trace_driver is not None else next(iter(drivers)))
    return registry


@pytest.fixture
def local():
    return RecordingDriver()


@pytest.fixture
def apm():
    return RecordingDriver()


@pytest.fixture
def registry(local, apm):
    return make_registry({"local": local, "apm": apm}, trace_driver="local")


def test_checkout_scenario(registry, local, apm):
    """Walk through a complete transaction on two backends."""
    multiplexer = start_transaction(registry, "checkout", segment_id_factory=sequential_ids())

    assert multiplexer.process_id == "p-1"
    assert multiplexer.trace_id == "t-1"
    assert multiplexer.propagation_error is None
    for driver in (local, apm):
        assert driver.last.last_process_id == "p-1"
        assert driver.last.last_trace == "t-1"
        assert ("start", "checkout") in driver.last.calls

    segment_id = multiplexer.segment_start("charge-card")
    assert segment_id == "s-1"

    multiplexer.segment_end(segment_id)
    for driver in (local, apm):
        assert ("segment_start", "s-1", "charge-card") in driver.last.calls
        assert ("segment_end", "s-1") in driver.last.calls

    multiplexer.done()
    for driver in (local, apm):
        assert driver.last.operations()[-1] == "done"
        assert driver.last.erase_count == 1


def test_start_creates_one_transaction_per_active_driver(registry, local, apm):
    multiplexer = start_transaction(registry, "checkout")

    assert multiplexer.driver_names == ["local", "apm"]
    assert len(local.transactions) == 1
    assert len(apm.transactions) == 1
    assert multiplexer.transaction("apm") is apm.last


def test_start_order_mints_then_propagates_then_starts(registry, local, apm):
    start_transaction(registry, "checkout")

    assert local.last.operations() == [
        "create_process_id",
        "set_process_id",
        "create_trace",
        "set_trace",
        "start",
    ]
    assert apm.last.operations() == ["set_process_id", "set_trace", "start"]


def test_duplicate_active_driver_is_started_once(local, apm):
    registry = make_registry({"local": local, "apm": apm}, active=["local", "apm", "local"])

    multiplexer = start_transaction(registry, "checkout")

    assert multiplexer.driver_names == ["local", "apm"]
    assert len(local.transactions) == 1


def test_trace_driver_not_active_fails_start(local, apm):
    registry = make_registry({"local": local, "apm": apm}, active=["apm"], trace_driver="local")

    with pytest.raises(TraceDriverNotRegisteredError) as excinfo:
        start_transaction(registry, "checkout")

    assert excinfo.value.driver_name == "local"
    assert local.transactions == []
    assert apm.last.erase_count == 1


def test_unregistered_driver_fails_start(local):
    registry = make_registry({"local": local}, active=["local", "missing"])

    with pytest.raises(DriverNotRegisteredError) as excinfo:
        start_transaction(registry, "checkout")

    assert excinfo.value.driver_name == "missing"
    # The already started backend is released
    assert local.last.erase_count == 1


def test_driver_initialize_failure_fails_start(local):
    broken = RecordingDriver(fail_initialize=True)
    registry = make_registry({"local": local, "broken": broken})

    with pytest.raises(DriverStartError) as excinfo:
        start_transaction(registry, "checkout")

    assert excinfo.value.driver_name == "broken"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert "backend unavailable" in str(excinfo.value)
    assert local.last.erase_count == 1


@pytest.mark.parametrize("operation", ["create_process_id", "create_trace"])
def test_trace_authority_mint_failure_fails_start(operation, apm):
    authority = RecordingDriver(fail=(operation,))
    registry = make_registry({"local": authority, "apm": apm}, trace_driver="local")

    with pytest.raises(TraceAuthorityError) as excinfo:
        start_transaction(registry, "checkout")

    assert excinfo.value.operation == operation
    assert authority.last.erase_count == 1
    assert apm.last.erase_count == 1
    assert "start" not in apm.last.operations()


def test_partial_process_id_propagation_failure_is_not_fatal():
    drivers = {
        "a": RecordingDriver(),
        "b": RecordingDriver(fail=("set_process_id",)),
        "c": RecordingDriver(),
        "d": RecordingDriver(fail=("set_process_id",)),
    }
    registry = make_registry(drivers, trace_driver="a")

    multiplexer = start_transaction(registry, "checkout")

    assert multiplexer.driver_names == ["a", "b", "c", "d"]
    assert isinstance(multiplexer.propagation_error, TelemetryErrorGroup)
    errors = list(multiplexer.propagation_error)
    assert len(errors) == 2
    assert [e.driver_name for e in errors] == ["b", "d"]
    assert all(isinstance(e, DriverOperationError) for e in errors)
    assert all(e.operation == "set_process_id" for e in errors)

    # Successful backends keep the id, and every backend still starts
    assert drivers["a"].last.last_process_id == "p-1"
    assert drivers["c"].last.last_process_id == "p-1"
    for driver in drivers.values():
        assert driver.last.last_trace == "t-1"
        assert driver.last.operations()[-1] == "start"


def test_trace_propagation_failure_is_collected(local):
    apm = RecordingDriver(fail=("set_trace",))
    registry = make_registry({"local": local, "apm": apm}, trace_driver="local")

    multiplexer = start_transaction(registry, "checkout")

    assert len(multiplexer.propagation_error) == 1
    err = multiplexer.propagation_error.errors[0]
    assert err.driver_name == "apm"
    assert err.operation == "set_trace"
    assert "Telemetry error in driver: apm" in str(multiplexer.propagation_error)
    assert local.last.last_trace == "t-1"


def test_empty_active_set_is_inert(local):
    registry = make_registry({"local": local}, active=[])

    multiplexer = start_transaction(registry, "checkout")

    assert multiplexer.driver_names == []
    assert multiplexer.trace_id is None
    assert multiplexer.segment_start("noop")
    multiplexer.done()
    assert local.transactions == []


def test_inert_multiplexer_accepts_every_operation():
    multiplexer = TransactionMultiplexer.inert("fallback")

    segment_id = multiplexer.segment_start("work")
    multiplexer.add_segment_attribute(segment_id, "k", "v")
    multiplexer.info(segment_id, "message")
    multiplexer.segment_end(segment_id)
    multiplexer.done()

    assert multiplexer.finished
    with pytest.raises(TraceDriverNotRegisteredError):
        multiplexer.trace()


def test_segment_ids_are_unique_for_the_same_name(registry):
    multiplexer = start_transaction(registry, "checkout")

    first = multiplexer.segment_start("query")
    second = multiplexer.segment_start("query")

    assert first != second


def test_repeated_segment_id_from_factory_is_replaced(registry, apm):
    multiplexer = start_transaction(registry, "checkout", segment_id_factory=lambda: "same")

    first = multiplexer.segment_start("a")
    second = multiplexer.segment_start("b")

    assert first == "same"
    assert second != "same"
    assert ("segment_start", second, "b") in apm.last.calls


def test_segment_failures_are_logged_and_do_not_stop_other_backends(local, caplog):
    apm = RecordingDriver(fail=("segment_start", "add_segment_attribute", "segment_end"))
    registry = make_registry({"apm": apm, "local": local}, trace_driver="local")
    multiplexer = start_transaction(registry, "checkout", segment_id_factory=sequential_ids())

    with caplog.at_level(logging.ERROR, logger="telemux.multiplexer"):
        segment_id = multiplexer.segment_start("charge-card")
        multiplexer.add_segment_attribute(segment_id, "amount", 42)
        multiplexer.segment_end(segment_id)

    assert segment_id == "s-1"
    assert ("segment_start", "s-1", "charge-card") in local.last.calls
    assert ("add_segment_attribute", "s-1", "amount", 42) in local.last.calls
    assert ("segment_end", "s-1") in local.last.calls

    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
    assert len(messages) == 3
    assert "Telemetry error in driver: apm - function: segment_start - error: segment_start failed" in messages


def test_transaction_attribute_fan_out(registry, local, apm):
    multiplexer = start_transaction(registry, "checkout")

    multiplexer.add_transaction_attribute("customer", "c-42")

    for driver in (local, apm):
        assert ("add_transaction_attribute", "customer", "c-42") in driver.last.calls


def test_info_and_error_fan_out(registry, local, apm):
    multiplexer = start_transaction(registry, "checkout", segment_id_factory=sequential_ids())
    segment_id = multiplexer.segment_start("charge-card")

    multiplexer.info("", "starting checkout")
    multiplexer.error(segment_id, ValueError("card declined"))

    for driver in (local, apm):
        assert ("info", "", "starting checkout") in driver.last.calls
        assert ("error", "s-1", "card declined") in driver.last.calls


def test_logging_failure_never_reaches_caller(local, caplog):
    apm = RecordingDriver(fail=("info", "error"))
    registry = make_registry({"local": local, "apm": apm})
    multiplexer = start_transaction(registry, "checkout")

    multiplexer.info("", "hello")
    multiplexer.error("", "boom")

    assert ("info", "", "hello") in local.last.calls
    assert any("function: info" in r.getMessage() for r in caplog.records)
    assert any("function: error" in r.getMessage() for r in caplog.records)


def test_done_erases_every_backend_once_even_when_done_fails(local, caplog):
    apm = RecordingDriver(fail=("done",))
    registry = make_registry({"local": local, "apm": apm})
    multiplexer = start_transaction(registry, "checkout")

    multiplexer.done()

    assert local.last.erase_count == 1
    assert apm.last.erase_count == 1
    assert any("function: done" in r.getMessage() for r in caplog.records)


def test_operations_after_done_are_ignored(registry, local, caplog):
    multiplexer = start_transaction(registry, "checkout")
    multiplexer.done()
    calls = list(local.last.calls)

    multiplexer.info("", "late")
    multiplexer.segment_start("late")
    multiplexer.done()

    assert local.last.calls == calls
    assert local.last.erase_count == 1
    assert any("already done" in r.getMessage() for r in caplog.records)


def test_identifier_broadcasts_after_done_are_ignored(registry, local, apm, caplog):
    multiplexer = start_transaction(registry, "checkout")
    multiplexer.done()
    calls = list(apm.last.calls)

    multiplexer.set_process_id("p-late")
    multiplexer.set_trace("t-late")

    assert apm.last.calls == calls
    assert local.last.last_trace == "t-1"
    assert multiplexer.process_id == "p-1"
    assert multiplexer.trace_id == "t-1"
    assert any("Ignoring set_trace" in r.getMessage() for r in caplog.records)


def test_failing_erase_does_not_stop_release_of_other_backends(local, apm, caplog):
    broken = RecordingDriver(fail=("erase",))
    registry = make_registry({"local": local, "broken": broken, "apm": apm})
    multiplexer = start_transaction(registry, "checkout")

    multiplexer.done()

    assert broken.last.erase_count == 1
    assert local.last.erase_count == 1
    assert apm.last.erase_count == 1
    assert any(
        "Telemetry error in driver: broken - function: erase" in r.getMessage()
        for r in caplog.records
    )


def test_segment_context_manager_records_exception(registry, local):
    multiplexer = start_transaction(registry, "checkout", segment_id_factory=sequential_ids())

    with pytest.raises(KeyError):
        with multiplexer.segment("lookup") as segment_id:
            raise KeyError("sku")

    assert segment_id == "s-1"
    operations = local.last.operations()
    assert operations[-3:] == ["segment_start", "error", "segment_end"]
    assert ("error", "s-1", "'sku'") in local.last.calls


def test_context_manager_completes_transaction(registry, local, apm):
    with start_transaction(registry, "checkout") as multiplexer:
        multiplexer.info("", "inside")

    assert multiplexer.finished
    assert local.last.erase_count == 1
    assert apm.last.erase_count == 1


def test_context_manager_reports_escaping_exception(registry, apm):
    with pytest.raises(RuntimeError):
        with start_transaction(registry, "checkout"):
            raise RuntimeError("payment gateway down")

    assert ("error", "", "payment gateway down") in apm.last.calls
    assert apm.last.operations()[-1] == "done"


def test_trace_and_process_come_from_authority(registry, local):
    multiplexer = start_transaction(registry, "checkout")

    assert multiplexer.trace() == "t-1"
    assert multiplexer.process() == "p-1"
    assert local.last.operations()[-2:] == ["trace", "process_id"]


def test_trace_failure_raises_trace_authority_error(apm):
    authority = RecordingDriver(fail=("trace",))
    registry = make_registry({"local": authority, "apm": apm}, trace_driver="local")
    multiplexer = start_transaction(registry, "checkout")

    with pytest.raises(TraceAuthorityError) as excinfo:
        multiplexer.trace()

    assert excinfo.value.driver_name == "local"
    assert excinfo.value.operation == "trace"
