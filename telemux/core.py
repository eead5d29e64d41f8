"""
Core configuration and facade for telemux.

This module provides the configuration object and the Telemetry facade which
wires configuration, driver registry and built-in drivers together.
"""

import logging
import os
from typing import Callable, Dict, List, Mapping, Optional

from telemux.drivers import BUILTIN_DRIVERS, LogDriver, NoopDriver, OpenTelemetryDriver
from telemux.multiplexer import TransactionMultiplexer, start_transaction
from telemux.registry import DriverRegistry
from telemux.transaction import Driver

# Set up logging
logger = logging.getLogger("telemux")

DEFAULT_DRIVERS = ["log"]
DEFAULT_TRACE_DRIVER = "log"


class TelemetryConfig:
    """Configuration for the Telemetry facade."""

    def __init__(
        self,
        drivers: Optional[List[str]] = None,
        trace_driver: Optional[str] = None,
        service_name: str = "telemux",
        otlp_endpoint: Optional[str] = None,
        log_level: int = logging.INFO,
        log_source: str = "urn:telemux:log",
        configure_logging: bool = True,
    ):
        """
        Initialize telemetry configuration.

        Args:
            drivers: Active driver names, in order
            trace_driver: Driver that mints process and trace ids
            service_name: Name of the service for telemetry data
            otlp_endpoint: OpenTelemetry endpoint URL for the otel driver
            log_level: Logging level
            log_source: CloudEvents source attribute for the log driver
            configure_logging: Whether to call logging.basicConfig
        """
        self.drivers = list(drivers) if drivers is not None else list(DEFAULT_DRIVERS)
        self.trace_driver = trace_driver or (self.drivers[0] if self.drivers else DEFAULT_TRACE_DRIVER)
        self.service_name = service_name
        self.otlp_endpoint = otlp_endpoint
        self.log_level = log_level
        self.log_source = log_source

        if configure_logging:
            logging.basicConfig(
                level=log_level,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )

        self._validate_config()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **kwargs) -> "TelemetryConfig":
        """
        Build a configuration from environment variables.

        Reads TELEMUX_DRIVERS (comma separated), TELEMUX_TRACE_DRIVER,
        TELEMUX_SERVICE_NAME, TELEMUX_LOG_LEVEL and OTEL_EXPORTER_OTLP_ENDPOINT.
        Keyword arguments override the environment.

        Args:
            environ: Mapping to read from (defaults to os.environ)
        """
        environ = os.environ if environ is None else environ

        values = {}

        drivers = environ.get("TELEMUX_DRIVERS")
        if drivers is not None:
            values["drivers"] = [d.strip() for d in drivers.split(",") if d.strip()]

        if environ.get("TELEMUX_TRACE_DRIVER"):
            values["trace_driver"] = environ["TELEMUX_TRACE_DRIVER"]

        if environ.get("TELEMUX_SERVICE_NAME"):
            values["service_name"] = environ["TELEMUX_SERVICE_NAME"]

        if environ.get("OTEL_EXPORTER_OTLP_ENDPOINT"):
            values["otlp_endpoint"] = environ["OTEL_EXPORTER_OTLP_ENDPOINT"]

        level_name = environ.get("TELEMUX_LOG_LEVEL")
        if level_name:
            level = logging.getLevelName(level_name.upper())
            if isinstance(level, int):
                values["log_level"] = level
            else:
                logger.warning(f"Unknown log level: {level_name}")

        values.update(kwargs)
        return cls(**values)

    def _validate_config(self):
        """Warn about configurations that will not behave as expected."""
        if len(set(self.drivers)) != len(self.drivers):
            logger.warning(f"Duplicate telemetry drivers configured: {self.drivers}")

        if self.drivers and self.trace_driver not in self.drivers:
            logger.warning(
                f"Trace driver {self.trace_driver} is not an active driver, "
                f"transactions will fail to start"
            )

        for name in self.drivers:
            if name not in BUILTIN_DRIVERS:
                logger.debug(f"Driver {name} is not built in and must be registered explicitly")


class Telemetry:
    """
    Main telemux entry point.

    The facade registers the built-in drivers named in the configuration,
    applies the active driver list and the trace authority, and starts
    transactions.

    Example:
        telemetry = Telemetry(TelemetryConfig(drivers=["log", "otel"], trace_driver="log"))
        with telemetry.start("checkout") as transaction:
            with transaction.segment("charge-card"):
                ...
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        registry: Optional[DriverRegistry] = None,
        drivers: Optional[Dict[str, Driver]] = None,
    ):
        """
        Initialize the facade.

        Args:
            config: Telemetry configuration (defaults to TelemetryConfig.from_env())
            registry: Registry to populate (a new one by default)
            drivers: Additional drivers to register, keyed by name. They take
                precedence over built-in drivers of the same name.

        Raises:
            DriverNotRegisteredError: If an active or trace driver is unknown
        """
        self.config = config or TelemetryConfig.from_env()
        self.registry = registry or DriverRegistry()

        self._initialize_drivers(drivers or {})

        self.registry.set_active_drivers(*self.config.drivers)
        self.registry.set_trace_driver(self.config.trace_driver)
        self.validate()

    def _builtin_factories(self) -> Dict[str, Callable[[], Driver]]:
        return {
            "noop": NoopDriver,
            "log": lambda: LogDriver(source=self.config.log_source),
            "otel": lambda: OpenTelemetryDriver(
                otlp_endpoint=self.config.otlp_endpoint,
                service_name=self.config.service_name,
            ),
        }

    def _initialize_drivers(self, drivers: Dict[str, Driver]):
        """Register built-in drivers that are active, then the explicit ones."""
        factories = self._builtin_factories()
        for name in self.config.drivers:
            if name in factories and name not in drivers and name not in self.registry:
                self.registry.register(name, factories[name]())
                logger.debug(f"Registered built-in telemetry driver {name}")

        for name, driver in drivers.items():
            self.registry.register(name, driver)

    def register_driver(self, name: str, driver: Driver) -> None:
        """Register or replace a driver. Call before the first start()."""
        self.registry.register(name, driver)

    def validate(self) -> None:
        """
        Fail fast on a misconfiguration.

        Raises:
            DriverNotRegisteredError: If an active or trace driver is unknown
        """
        self.registry.validate()

    def start(self, name: str) -> TransactionMultiplexer:
        """
        Start a transaction on every active driver.

        Raises:
            TelemetryError: See start_transaction()
        """
        return start_transaction(self.registry, name)

    def shutdown(self) -> None:
        """Shut down every registered driver."""
        for driver in self.registry.drivers():
            driver.shutdown()
        logger.info("Telemetry drivers shut down")
