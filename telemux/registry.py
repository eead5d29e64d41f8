"""
Driver registry for telemux.

The registry maps driver names to Driver instances and records which drivers
are active and which one is the trace authority. It is populated once during
application initialization and only read afterwards.
"""

import logging
from typing import Dict, List, Optional

from telemux.errors import DriverNotRegisteredError
from telemux.transaction import Driver

logger = logging.getLogger("telemux.registry")


class DriverRegistry:
    """Mapping from driver name to driver, plus the active configuration."""

    def __init__(self):
        self._drivers: Dict[str, Driver] = {}
        self._active: List[str] = []
        self._trace_driver: Optional[str] = None

    def register(self, name: str, driver: Driver) -> None:
        """
        Register a driver. A second driver under the same name replaces the first.

        Args:
            name: Driver name (case-sensitive)
            driver: Driver instance
        """
        if name in self._drivers:
            logger.debug(f"Replacing telemetry driver {name}")
        self._drivers[name] = driver

    def lookup(self, name: str) -> Driver:
        """
        Get a registered driver.

        Raises:
            DriverNotRegisteredError: If no driver is registered under name
        """
        try:
            return self._drivers[name]
        except KeyError:
            raise DriverNotRegisteredError(name) from None

    def set_active_drivers(self, *names: str) -> None:
        self._active = list(names)

    def set_trace_driver(self, name: str) -> None:
        self._trace_driver = name

    @property
    def active_drivers(self) -> List[str]:
        return list(self._active)

    @property
    def trace_driver(self) -> Optional[str]:
        return self._trace_driver

    def names(self) -> List[str]:
        return list(self._drivers)

    def drivers(self) -> List[Driver]:
        return list(self._drivers.values())

    def validate(self) -> None:
        """
        Check the active configuration against the registered drivers.

        Meant to be called at startup so a deployment misconfiguration fails
        before the first transaction.

        Raises:
            DriverNotRegisteredError: For the first active driver, or the
                trace driver, whose name is not registered
        """
        for name in self._active:
            if name not in self._drivers:
                raise DriverNotRegisteredError(name)

        # Without active drivers the trace authority is never consulted
        if self._active and self._trace_driver is not None and self._trace_driver not in self._drivers:
            raise DriverNotRegisteredError(self._trace_driver)

    def __contains__(self, name: object) -> bool:
        return name in self._drivers

    def __len__(self) -> int:
        return len(self._drivers)
