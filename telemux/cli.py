#!/usr/bin/env python3
"""
Command-line tool for telemux.

Lists the built-in drivers and runs a demo transaction through the configured
drivers, which is a quick way to check a deployment's telemetry settings.
"""

import argparse
import logging
import sys

from telemux.core import Telemetry, TelemetryConfig
from telemux.drivers import BUILTIN_DRIVERS
from telemux.errors import TelemetryError


def cmd_drivers(args):
    """List the built-in drivers."""
    for name in BUILTIN_DRIVERS:
        print(name)
    return 0


def cmd_demo(args):
    """Run one transaction with a single segment."""
    overrides = {"log_level": logging.DEBUG if args.verbose else logging.INFO}
    if args.drivers is not None:
        overrides["drivers"] = [d.strip() for d in args.drivers.split(",") if d.strip()]
    if args.trace_driver:
        overrides["trace_driver"] = args.trace_driver

    try:
        telemetry = Telemetry(TelemetryConfig.from_env(**overrides))
    except TelemetryError as e:
        print(f"Error starting transaction: {e}", file=sys.stderr)
        return 1

    try:
        transaction = telemetry.start(args.name)
    except TelemetryError as e:
        print(f"Error starting transaction: {e}", file=sys.stderr)
        telemetry.shutdown()
        return 1

    try:
        transaction.add_transaction_attribute("demo", True)
        with transaction.segment(args.segment) as segment_id:
            transaction.info(segment_id, f"Hello from {args.segment}")

        print(f"Drivers: {', '.join(transaction.driver_names) or '-'}")
        print(f"Process ID: {transaction.process_id or '-'}")
        print(f"Trace ID: {transaction.trace_id or '-'}")
        if transaction.propagation_error is not None:
            print(f"Propagation errors:\n{transaction.propagation_error}", file=sys.stderr)
    finally:
        transaction.done()
        telemetry.shutdown()

    return 0 if transaction.propagation_error is None else 1


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="telemux telemetry facade tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s drivers
  %(prog)s demo
  %(prog)s demo --drivers log,otel --trace-driver log --name checkout
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("drivers", help="List built-in drivers")

    demo_parser = subparsers.add_parser("demo", help="Run a demo transaction")
    demo_parser.add_argument("--drivers", help="Comma separated driver names (default: TELEMUX_DRIVERS or log)")
    demo_parser.add_argument("--trace-driver", help="Trace authority driver name")
    demo_parser.add_argument("--name", default="demo", help="Transaction name")
    demo_parser.add_argument("--segment", default="hello", help="Segment name")
    demo_parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "drivers": cmd_drivers,
        "demo": cmd_demo,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
