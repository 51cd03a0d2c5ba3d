"""
Command-line interface for the dice-roll telemetry generator.

Resolves the configuration, sets up OTLP exporters, then runs the dice
generator and the diagnostic server until interrupted (Ctrl+C).
"""

import argparse
import sys
from collections.abc import Sequence
from typing import TextIO

from . import __version__
from .config import DEFAULT_ENV_FILE, Config, ConfigError, FlagRegistry, load_config
from .debug_server import DebugServer
from .generators.dice import DiceRoller
from .lifecycle import LifecycleCoordinator
from .telemetry import Telemetry, setup_telemetry


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser; the collector/service flags are added by the config loader."""
    parser = argparse.ArgumentParser(
        prog="dicesim",
        allow_abbrev=False,
        description="Emit OTEL traces, metrics and logs from a simulated dice roll",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Every setting may also come from the environment or a {DEFAULT_ENV_FILE} file;
flags passed explicitly take precedence.

Examples:
  # Send telemetry to a local collector
  dicesim --collector-grpc-url localhost:4317 --collector-http-url localhost:4318 \\
      --service-name dicesim --debug-url localhost:1777

  # Same, configured from the environment
  COLLECTOR_GRPC_URL=localhost:4317 COLLECTOR_HTTP_URL=localhost:4318 \\
      SERVICE_NAME=dicesim DEBUG_URL=localhost:1777 dicesim
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_coordinator(
    cfg: Config, telemetry: Telemetry, echo: TextIO | None = None
) -> LifecycleCoordinator:
    """Wire the tasks and the teardown order for one run."""
    debug_server = DebugServer(cfg.debug_url, logger=telemetry.logger)
    roller = DiceRoller(cfg.service_name, telemetry.logger, echo=echo)

    coordinator = LifecycleCoordinator()
    coordinator.teardown.add("debug server", debug_server.close)
    coordinator.teardown.add("logger provider", telemetry.logger_provider.shutdown)
    coordinator.teardown.add("tracer provider", telemetry.tracer_provider.shutdown)
    coordinator.teardown.add("meter provider", telemetry.meter_provider.shutdown)

    coordinator.add_task("debug-server", debug_server.serve)
    coordinator.add_task("dice-roller", roller.run)
    return coordinator


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    registry = FlagRegistry(create_parser())
    try:
        cfg = load_config(registry=registry, argv=argv)
    except ConfigError as e:
        print(f"Loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        telemetry = setup_telemetry(cfg)
    except Exception as e:
        print(f"Setting up telemetry: {e}", file=sys.stderr)
        sys.exit(1)

    print("Starting dice-roll telemetry generation...")
    print(f"   Traces (gRPC): {cfg.collector_grpc_url}")
    print(f"   Metrics/logs (HTTP): {cfg.collector_http_url}")
    print(f"   Service: {cfg.service_name}")
    print(f"   Debug: http://{cfg.debug_url}/debug/pprof/")
    print()

    build_coordinator(cfg, telemetry, echo=sys.stdout).run()

    print()
    print("Generation stopped")


if __name__ == "__main__":
    main()
