"""Main entry point for the telemetry reporter."""
import argparse
import logging
import sys
import signal

from opentelemetry import metrics
from pythonjsonlogger.json import JsonFormatter

from telemetry_reporter.config import load_config
from telemetry_reporter.control_api import ControlAPI
from telemetry_reporter.events import EventBus
from telemetry_reporter.poller import ProcessPoller
from telemetry_reporter.reporter import Reporter
from telemetry_reporter.self_metrics import OTELSelfMetrics, SelfMetrics, create_meter_provider
from telemetry_reporter.store import InMemoryStore


LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the configured log format."""
    if log_format == "json":
        return JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt=LOG_DATEFMT,
            rename_fields={"asctime": "time", "levelname": "level", "name": "logger"}
        )
    return logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt=LOG_DATEFMT)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Telemetry Reporter - capture instrumentation events into a time-series store"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Telemetry Reporter")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Prefix: {config.reporter.prefix}")
    logger.info(f"Flush interval: {config.reporter.flush_interval_ms}ms")
    logger.info(f"Default metric groups: {config.default_metrics}")

    bus = EventBus()
    store = InMemoryStore(bus=bus)

    self_metrics = None
    if config.self_metrics.prometheus:
        self_metrics = SelfMetrics(prefix=config.self_metrics.prefix)

    meter_provider = None
    otel_self_metrics = None
    if config.self_metrics.otel:
        meter_provider = create_meter_provider(config.self_metrics.otel_export_interval_s)
        metrics.set_meter_provider(meter_provider)
        otel_self_metrics = OTELSelfMetrics(
            meter=meter_provider.get_meter(__name__),
            prefix=config.self_metrics.prefix
        )

    try:
        reporter = Reporter.from_config(
            config,
            store,
            bus=bus,
            self_metrics=self_metrics,
            otel_self_metrics=otel_self_metrics
        ).start()
    except Exception as e:
        logger.error(f"Failed to start reporter: {e}", exc_info=True)
        if meter_provider:
            meter_provider.shutdown()
        sys.exit(1)

    poller = None
    if config.poller.enabled:
        poller = ProcessPoller(config.poller.interval_s, bus=bus)
        poller.start()

    def shutdown():
        if poller:
            poller.stop()
        reporter.stop()
        if meter_provider:
            meter_provider.shutdown()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    control_api = ControlAPI(
        reporter,
        store,
        self_metrics=self_metrics,
        history_window=config.reporter.history_window_s
    )

    # Run control API (blocking)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        shutdown()
        sys.exit(1)

    shutdown()


if __name__ == "__main__":
    main()
