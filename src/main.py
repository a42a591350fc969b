"""Main entry point module.

Handles CLI arguments, the collector thread lifecycle, signal handling, and
clean shutdown.
"""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Any

import collector
import config as config_module
import spanner_client
import writer as writer_module
from json_logging import JsonFormatter


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_stats_logging() -> logging.Logger:
    """Route stat records to stdout as JSON lines, apart from operational logs.

    Returns:
        The configured stats logger
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(writer_module.SERVICE_NAME))

    stats_logger = logging.getLogger(writer_module.STATS_LOGGER_NAME)
    stats_logger.handlers = [handler]
    stats_logger.setLevel(logging.INFO)
    stats_logger.propagate = False
    return stats_logger


def verify_spanner_connectivity(
    source: Any,
    timeout_seconds: int = 120,
    retry_interval: int = 10,
) -> None:
    """Verify the database is reachable at startup.

    Args:
        source: Stat source exposing ping()
        timeout_seconds: Maximum time to wait for connectivity
        retry_interval: Seconds between retries

    Raises:
        RuntimeError: If connection cannot be established within timeout
    """
    start_time = time.time()
    last_error = None

    while time.time() - start_time < timeout_seconds:
        try:
            source.ping()
            logger.info("Spanner connectivity verified")
            return
        except Exception as e:
            last_error = e
            logger.warning(
                f"Spanner connectivity check failed: {e}. Retrying in {retry_interval}s..."
            )
            time.sleep(retry_interval)

    raise RuntimeError(
        f"Failed to connect to Spanner after {timeout_seconds}s: {last_error}"
    )


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    parser = argparse.ArgumentParser(description="Cloud Spanner Stats Collector")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        database = spanner_client.build_database(cfg.spanner)
    except Exception as e:
        logger.error(f"Failed to create Spanner client for {cfg.database_path}: {e}")
        return 1

    source = spanner_client.SpannerStatSource(database, cfg.spanner.staleness_seconds)

    try:
        verify_spanner_connectivity(source)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    if cfg.output.mode == "log":
        setup_stats_logging()

    try:
        stat_writer = writer_module.build_writer(cfg.output)
        stats_collector = collector.Collector(
            source,
            stat_writer,
            cfg.collector.kinds,
            granularity=cfg.collector.granularity,
            interval_seconds=cfg.collector.interval_seconds,
        )
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    shutdown_event = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()
        stats_collector.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    collector_thread = threading.Thread(
        target=stats_collector.run,
        args=(shutdown_event,),
        name="collector",
        daemon=True,
    )
    collector_thread.start()
    logger.info(f"Started {collector_thread.name} thread for {cfg.database_path}")

    # Main thread heartbeat
    try:
        while not shutdown_event.wait(timeout=30):
            if not collector_thread.is_alive():
                logger.error("Collector thread exited unexpectedly")
                shutdown_event.set()
                break

            watermarks = ", ".join(
                f"{kind.value}={value.isoformat()}"
                for kind, value in stats_collector.watermarks().items()
            )
            logger.debug(
                f"Heartbeat: last_tick_at={stats_collector.last_tick_at}, "
                f"watermarks: {watermarks}"
            )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        shutdown_event.set()
        stats_collector.stop()

    logger.info("Shutting down collector...")

    collector_thread.join(timeout=10)
    if collector_thread.is_alive():
        logger.warning(f"Thread {collector_thread.name} did not stop within timeout")

    stat_writer.close()

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
