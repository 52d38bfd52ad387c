"""Worker Entry Point - Long-running ingestion process.

Runs the push feed, the fallback polling loop and, when enabled, the
in-process one-minute cron. Stops cleanly on SIGINT/SIGTERM.

Usage:
    python -m anpi.worker
"""

import logging
import os
import signal
import sys
import threading

from anpi.core.config import Config, validate_config
from anpi.core.health import HealthSource
from anpi.errors import ConfigError
from anpi.orchestrator import Orchestrator
from anpi.scheduler import CronLoop, PollingLoop, PushConsumer
from anpi.shell.config_loader import get_secret_manager_client, load_config
from anpi.shell.push_feed import PushFeed


# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Worker:
    """Owns the background components and their lifecycle."""

    def __init__(self, config: Config, orchestrator: Orchestrator) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self.push_feed: PushFeed | None = None
        self.push_consumer: PushConsumer | None = None
        self.cron_loop: CronLoop | None = None

        if config.dmdata.websocket_enabled:
            self.push_feed = PushFeed(
                orchestrator.dmdata_client,
                types=config.dmdata.telegram_types,
                app_name=config.dmdata.app_name,
                on_ping=self._mark_websocket_alive,
            )
            self.push_consumer = PushConsumer(orchestrator, self.push_feed, orchestrator.health_store)

        self.polling_loop = PollingLoop(
            orchestrator,
            push_feed=self.push_feed,
            interval=config.polling.interval_seconds,
            backoff=config.polling.backoff_seconds,
        )

        if config.polling.cron_enabled:
            self.cron_loop = CronLoop(orchestrator, interval=config.polling.cron_interval_seconds)

    def _mark_websocket_alive(self) -> None:
        self.orchestrator.health_store.mark_run(HealthSource.WEBSOCKET, details={"state": "open"})

    def start(self) -> None:
        if self.push_consumer is not None:
            self.push_consumer.start()
            self.push_feed.start()
        self.polling_loop.start()
        if self.cron_loop is not None:
            self.cron_loop.start()
        logger.info(
            "Worker started (push feed %s, internal cron %s)",
            "on" if self.push_feed else "off",
            "on" if self.cron_loop else "off",
        )

    def stop(self) -> None:
        logger.info("Stopping worker")
        if self.cron_loop is not None:
            self.cron_loop.stop()
        self.polling_loop.stop()
        if self.push_feed is not None:
            self.push_feed.stop()
        if self.push_consumer is not None:
            self.push_consumer.stop()
        logger.info("Worker stopped")


def main() -> int:
    """Run the worker until a termination signal arrives."""
    try:
        config = load_config()
        validation = validate_config(config)
        for error in validation.errors:
            log = logger.error if error.severity == "error" else logger.warning
            log("Config %s: %s", error.field, error.message)
        if not validation.valid:
            return 1

        orchestrator = Orchestrator.from_config(config, get_secret_manager_client())
    except ConfigError as e:
        logger.error("Configuration error: %s", str(e))
        return 1

    worker = Worker(config, orchestrator)
    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    worker.start()
    stop_event.wait()
    worker.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
