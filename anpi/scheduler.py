"""Scheduling Loops - In-process triggers for the pipeline.

- PollingLoop: polls the pull feed every few seconds while the push feed
  is not open.
- CronLoop: the one-minute batch run (poll + reconciliation) for
  deployments without an external scheduler.
- PushConsumer: drains a push feed subscription into the pipeline.

Loops are fixed-delay: the next run is scheduled only after the previous
one has finished, so runs never overlap.
"""

import logging
import threading

from anpi.core.health import HealthSource
from anpi.core.telegram import EventSource
from anpi.orchestrator import Orchestrator, ProcessingResult
from anpi.shell.health_store import HealthStore
from anpi.shell.push_feed import PushFeed, TelegramSubscription


logger = logging.getLogger(__name__)


class _Loop:
    """A named background loop with fixed-delay scheduling."""

    name = "loop"

    def __init__(self, interval: float, backoff: float) -> None:
        self.interval = interval
        self.backoff = backoff
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> bool:
        """Run one iteration. Returns False if the run failed."""
        raise NotImplementedError

    def run(self) -> None:
        """Run until stop() is called. Exceptions never end the loop."""
        logger.info("%s started (interval %.1fs)", self.name, self.interval)
        while not self._stop.is_set():
            try:
                ok = self.run_once()
            except Exception:
                logger.exception("%s iteration failed", self.name)
                ok = False
            self._stop.wait(self.interval if ok else self.backoff)
        logger.info("%s stopped", self.name)

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class PollingLoop(_Loop):
    """Polls the pull feed unless the push feed is open.

    Args:
        orchestrator: Pipeline entry point
        push_feed: Push feed whose state decides whether polling is needed
        interval: Delay between polls
        backoff: Delay after a failed poll
    """

    name = "polling-loop"

    def __init__(
        self,
        orchestrator: Orchestrator,
        push_feed: PushFeed | None = None,
        interval: float = 2.0,
        backoff: float = 2.0,
    ) -> None:
        super().__init__(interval, backoff)
        self.orchestrator = orchestrator
        self.push_feed = push_feed
        self.last_result: ProcessingResult | None = None

    def run_once(self) -> bool:
        if self.push_feed is not None and self.push_feed.is_open:
            return True

        self.last_result = self.orchestrator.poll_once(HealthSource.REST_POLLER)
        return self.last_result.success


class CronLoop(_Loop):
    """Runs the batch (poll + reconciliation) on a fixed delay."""

    name = "cron-loop"

    def __init__(self, orchestrator: Orchestrator, interval: float = 60.0) -> None:
        super().__init__(interval, interval)
        self.orchestrator = orchestrator

    def run_once(self) -> bool:
        result = self.orchestrator.run_cron()
        logger.info("Cron run: %s", result.summary)
        return result.success


class PushConsumer:
    """Feeds telegrams from a push feed subscription into the pipeline.

    Each processed telegram marks the websocket health source; a failure
    is recorded and consumption continues.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        push_feed: PushFeed,
        health_store: HealthStore,
    ) -> None:
        self.orchestrator = orchestrator
        self.push_feed = push_feed
        self.health_store = health_store
        self._subscription: TelegramSubscription | None = None
        self._thread: threading.Thread | None = None

    def run(self) -> None:
        """Consume until the subscription is closed."""
        self._subscription = self._subscription or self.push_feed.subscribe()

        for item in self._subscription:
            try:
                result = self.orchestrator.process_item(item, EventSource.WEBSOCKET)
                self.health_store.mark_run(HealthSource.WEBSOCKET, details={
                    "telegram_id": item.id,
                    "status": result.status.value,
                })
            except Exception as e:
                logger.exception("Failed to process pushed telegram %s", item.id)
                try:
                    self.health_store.mark_failure(HealthSource.WEBSOCKET, str(e))
                except Exception as mark_error:
                    logger.error("Failed to record websocket failure: %s", str(mark_error))

    def start(self) -> None:
        self._subscription = self.push_feed.subscribe()
        self._thread = threading.Thread(target=self.run, name="push-consumer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._thread is not None:
            self._thread.join(timeout)
