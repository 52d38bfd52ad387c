"""Orchestrator - Wires Functional Core and Imperative Shell.

This module coordinates the flow of data between the pure functional
core and the I/O-performing shell components. Both feeds end up in
process_item(): decode, normalize, dedup, match, dispatch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from anpi.core.config import Config
from anpi.core.crypto import TokenCipher
from anpi.core.earthquake import EarthquakeEvent, normalize_telegram, training_event
from anpi.core.formatter import format_event_summary
from anpi.core.health import HealthSource
from anpi.core.rules import NotificationMatch, Purpose, Workspace, conditions_for, match_conditions
from anpi.core.telegram import EventSource, RawTelegramItem, decode_body, is_earthquake_telegram
from anpi.dispatcher import DispatchOutcome, Dispatcher, OutcomeStatus, ReconcileResult
from anpi.errors import DecodeError
from anpi.shell.config_loader import load_token_cipher, resolve_dmdata_api_key
from anpi.shell.cursor_store import CursorStore
from anpi.shell.dispatch_store import DispatchStore
from anpi.shell.dmdata_client import DMDataClient
from anpi.shell.event_log import EventLogStore
from anpi.shell.firestore_client import FirestoreClient, FirestoreConfig
from anpi.shell.health_store import HealthStore
from anpi.shell.secret_manager_client import SecretManagerClient
from anpi.shell.slack_client import SlackClient
from anpi.shell.workspace_store import WorkspaceStore


logger = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    FILTERED = "filtered"
    DROPPED = "dropped"


@dataclass
class ItemResult:
    """Result of running one telegram through the pipeline.

    Attributes:
        item_id: Provider telegram ID
        status: accepted, duplicate, filtered (not an allowed type) or
            dropped (undecodable)
        event: Normalized event, when one was produced
        outcomes: Dispatch outcomes for accepted events
    """
    item_id: str
    status: ItemStatus
    event: EarthquakeEvent | None = None
    outcomes: list[DispatchOutcome] = field(default_factory=list)


@dataclass
class ProcessingResult:
    """Result of one poll of the pull feed.

    Attributes:
        fetched: Telegrams returned by the provider
        items: Per-item results
        errors: Errors that stopped the poll or failed an item
        reconcile: Result of the reconciliation sweep (cron runs only)
    """
    fetched: int = 0
    items: list[ItemResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reconcile: ReconcileResult | None = None

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.items if r.status == status)

    @property
    def accepted(self) -> int:
        return self._count(ItemStatus.ACCEPTED)

    @property
    def duplicates(self) -> int:
        return self._count(ItemStatus.DUPLICATE)

    @property
    def dropped(self) -> int:
        return self._count(ItemStatus.DROPPED)

    @property
    def outcomes(self) -> list[DispatchOutcome]:
        return [o for r in self.items for o in r.outcomes]

    @property
    def notifications_sent(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def notifications_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.FAILED)

    @property
    def success(self) -> bool:
        """Returns True if no errors occurred."""
        return len(self.errors) == 0

    @property
    def summary(self) -> str:
        """Human-readable summary of the processing result."""
        return (
            f"Fetched {self.fetched} telegrams, "
            f"{self.accepted} new, "
            f"{self.duplicates} duplicates, "
            f"{self.dropped} dropped, "
            f"{self.notifications_sent} notifications sent, "
            f"{self.notifications_failed} failed"
        )

    def to_response(self) -> dict:
        return {
            "success": self.success,
            "fetched": self.fetched,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "dropped": self.dropped,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
            "message": self.summary,
        }


class Orchestrator:
    """Coordinates ingestion, deduplication and dispatch.

    This class wires together:
    - DMData client (pull feed)
    - Core functions (decoding, normalization, matching)
    - Event log (dedup sink shared by both feeds)
    - Dispatcher (Slack fan-out with dispatch records)
    - Health and cursor stores
    """

    def __init__(
        self,
        config: Config,
        dmdata_client: DMDataClient,
        event_log: EventLogStore,
        dispatcher: Dispatcher,
        health_store: HealthStore,
        cursor_store: CursorStore,
        workspace_store: WorkspaceStore | None = None,
    ) -> None:
        """Initialize orchestrator with its collaborators.

        Args:
            config: Application configuration
            dmdata_client: Provider client for the pull feed
            event_log: Dedup log
            dispatcher: Notification dispatcher
            health_store: Liveness marks
            cursor_store: Pull feed cursors
            workspace_store: Workspace source when none are configured in the file
        """
        self.config = config
        self.dmdata_client = dmdata_client
        self.event_log = event_log
        self.dispatcher = dispatcher
        self.health_store = health_store
        self.cursor_store = cursor_store
        self.workspace_store = workspace_store

    @classmethod
    def from_config(
        cls,
        config: Config,
        secret_client: SecretManagerClient | None = None,
        cipher: TokenCipher | None = None,
    ) -> "Orchestrator":
        """Build an orchestrator and all shell clients from configuration.

        Secrets are resolved here, once.

        Raises:
            ConfigError: If the encryption key or the provider API key is missing
        """
        names = config.firestore
        firestore_client = FirestoreClient(FirestoreConfig(database=names.database))
        cipher = cipher or load_token_cipher(secret_client)
        api_key = resolve_dmdata_api_key(config, firestore_client, cipher, secret_client)

        return cls(
            config=config,
            dmdata_client=DMDataClient(
                api_key,
                base_url=config.dmdata.base_url,
                timeout=config.dmdata.timeout_seconds,
            ),
            event_log=EventLogStore(firestore_client, names.event_log_collection),
            dispatcher=Dispatcher(
                SlackClient(timeout=config.slack_timeout_seconds),
                DispatchStore(firestore_client, names.dispatch_collection),
                cipher,
            ),
            health_store=HealthStore(firestore_client, names.health_collection),
            cursor_store=CursorStore(firestore_client, names.cursor_collection),
            workspace_store=WorkspaceStore(firestore_client, names.workspace_collection),
        )

    def load_workspaces(self) -> list[Workspace]:
        """Workspaces from the config file, else from Firestore."""
        if self.config.workspaces:
            return list(self.config.workspaces)
        if self.workspace_store is None:
            return []
        return self.workspace_store.list_workspaces()

    def find_workspace(self, workspace_id: str) -> Workspace | None:
        """One workspace by ID, from the same source as load_workspaces()."""
        if self.config.workspaces:
            return next(
                (ws for ws in self.config.workspaces if ws.workspace_id == workspace_id), None
            )
        if self.workspace_store is None:
            return None
        return self.workspace_store.get_workspace(workspace_id)

    def process_item(
        self,
        item: RawTelegramItem,
        source: EventSource,
        workspaces: list[Workspace] | None = None,
    ) -> ItemResult:
        """Run one telegram through decode, normalize, dedup, match, dispatch.

        Args:
            item: Telegram envelope from either feed
            source: Feed it arrived through
            workspaces: Preloaded workspaces (loaded if not provided)

        Returns:
            ItemResult

        Raises:
            google.api_core.exceptions.GoogleAPIError: On storage errors;
                the item is retried by a later poll
        """
        allowed = self.config.dmdata.telegram_types

        if not is_earthquake_telegram(item, allowed):
            logger.debug("Skipping %s telegram %s", item.telegram_type, item.id)
            return ItemResult(item_id=item.id, status=ItemStatus.FILTERED)

        try:
            data = decode_body(item)
        except DecodeError as e:
            logger.warning("Dropping telegram %s: %s", item.id, str(e))
            return ItemResult(item_id=item.id, status=ItemStatus.DROPPED)

        event = normalize_telegram(item, data, allowed)
        if event is None:
            return ItemResult(item_id=item.id, status=ItemStatus.FILTERED)

        # Must precede try_accept: a failed read has to leave the event unlogged
        if workspaces is None:
            workspaces = self.load_workspaces()

        accepted = self.event_log.try_accept(event, source)
        if not accepted.inserted:
            return ItemResult(item_id=item.id, status=ItemStatus.DUPLICATE, event=event)

        logger.info("New event: %s", format_event_summary(event))

        matches = match_conditions(event, conditions_for(workspaces))
        if not matches:
            logger.info("Event %s matches no notification condition", event.event_id)

        outcomes = self.dispatcher.dispatch(
            event,
            matches,
            {ws.workspace_id: ws for ws in workspaces},
            Purpose.PRODUCTION,
        )

        return ItemResult(item_id=item.id, status=ItemStatus.ACCEPTED, event=event, outcomes=outcomes)

    def poll_once(self, health_source: HealthSource = HealthSource.REST_POLLER) -> ProcessingResult:
        """Poll the pull feed once and process every returned telegram.

        The cursor only advances when every item was handled, so a failed
        item is fetched again by the next poll. Successful runs mark the
        health source; failed runs record a failure.

        Args:
            health_source: Health source to mark (batch or rest_poller)

        Returns:
            ProcessingResult with details of what happened
        """
        cursor_name = f"dmdata_{HealthSource(health_source).value}"

        try:
            cursor = self.cursor_store.get(cursor_name)
            page = self.dmdata_client.poll(cursor)
            workspaces = self.load_workspaces() if page.items else []
        except Exception as e:
            error_msg = f"Failed to poll telegrams: {e}"
            logger.error(error_msg)
            self._mark_failure(health_source, error_msg)
            return ProcessingResult(errors=[error_msg])

        result = ProcessingResult(fetched=len(page.items))

        for item in page.items:
            try:
                result.items.append(self.process_item(item, EventSource.REST, workspaces))
            except Exception as e:
                error_msg = f"Failed to process telegram {item.id}: {e}"
                logger.exception(error_msg)
                result.errors.append(error_msg)

        try:
            if result.success:
                self.cursor_store.save(cursor_name, page.next_cursor)
                self.health_store.mark_run(health_source, details={
                    "fetched": result.fetched,
                    "accepted": result.accepted,
                    "duplicates": result.duplicates,
                    "notifications_sent": result.notifications_sent,
                })
            else:
                self._mark_failure(health_source, "; ".join(result.errors))
        except Exception as e:
            error_msg = f"Failed to save poll state: {e}"
            logger.error(error_msg)
            result.errors.append(error_msg)

        logger.info("Poll (%s) completed: %s", HealthSource(health_source).value, result.summary)
        return result

    def _mark_failure(self, source: HealthSource, error: str) -> None:
        try:
            self.health_store.mark_failure(source, error)
        except Exception as e:
            logger.error("Failed to record %s failure: %s", HealthSource(source).value, str(e))

    def reconcile(self) -> ReconcileResult:
        """Sweep pending dispatch claims."""
        workspaces = self.load_workspaces()
        return self.dispatcher.reconcile(
            {ws.workspace_id: ws for ws in workspaces},
            older_than_seconds=self.config.polling.reconcile_after_seconds,
        )

    def run_cron(self) -> ProcessingResult:
        """One scheduled batch run: poll, then reconcile pending dispatches.

        Returns:
            ProcessingResult of the poll, with the reconciliation result attached
        """
        result = self.poll_once(HealthSource.BATCH)

        try:
            result.reconcile = self.reconcile()
        except Exception as e:
            logger.exception("Reconciliation sweep failed")
            result.reconcile = ReconcileResult(errors=[str(e)])

        return result

    def send_training(
        self,
        workspace_id: str,
        training_id: str,
        channel_id: str | None = None,
        max_intensity: str | None = None,
        epicenter: str | None = None,
    ) -> DispatchOutcome:
        """Send a safety-confirmation drill to one workspace.

        Args:
            workspace_id: Target workspace
            training_id: Drill ID; each drill is sent at most once per workspace
            channel_id: Channel override (defaults to the workspace's channel)
            max_intensity: Intensity shown in the drill message
            epicenter: Epicenter shown in the drill message

        Returns:
            DispatchOutcome (failed if the workspace or channel is unknown)
        """
        workspace = self.find_workspace(workspace_id)
        workspaces = {workspace_id: workspace} if workspace is not None else {}
        event = training_event(
            training_id,
            datetime.now(timezone.utc),
            max_intensity=max_intensity,
            epicenter=epicenter,
        )

        channel = channel_id
        if channel is None and workspace is not None and workspace.condition is not None:
            channel = workspace.condition.notification_channel

        if not channel:
            return DispatchOutcome(
                event_id=event.event_id,
                workspace_id=workspace_id,
                channel_id="",
                purpose=Purpose.TRAINING,
                status=OutcomeStatus.FAILED,
                error="No channel configured for training",
            )

        match = NotificationMatch(workspace_id=workspace_id, channel_id=channel)
        outcomes = self.dispatcher.dispatch(event, [match], workspaces, Purpose.TRAINING)
        return outcomes[0]
