"""Notification Dispatcher - Sends matched events to Slack at most once.

Every (event_id, workspace_id, purpose) is claimed in the dispatch store
before the Slack call. A failed send releases the claim; a send whose
confirmation cannot be written keeps its pending claim, which blocks
duplicates until the reconciliation sweep resolves it against the
channel history.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from anpi.core.crypto import TokenCipher
from anpi.core.earthquake import EarthquakeEvent
from anpi.core.formatter import format_notification_message
from anpi.core.rules import NotificationMatch, Purpose, Workspace
from anpi.errors import DecryptionError
from anpi.shell.dispatch_store import DispatchRecord, DispatchStore
from anpi.shell.slack_client import SlackClient


logger = logging.getLogger(__name__)


METADATA_EVENT_TYPE = "anpi_notification"


class OutcomeStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNRECORDED = "unrecorded"


@dataclass
class DispatchOutcome:
    """Result of dispatching one event to one workspace.

    Attributes:
        event_id: Event that was dispatched
        workspace_id: Target workspace
        channel_id: Target channel
        purpose: production or training
        status: sent, skipped (already dispatched), failed, or unrecorded
            (sent but the record could not be confirmed)
        message_ts: Slack message timestamp when sent
        error: Error message if failed
    """
    event_id: str
    workspace_id: str
    channel_id: str
    purpose: Purpose
    status: OutcomeStatus
    message_ts: str | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        """True if a Slack message was posted by this dispatch."""
        return self.status in (OutcomeStatus.SENT, OutcomeStatus.UNRECORDED)


@dataclass
class ReconcileResult:
    """Result of a reconciliation sweep over pending claims."""
    confirmed: int = 0
    released: int = 0
    errors: list[str] = field(default_factory=list)


def _message_metadata(key: str, event_id: str, workspace_id: str, purpose: Purpose) -> dict[str, Any]:
    return {
        "event_type": METADATA_EVENT_TYPE,
        "event_payload": {
            "dispatch_key": key,
            "event_id": event_id,
            "workspace_id": workspace_id,
            "purpose": purpose.value,
        },
    }


def _find_dispatched_message(messages: list[dict[str, Any]], key: str) -> str | None:
    """Return the ts of the message carrying a dispatch key, if any."""
    for message in messages:
        metadata = message.get("metadata") or {}
        if metadata.get("event_type") != METADATA_EVENT_TYPE:
            continue
        if (metadata.get("event_payload") or {}).get("dispatch_key") == key:
            return message.get("ts")
    return None


class Dispatcher:
    """Fans an event out to matched workspaces.

    This class wires together:
    - Dispatch store (claims and records)
    - Token cipher (per-dispatch bot token decryption)
    - Core formatter (message payloads)
    - Slack client (chat.postMessage, conversations.history)
    """

    def __init__(
        self,
        slack_client: SlackClient,
        dispatch_store: DispatchStore,
        cipher: TokenCipher,
    ) -> None:
        self.slack_client = slack_client
        self.dispatch_store = dispatch_store
        self.cipher = cipher

    def dispatch(
        self,
        event: EarthquakeEvent,
        matches: list[NotificationMatch],
        workspaces: dict[str, Workspace],
        purpose: Purpose = Purpose.PRODUCTION,
    ) -> list[DispatchOutcome]:
        """Dispatch an event to every match.

        Each workspace is isolated: a failure for one never prevents the
        others and never raises.

        Args:
            event: Normalized event
            matches: Workspace/channel pairs from the condition matcher
            workspaces: Workspaces by ID
            purpose: production or training

        Returns:
            One outcome per match
        """
        outcomes = []

        for match in matches:
            try:
                outcome = self._dispatch_one(event, match, workspaces.get(match.workspace_id), purpose)
            except Exception as e:
                logger.exception(
                    "Dispatch of %s to workspace %s failed",
                    event.event_id, match.workspace_id,
                )
                outcome = DispatchOutcome(
                    event_id=event.event_id,
                    workspace_id=match.workspace_id,
                    channel_id=match.channel_id,
                    purpose=purpose,
                    status=OutcomeStatus.FAILED,
                    error=str(e),
                )
            outcomes.append(outcome)

        return outcomes

    def _dispatch_one(
        self,
        event: EarthquakeEvent,
        match: NotificationMatch,
        workspace: Workspace | None,
        purpose: Purpose,
    ) -> DispatchOutcome:
        def outcome(status: OutcomeStatus, **kwargs: Any) -> DispatchOutcome:
            return DispatchOutcome(
                event_id=event.event_id,
                workspace_id=match.workspace_id,
                channel_id=match.channel_id,
                purpose=purpose,
                status=status,
                **kwargs,
            )

        if workspace is None:
            logger.error("Workspace %s not found", match.workspace_id)
            return outcome(OutcomeStatus.FAILED, error="Workspace not found")

        if self.dispatch_store.exists(event.event_id, match.workspace_id, purpose):
            logger.info(
                "Event %s already dispatched to %s (%s)",
                event.event_id, match.workspace_id, purpose.value,
            )
            return outcome(OutcomeStatus.SKIPPED)

        key = self.dispatch_store.claim(event.event_id, match.workspace_id, purpose, match.channel_id)
        if key is None:
            return outcome(OutcomeStatus.SKIPPED)

        try:
            if workspace.bot_token is None:
                raise DecryptionError("Workspace has no bot token")
            token = self.cipher.decrypt(workspace.bot_token)

            payload = format_notification_message(
                event,
                departments=workspace.departments,
                template=workspace.template_for(purpose),
                purpose=purpose,
            )
            response = self.slack_client.post_message(
                token,
                match.channel_id,
                payload,
                metadata=_message_metadata(key, event.event_id, match.workspace_id, purpose),
            )
        except Exception as e:
            self._release(key)
            logger.error(
                "Failed to send %s to workspace %s: %s",
                event.event_id, match.workspace_id, str(e),
            )
            return outcome(OutcomeStatus.FAILED, error=str(e))

        if not response.success:
            self._release(key)
            logger.error(
                "Slack rejected %s for workspace %s: %s",
                event.event_id, match.workspace_id, response.error,
            )
            return outcome(OutcomeStatus.FAILED, error=response.error)

        try:
            self.dispatch_store.confirm(key, response.ts)
        except Exception as e:
            logger.error(
                "Sent %s to workspace %s (ts=%s) but could not record it; "
                "left pending for reconciliation: %s",
                event.event_id, match.workspace_id, response.ts, str(e),
            )
            return outcome(OutcomeStatus.UNRECORDED, message_ts=response.ts, error=str(e))

        logger.info(
            "Dispatched %s to workspace %s channel %s (%s)",
            event.event_id, match.workspace_id, match.channel_id, purpose.value,
        )
        return outcome(OutcomeStatus.SENT, message_ts=response.ts)

    def _release(self, key: str) -> None:
        """Release a claim; a failed release is left to reconciliation."""
        try:
            self.dispatch_store.release(key)
        except Exception as e:
            logger.error("Could not release dispatch claim %s: %s", key, str(e))

    def reconcile(
        self,
        workspaces: dict[str, Workspace],
        older_than_seconds: float,
        now: datetime | None = None,
    ) -> ReconcileResult:
        """Resolve pending claims against the Slack channel history.

        A claim whose message is found is confirmed with that message's ts;
        a claim with no message is released so a later run can retry.

        Args:
            workspaces: Workspaces by ID
            older_than_seconds: Only claims older than this are examined
            now: Current time (defaults to now)

        Returns:
            ReconcileResult with counts and per-claim errors
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=older_than_seconds)
        result = ReconcileResult()

        for record in self.dispatch_store.pending_older_than(cutoff):
            try:
                self._reconcile_one(record, workspaces.get(record.workspace_id), result)
            except Exception as e:
                logger.exception("Reconciliation of claim %s failed", record.key)
                result.errors.append(f"{record.key}: {e}")

        if result.confirmed or result.released:
            logger.info(
                "Reconciled dispatch claims: %d confirmed, %d released",
                result.confirmed, result.released,
            )

        return result

    def _reconcile_one(
        self,
        record: DispatchRecord,
        workspace: Workspace | None,
        result: ReconcileResult,
    ) -> None:
        if workspace is None or workspace.bot_token is None:
            logger.warning("Releasing claim %s: workspace %s unavailable", record.key, record.workspace_id)
            self.dispatch_store.release(record.key)
            result.released += 1
            return

        token = self.cipher.decrypt(workspace.bot_token)
        oldest = record.claimed_at.timestamp() if record.claimed_at else None
        ts = None
        cursor = None

        # Every page is read before a claim counts as undelivered
        while True:
            history = self.slack_client.conversations_history(
                token, record.channel_id, oldest=oldest, cursor=cursor
            )
            if not history.success:
                result.errors.append(f"{record.key}: {history.error}")
                return

            ts = _find_dispatched_message(history.data.get("messages", []), record.key)
            cursor = (history.data.get("response_metadata") or {}).get("next_cursor")
            if ts or not cursor:
                break

        if ts:
            logger.info("Claim %s was delivered (ts=%s), confirming", record.key, ts)
            self.dispatch_store.confirm(record.key, ts)
            result.confirmed += 1
        else:
            logger.info("Claim %s has no delivered message, releasing", record.key)
            self.dispatch_store.release(record.key)
            result.released += 1
