"""Dispatch Records - Imperative Shell.

A dispatch record exists at most once per (event_id, workspace_id,
purpose). It is claimed with an atomic create before the Slack call
(status "pending") and confirmed afterwards (status "sent"). A failed send
releases the claim, so only confirmed sends leave a record behind.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from anpi.core.dedup import dispatch_key
from anpi.core.rules import Purpose
from anpi.shell.firestore_client import FirestoreClient


logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "earthquake_notifications"


class DispatchStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"


@dataclass
class DispatchRecord:
    """A stored dispatch record.

    Attributes:
        key: Document ID (also attached to the Slack message metadata)
        event_id: Event that was dispatched
        workspace_id: Target workspace
        purpose: production or training
        channel_id: Slack channel
        status: pending until the send is confirmed
        claimed_at: When the claim was created
        sent_at: When the send was confirmed
        slack_message_ts: Slack message timestamp
    """
    key: str
    event_id: str
    workspace_id: str
    purpose: Purpose
    channel_id: str
    status: DispatchStatus
    claimed_at: datetime | None = None
    sent_at: datetime | None = None
    slack_message_ts: str | None = None


def _record_from_doc(key: str, data: dict[str, Any]) -> DispatchRecord:
    return DispatchRecord(
        key=key,
        event_id=data.get("event_id", ""),
        workspace_id=data.get("workspace_id", ""),
        purpose=Purpose(data.get("purpose", Purpose.PRODUCTION.value)),
        channel_id=data.get("channel_id", ""),
        status=DispatchStatus(data.get("status", DispatchStatus.SENT.value)),
        claimed_at=data.get("claimed_at"),
        sent_at=data.get("sent_at"),
        slack_message_ts=data.get("slack_message_ts"),
    )


class DispatchStore:
    """Claim-based storage of dispatch records.

    This is part of the imperative shell - it handles database I/O.
    """

    def __init__(
        self,
        firestore_client: FirestoreClient,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.firestore = firestore_client
        self.collection = collection

    def _doc(self, key: str) -> Any:
        return self.firestore.collection(self.collection).document(key)

    def get(self, event_id: str, workspace_id: str, purpose: Purpose) -> DispatchRecord | None:
        """Fetch the record for a dispatch key, pending or sent."""
        key = dispatch_key(event_id, workspace_id, Purpose(purpose).value)
        snapshot = self._doc(key).get()
        if not snapshot.exists:
            return None
        return _record_from_doc(key, snapshot.to_dict())

    def exists(self, event_id: str, workspace_id: str, purpose: Purpose) -> bool:
        return self.get(event_id, workspace_id, purpose) is not None

    def claim(
        self,
        event_id: str,
        workspace_id: str,
        purpose: Purpose,
        channel_id: str,
    ) -> str | None:
        """Atomically claim a dispatch.

        This method performs database I/O.

        Returns:
            The dispatch key, or None if another run already holds it
        """
        purpose = Purpose(purpose)
        key = dispatch_key(event_id, workspace_id, purpose.value)

        try:
            self._doc(key).create({
                "event_id": event_id,
                "workspace_id": workspace_id,
                "purpose": purpose.value,
                "channel_id": channel_id,
                "status": DispatchStatus.PENDING.value,
                "claimed_at": datetime.now(timezone.utc),
                "sent_at": None,
                "slack_message_ts": None,
            })
        except AlreadyExists:
            logger.info(
                "Dispatch of %s to %s (%s) already claimed",
                event_id, workspace_id, purpose.value,
            )
            return None

        return key

    def confirm(self, key: str, message_ts: str | None) -> None:
        """Mark a claimed dispatch as sent.

        Raises:
            google.api_core.exceptions.GoogleAPIError: On storage errors
        """
        self._doc(key).update({
            "status": DispatchStatus.SENT.value,
            "sent_at": datetime.now(timezone.utc),
            "slack_message_ts": message_ts,
        })

    def release(self, key: str) -> None:
        """Delete a claim so a later run may retry the dispatch."""
        self._doc(key).delete()

    def pending_older_than(self, cutoff: datetime) -> list[DispatchRecord]:
        """List pending claims created before a cutoff.

        This method performs database I/O.
        """
        query = self.firestore.collection(self.collection).where(
            filter=firestore.FieldFilter("status", "==", DispatchStatus.PENDING.value)
        )

        records = []
        for snapshot in query.stream():
            record = _record_from_doc(snapshot.id, snapshot.to_dict())
            if record.claimed_at is not None and record.claimed_at < cutoff:
                records.append(record)

        return records
