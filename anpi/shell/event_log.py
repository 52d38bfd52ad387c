"""Earthquake Event Log - Imperative Shell.

The dedup log is the single sink both feeds write to. A record is keyed
by (event_id, payload_hash) and created with Firestore's atomic create,
so two feeds racing on the same content can never both insert.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from google.api_core.exceptions import AlreadyExists

from anpi.core.dedup import event_log_key, payload_hash
from anpi.core.earthquake import EarthquakeEvent, event_to_dict
from anpi.core.telegram import EventSource
from anpi.shell.firestore_client import FirestoreClient


logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "earthquake_event_logs"


@dataclass
class AcceptResult:
    """Outcome of offering an event to the dedup log.

    Attributes:
        inserted: True if this call created the record
        event_id: Provider event ID
        payload_hash: SHA-256 of the event's canonical JSON
    """
    inserted: bool
    event_id: str
    payload_hash: str


class EventLogStore:
    """Append-only, content-addressed log of normalized events.

    This is part of the imperative shell - it handles database I/O.
    """

    def __init__(
        self,
        firestore_client: FirestoreClient,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.firestore = firestore_client
        self.collection = collection

    def try_accept(self, event: EarthquakeEvent, source: EventSource) -> AcceptResult:
        """Insert the event if its content has not been seen before.

        This method performs database I/O.

        Args:
            event: Normalized event
            source: Feed the event arrived through

        Returns:
            AcceptResult; inserted is False for duplicates

        Raises:
            google.api_core.exceptions.GoogleAPIError: On storage errors
                other than the uniqueness conflict
        """
        content_hash = payload_hash(event)
        doc_ref = self.firestore.collection(self.collection).document(
            event_log_key(event.event_id, content_hash)
        )

        try:
            doc_ref.create({
                "event_id": event.event_id,
                "payload_hash": content_hash,
                "source": EventSource(source).value,
                "fetched_at": datetime.now(timezone.utc),
                "event": event_to_dict(event),
            })
        except AlreadyExists:
            logger.info(
                "Duplicate event %s (hash %s) from %s, skipping",
                event.event_id,
                content_hash[:12],
                EventSource(source).value,
            )
            return AcceptResult(inserted=False, event_id=event.event_id, payload_hash=content_hash)

        logger.info(
            "Accepted event %s (hash %s) from %s",
            event.event_id,
            content_hash[:12],
            EventSource(source).value,
        )
        return AcceptResult(inserted=True, event_id=event.event_id, payload_hash=content_hash)
