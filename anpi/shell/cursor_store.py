"""Poll Cursor - Imperative Shell.

Persists the pull feed's nextPooling token so polling resumes where it
left off across restarts and stateless cron invocations.
"""

import logging
from datetime import datetime, timezone

from anpi.shell.firestore_client import FirestoreClient


logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "poller_state"


class CursorStore:
    """Named cursor tokens in Firestore."""

    def __init__(
        self,
        firestore_client: FirestoreClient,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.firestore = firestore_client
        self.collection = collection

    def get(self, name: str) -> str | None:
        snapshot = self.firestore.collection(self.collection).document(name).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict().get("cursor_token")

    def save(self, name: str, token: str | None) -> None:
        """Store a cursor token; None clears it."""
        self.firestore.collection(self.collection).document(name).set({
            "name": name,
            "cursor_token": token,
            "updated_at": datetime.now(timezone.utc),
        })
        logger.debug("Saved cursor %s", name)
