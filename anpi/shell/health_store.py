"""Health Marks - Imperative Shell.

One document per source records its last successful run and the number
of failures since. Classification happens at read time in the core.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from google.cloud import firestore

from anpi.core.health import (
    DEFAULT_THRESHOLDS,
    HealthMark,
    HealthSource,
    HealthStatus,
    HealthThresholds,
    classify_health,
)
from anpi.shell.firestore_client import FirestoreClient


logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "health_marks"


class HealthStore:
    """Records and reads liveness marks.

    This is part of the imperative shell - it handles database I/O.
    """

    def __init__(
        self,
        firestore_client: FirestoreClient,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.firestore = firestore_client
        self.collection = collection

    def _doc(self, source: HealthSource) -> Any:
        return self.firestore.collection(self.collection).document(HealthSource(source).value)

    def mark_run(self, source: HealthSource, details: dict[str, Any] | None = None) -> None:
        """Record a successful run now and reset the failure count.

        This method performs database I/O.
        """
        self._doc(source).set({
            "source": HealthSource(source).value,
            "last_run_at": datetime.now(timezone.utc),
            "details": details or {},
            "consecutive_failures": 0,
            "last_error": None,
        }, merge=True)

    def mark_failure(self, source: HealthSource, error: str) -> None:
        """Record a failed run; last_run_at is left untouched.

        This method performs database I/O.
        """
        self._doc(source).set({
            "source": HealthSource(source).value,
            "consecutive_failures": firestore.Increment(1),
            "last_error": error,
            "last_failure_at": datetime.now(timezone.utc),
        }, merge=True)

    def get_mark(self, source: HealthSource) -> HealthMark | None:
        """Read the mark for a source, None if nothing was ever recorded."""
        snapshot = self._doc(source).get()
        if not snapshot.exists:
            return None

        data = snapshot.to_dict()
        return HealthMark(
            source=HealthSource(source),
            last_run_at=data.get("last_run_at"),
            details=data.get("details") or {},
            consecutive_failures=int(data.get("consecutive_failures") or 0),
            last_error=data.get("last_error"),
        )

    def get_status(
        self,
        source: HealthSource,
        thresholds: HealthThresholds | None = None,
        now: datetime | None = None,
    ) -> HealthStatus:
        """Read and classify a source's health."""
        source = HealthSource(source)
        return classify_health(
            self.get_mark(source),
            thresholds or DEFAULT_THRESHOLDS[source],
            now or datetime.now(timezone.utc),
        )
