"""Firestore Client - Imperative Shell.

This module owns the connection to Google Cloud Firestore. The stores
(event log, dispatch records, health marks, cursors, workspaces) share
one FirestoreClient and only differ in the collection they use.

All I/O is contained here; key derivation is in the core module.
"""

import logging
from dataclasses import dataclass
from typing import Any

from google.cloud import firestore


logger = logging.getLogger(__name__)


@dataclass
class FirestoreConfig:
    """Configuration for Firestore client.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
    """
    project_id: str | None = None
    database: str | None = None


class FirestoreClient:
    """Lazily connected Firestore client shared by all stores.

    This is part of the imperative shell - it handles database I/O.
    """

    def __init__(
        self,
        config: FirestoreConfig | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize Firestore client.

        Args:
            config: Firestore configuration
            client: Pre-built client (used instead of connecting)
        """
        self.config = config or FirestoreConfig()
        self._client = client

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs = {}
            if self.config.project_id:
                kwargs['project'] = self.config.project_id
            if self.config.database:
                kwargs['database'] = self.config.database
            logger.info("Connecting to Firestore (database=%s)", self.config.database or "(default)")
            self._client = firestore.Client(**kwargs)
        return self._client

    def collection(self, name: str) -> Any:
        """Get a collection reference."""
        return self.client.collection(name)
