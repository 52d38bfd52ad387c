"""Tests for the dedup event log."""

import dataclasses
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import ServiceUnavailable

from anpi.core.dedup import payload_hash
from anpi.core.earthquake import normalize_telegram
from anpi.core.telegram import EventSource
from anpi.shell.event_log import EventLogStore
from anpi.shell.firestore_client import FirestoreClient
from conftest import telegram_body, telegram_item


@pytest.fixture
def event():
    return normalize_telegram(telegram_item(), telegram_body())


@pytest.fixture
def store(firestore_client):
    return EventLogStore(firestore_client)


class TestTryAccept:
    """Tests for EventLogStore.try_accept()."""

    def test_first_insert(self, store, event, fake_db):
        """The first offer of an event creates one record."""
        result = store.try_accept(event, EventSource.WEBSOCKET)

        assert result.inserted is True
        assert result.payload_hash == payload_hash(event)

        docs = list(fake_db.docs("earthquake_event_logs").values())
        assert len(docs) == 1
        assert docs[0]["event_id"] == "EQ001"
        assert docs[0]["source"] == "websocket"
        assert docs[0]["event"]["max_intensity"] == "5-"

    def test_same_content_from_other_feed_is_duplicate(self, store, event, fake_db):
        """Websocket then REST with the same content: true then false, one record."""
        first = store.try_accept(event, EventSource.WEBSOCKET)
        second = store.try_accept(event, EventSource.REST)

        assert first.inserted is True
        assert second.inserted is False
        assert len(fake_db.docs("earthquake_event_logs")) == 1

    def test_changed_content_is_new_record(self, store, event, fake_db):
        """A corrected telegram for the same event is logged again."""
        store.try_accept(event, EventSource.REST)
        result = store.try_accept(dataclasses.replace(event, max_intensity="5+"), EventSource.REST)

        assert result.inserted is True
        assert len(fake_db.docs("earthquake_event_logs")) == 2

    def test_custom_collection(self, firestore_client, event, fake_db):
        EventLogStore(firestore_client, "events").try_accept(event, EventSource.REST)
        assert len(fake_db.docs("events")) == 1

    def test_storage_errors_propagate(self, event):
        """Errors other than the uniqueness conflict are raised."""
        db = MagicMock()
        db.collection.return_value.document.return_value.create.side_effect = ServiceUnavailable("down")
        store = EventLogStore(FirestoreClient(client=db))

        with pytest.raises(ServiceUnavailable):
            store.try_accept(event, EventSource.REST)
