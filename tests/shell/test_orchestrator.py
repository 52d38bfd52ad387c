"""Tests for the Orchestrator module.

Tests the coordination between functional core and imperative shell.
The stores run against the in-memory Firestore; the provider and Slack
clients are mocks.
"""

from dataclasses import replace
from unittest.mock import Mock

import pytest
from google.api_core.exceptions import ServiceUnavailable

from anpi.core.config import Config
from anpi.core.health import HealthSource
from anpi.core.rules import Purpose
from anpi.core.telegram import EventSource
from anpi.dispatcher import Dispatcher, OutcomeStatus
from anpi.orchestrator import ItemStatus, Orchestrator
from anpi.shell.cursor_store import CursorStore
from anpi.shell.dispatch_store import DispatchStatus, DispatchStore
from anpi.shell.dmdata_client import PollResult
from anpi.shell.event_log import EventLogStore
from anpi.shell.health_store import HealthStore
from anpi.shell.slack_client import SlackResponse
from anpi.shell.workspace_store import WorkspaceStore
from conftest import make_workspace, telegram_body, telegram_item


@pytest.fixture
def slack():
    client = Mock()
    client.post_message.return_value = SlackResponse(
        success=True, status_code=200, data={"ok": True, "ts": "1700000000.000100"}
    )
    client.conversations_history.return_value = SlackResponse(
        success=True, status_code=200, data={"ok": True, "messages": []}
    )
    return client


@pytest.fixture
def dmdata():
    client = Mock()
    client.poll.return_value = PollResult(items=[], next_cursor="cursor-1")
    return client


@pytest.fixture
def workspace(cipher):
    return make_workspace(cipher, "T001", "C001", min_intensity="4", target_prefectures=("Tokyo",))


@pytest.fixture
def orchestrator(firestore_client, cipher, slack, dmdata, workspace):
    return Orchestrator(
        config=Config(workspaces=[workspace]),
        dmdata_client=dmdata,
        event_log=EventLogStore(firestore_client),
        dispatcher=Dispatcher(slack, DispatchStore(firestore_client), cipher),
        health_store=HealthStore(firestore_client),
        cursor_store=CursorStore(firestore_client),
        workspace_store=WorkspaceStore(firestore_client),
    )


def _sent_records(fake_db):
    return {
        (doc["event_id"], doc["workspace_id"], doc["purpose"])
        for doc in fake_db.docs("earthquake_notifications").values()
        if doc["status"] == DispatchStatus.SENT.value
    }


class TestProcessItem:
    """Tests for Orchestrator.process_item()."""

    def test_end_to_end_notification(self, orchestrator, slack, fake_db):
        """A matching telegram produces one message and one production record."""
        result = orchestrator.process_item(telegram_item(), EventSource.WEBSOCKET)

        assert result.status == ItemStatus.ACCEPTED
        assert result.event.event_id == "EQ001"
        assert result.event.magnitude == 5.2
        assert result.event.max_intensity == "5-"
        assert [o.status for o in result.outcomes] == [OutcomeStatus.SENT]

        slack.post_message.assert_called_once()
        assert slack.post_message.call_args.args[1] == "C001"
        assert _sent_records(fake_db) == {("EQ001", "T001", "production")}

    def test_same_event_from_both_feeds_is_logged_once(self, orchestrator, slack, fake_db):
        """The push and pull copies of a telegram dedup to one log entry."""
        first = orchestrator.process_item(telegram_item("tg-1"), EventSource.WEBSOCKET)
        second = orchestrator.process_item(telegram_item("tg-1"), EventSource.REST)

        assert first.status == ItemStatus.ACCEPTED
        assert second.status == ItemStatus.DUPLICATE

        logs = list(fake_db.docs("earthquake_event_logs").values())
        assert len(logs) == 1
        assert logs[0]["source"] == "websocket"
        assert slack.post_message.call_count == 1

    def test_updated_telegram_is_logged_but_not_resent(self, orchestrator, slack, fake_db):
        """A revised telegram for the same event is a new log entry but no new message."""
        orchestrator.process_item(telegram_item("tg-1"), EventSource.REST)
        revised = orchestrator.process_item(
            telegram_item("tg-2", body=telegram_body(serial_no="2", magnitude="5.4")),
            EventSource.REST,
        )

        assert revised.status == ItemStatus.ACCEPTED
        assert [o.status for o in revised.outcomes] == [OutcomeStatus.SKIPPED]
        assert len(fake_db.docs("earthquake_event_logs")) == 2
        assert slack.post_message.call_count == 1

    def test_below_threshold_is_not_sent(self, orchestrator, slack, fake_db):
        """Events under the condition's minimum intensity reach nobody."""
        body = telegram_body(max_int="3", prefectures=[("Tokyo", "3")])
        result = orchestrator.process_item(telegram_item(body=body), EventSource.REST)

        assert result.status == ItemStatus.ACCEPTED
        assert result.outcomes == []
        slack.post_message.assert_not_called()
        assert _sent_records(fake_db) == set()

    def test_other_prefecture_is_not_sent(self, orchestrator, slack):
        body = telegram_body(prefectures=[("Osaka", "6-")], max_int="6-")
        orchestrator.process_item(telegram_item(body=body), EventSource.REST)

        slack.post_message.assert_not_called()

    def test_non_earthquake_telegram_is_filtered(self, orchestrator, slack):
        result = orchestrator.process_item(telegram_item(telegram_type="VTSE41"), EventSource.REST)

        assert result.status == ItemStatus.FILTERED
        slack.post_message.assert_not_called()

    def test_undecodable_body_is_dropped(self, orchestrator, fake_db):
        item = replace(telegram_item(), body="not base64!")

        result = orchestrator.process_item(item, EventSource.REST)

        assert result.status == ItemStatus.DROPPED
        assert fake_db.docs("earthquake_event_logs") == {}

    def test_workspaces_from_firestore(self, orchestrator, fake_db, cipher, slack):
        """Without file workspaces, Firestore workspaces are used."""
        orchestrator.config = Config()
        fake_db.docs("workspaces")["T9"] = {
            "name": "Stored",
            "bot_token": cipher.encrypt("xoxb-9").to_dict(),
            "condition": {"min_intensity": "3", "notification_channel": "C9999999"},
        }

        orchestrator.process_item(telegram_item(), EventSource.REST)

        assert slack.post_message.call_args.args[:2] == ("xoxb-9", "C9999999")

    def test_workspace_read_failure_leaves_event_retryable(
        self, orchestrator, dmdata, slack, fake_db, workspace
    ):
        """A failed workspace read on the push path does not consume the event."""
        orchestrator.config = Config()
        orchestrator.workspace_store = Mock()
        orchestrator.workspace_store.list_workspaces.side_effect = [
            ServiceUnavailable("firestore blip"),
            [workspace],
            [workspace],
        ]

        with pytest.raises(ServiceUnavailable):
            orchestrator.process_item(telegram_item(), EventSource.WEBSOCKET)

        assert fake_db.docs("earthquake_event_logs") == {}

        dmdata.poll.return_value = PollResult(items=[telegram_item()], next_cursor="c")
        result = orchestrator.poll_once()

        assert [item.status for item in result.items] == [ItemStatus.ACCEPTED]
        assert slack.post_message.call_count == 1
        assert _sent_records(fake_db) == {("EQ001", "T001", "production")}


class TestOrdering:
    """Delivery order does not change the final dispatch state."""

    @pytest.mark.parametrize("order", [("a", "b"), ("b", "a")])
    def test_order_independent(self, orchestrator, fake_db, order):
        items = {
            "a": telegram_item("tg-a", body=telegram_body(event_id="EQ001")),
            "b": telegram_item("tg-b", body=telegram_body(event_id="EQ002", max_int="6+")),
        }
        for key in order:
            orchestrator.process_item(items[key], EventSource.REST)

        assert _sent_records(fake_db) == {
            ("EQ001", "T001", "production"),
            ("EQ002", "T001", "production"),
        }

    def test_repeated_runs_send_once(self, orchestrator, dmdata, slack):
        """Polling the same page again never sends again."""
        dmdata.poll.return_value = PollResult(items=[telegram_item()], next_cursor="c")

        for _ in range(3):
            orchestrator.poll_once()

        assert slack.post_message.call_count == 1


class TestIsolation:
    """A failure for one workspace does not affect the others."""

    def test_one_workspace_fails(self, orchestrator, slack, cipher, fake_db):
        orchestrator.config = Config(workspaces=[
            make_workspace(cipher, "T001", "C001"),
            make_workspace(cipher, "T002", "C002"),
        ])
        slack.post_message.side_effect = [
            SlackResponse(success=False, status_code=200, error="invalid_auth"),
            SlackResponse(success=True, status_code=200, data={"ok": True, "ts": "2.0"}),
        ]

        result = orchestrator.process_item(telegram_item(), EventSource.REST)

        assert [o.status for o in result.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.SENT]
        assert _sent_records(fake_db) == {("EQ001", "T002", "production")}


class TestPollOnce:
    """Tests for Orchestrator.poll_once()."""

    def test_cursor_and_health_on_success(self, orchestrator, dmdata):
        dmdata.poll.return_value = PollResult(items=[telegram_item()], next_cursor="cursor-2")

        result = orchestrator.poll_once(HealthSource.REST_POLLER)

        assert result.success is True
        assert result.fetched == 1
        assert result.accepted == 1
        assert result.notifications_sent == 1
        dmdata.poll.assert_called_once_with(None)
        assert orchestrator.cursor_store.get("dmdata_rest_poller") == "cursor-2"
        mark = orchestrator.health_store.get_mark(HealthSource.REST_POLLER)
        assert mark.details["accepted"] == 1

    def test_next_poll_uses_saved_cursor(self, orchestrator, dmdata):
        orchestrator.poll_once(HealthSource.BATCH)
        orchestrator.poll_once(HealthSource.BATCH)

        assert dmdata.poll.call_args_list[1].args == ("cursor-1",)

    def test_provider_failure_records_health_failure(self, orchestrator, dmdata):
        dmdata.poll.side_effect = ConnectionError("provider down")

        result = orchestrator.poll_once(HealthSource.REST_POLLER)

        assert result.success is False
        assert "provider down" in result.errors[0]
        mark = orchestrator.health_store.get_mark(HealthSource.REST_POLLER)
        assert mark.consecutive_failures == 1
        assert mark.last_run_at is None

    def test_item_failure_keeps_cursor(self, orchestrator, dmdata):
        """A failed item is fetched again because the cursor does not move."""
        orchestrator.cursor_store.save("dmdata_batch", "cursor-0")
        orchestrator.event_log.try_accept = Mock(side_effect=ServiceUnavailable("down"))
        dmdata.poll.return_value = PollResult(items=[telegram_item()], next_cursor="cursor-9")

        result = orchestrator.poll_once(HealthSource.BATCH)

        assert result.success is False
        assert "tg-001" in result.errors[0]
        assert orchestrator.cursor_store.get("dmdata_batch") == "cursor-0"
        assert orchestrator.health_store.get_mark(HealthSource.BATCH).consecutive_failures == 1

    def test_to_response(self, orchestrator):
        response = orchestrator.poll_once().to_response()

        assert response["success"] is True
        assert response["fetched"] == 0
        assert response["message"].startswith("Fetched 0 telegrams")


class TestRunCron:
    """Tests for Orchestrator.run_cron()."""

    def test_polls_and_reconciles(self, orchestrator, dmdata, slack, fake_db):
        """A stale pending claim with no message is released by the cron."""
        key = orchestrator.dispatcher.dispatch_store.claim("EQ7", "T001", Purpose.PRODUCTION, "C001")
        orchestrator.config.polling.reconcile_after_seconds = -1

        result = orchestrator.run_cron()

        assert result.success is True
        assert result.reconcile.released == 1
        assert key not in fake_db.docs("earthquake_notifications")
        assert orchestrator.health_store.get_mark(HealthSource.BATCH) is not None

    def test_reconcile_failure_is_reported(self, orchestrator):
        orchestrator.dispatcher.reconcile = Mock(side_effect=RuntimeError("sweep"))

        result = orchestrator.run_cron()

        assert result.reconcile.errors == ["sweep"]


class TestSendTraining:
    """Tests for Orchestrator.send_training()."""

    def test_sends_training_once(self, orchestrator, slack, fake_db):
        first = orchestrator.send_training("T001", "drill-1", max_intensity="6弱")
        second = orchestrator.send_training("T001", "drill-1")

        assert first.status == OutcomeStatus.SENT
        assert first.event_id == "training-drill-1"
        assert first.channel_id == "C001"
        assert second.status == OutcomeStatus.SKIPPED
        assert slack.post_message.call_count == 1
        assert _sent_records(fake_db) == {("training-drill-1", "T001", "training")}

    def test_channel_override(self, orchestrator, slack):
        outcome = orchestrator.send_training("T001", "drill-2", channel_id="C0TRAIN")

        assert outcome.channel_id == "C0TRAIN"
        assert slack.post_message.call_args.args[1] == "C0TRAIN"

    def test_unknown_workspace(self, orchestrator, slack):
        outcome = orchestrator.send_training("T404", "drill-3")

        assert outcome.status == OutcomeStatus.FAILED
        slack.post_message.assert_not_called()

    def test_workspace_looked_up_in_firestore(self, orchestrator, fake_db, cipher, slack):
        """Without file workspaces, only the target workspace is read."""
        orchestrator.config = Config()
        fake_db.docs("workspaces")["T9"] = {
            "name": "Stored",
            "bot_token": cipher.encrypt("xoxb-9").to_dict(),
            "condition": {"min_intensity": "3", "notification_channel": "C9999999"},
        }

        outcome = orchestrator.send_training("T9", "drill-4")

        assert outcome.status == OutcomeStatus.SENT
        assert slack.post_message.call_args.args[:2] == ("xoxb-9", "C9999999")
