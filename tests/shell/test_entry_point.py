"""Tests for the Cloud Function entry point."""

from unittest.mock import Mock, patch

import pytest

from anpi.core.config import Config
from anpi.errors import ConfigError
from anpi.main import fetch_earthquakes, fetch_earthquakes_pubsub, is_authorized
from anpi.orchestrator import ProcessingResult


def _request(authorization=None):
    request = Mock()
    request.headers = {"Authorization": authorization} if authorization else {}
    return request


def _orchestrator(result=None, cron_secret="s3cret"):
    orchestrator = Mock()
    orchestrator.config = Config(cron_secret=cron_secret)
    orchestrator.run_cron.return_value = result or ProcessingResult()
    return orchestrator


class TestIsAuthorized:
    """Tests for is_authorized function."""

    def test_no_secret_configured(self):
        assert is_authorized(None, None) is True

    def test_bearer_token(self):
        assert is_authorized("Bearer s3cret", "s3cret") is True
        assert is_authorized("Bearer wrong", "s3cret") is False
        assert is_authorized("s3cret", "s3cret") is False
        assert is_authorized(None, "s3cret") is False


class TestFetchEarthquakes:
    """Tests for fetch_earthquakes HTTP entry point."""

    def test_success(self):
        orchestrator = _orchestrator(ProcessingResult(fetched=3))

        with patch("anpi.main._build_orchestrator", return_value=orchestrator):
            body, status = fetch_earthquakes(_request("Bearer s3cret"))

        assert status == 200
        assert body["fetched"] == 3
        orchestrator.run_cron.assert_called_once()

    def test_unauthorized(self):
        orchestrator = _orchestrator()

        with patch("anpi.main._build_orchestrator", return_value=orchestrator):
            body, status = fetch_earthquakes(_request("Bearer nope"))

        assert status == 401
        assert body == {"success": False, "error": "Unauthorized"}
        orchestrator.run_cron.assert_not_called()

    def test_failed_run(self):
        orchestrator = _orchestrator(ProcessingResult(errors=["a", "b"]))

        with patch("anpi.main._build_orchestrator", return_value=orchestrator):
            body, status = fetch_earthquakes(_request("Bearer s3cret"))

        assert status == 500
        assert body["success"] is False
        assert body["error"] == "a; b"

    def test_config_error(self):
        with patch("anpi.main._build_orchestrator", side_effect=ConfigError("no key")):
            body, status = fetch_earthquakes(_request())

        assert status == 500
        assert body == {"success": False, "error": "no key"}


class TestFetchEarthquakesPubsub:
    """Tests for the Pub/Sub entry point."""

    def test_runs_batch(self):
        orchestrator = _orchestrator()

        with patch("anpi.main._build_orchestrator", return_value=orchestrator):
            fetch_earthquakes_pubsub(Mock())

        orchestrator.run_cron.assert_called_once()

    def test_errors_propagate(self):
        with patch("anpi.main._build_orchestrator", side_effect=ConfigError("no key")):
            with pytest.raises(ConfigError):
                fetch_earthquakes_pubsub(Mock())
