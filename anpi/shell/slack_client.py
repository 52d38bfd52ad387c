"""Slack Web API Client - Imperative Shell.

This module handles HTTP communication with the Slack Web API using a
workspace bot token. All I/O is contained here; message formatting is in
the core module.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import requests


logger = logging.getLogger(__name__)


SLACK_API_BASE = "https://slack.com/api"

# Default timeout for API requests (seconds)
DEFAULT_TIMEOUT = 10


@dataclass
class SlackResponse:
    """Response from a Slack Web API call.

    Attributes:
        success: True if HTTP 200 and "ok": true
        status_code: HTTP status code (0 for network errors)
        error: Slack error code or transport error message if failed
        data: Parsed response body
    """
    success: bool
    status_code: int
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ts(self) -> str | None:
        """Timestamp of a posted message."""
        return self.data.get("ts")


class SlackClient:
    """Client for the Slack Web API.

    The bot token is passed per call and never stored on the client.

    This is part of the imperative shell - it handles HTTP I/O.
    """

    def __init__(
        self,
        base_url: str = SLACK_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize Slack client.

        Args:
            base_url: Slack Web API base URL
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _call(
        self,
        method: str,
        token: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> SlackResponse:
        """Call a Web API method and wrap the outcome.

        POST with a JSON body when json_body is given, GET otherwise.
        """
        url = f"{self.base_url}/{method}"
        headers = {"Authorization": f"Bearer {token}"}

        try:
            if json_body is not None:
                headers["Content-Type"] = "application/json; charset=utf-8"
                response = requests.post(url, json=json_body, headers=headers, timeout=self.timeout)
            else:
                response = requests.get(url, params=params, headers=headers, timeout=self.timeout)

        except requests.Timeout:
            logger.error("Slack %s request timed out", method)
            return SlackResponse(success=False, status_code=0, error="Request timed out")
        except requests.RequestException as e:
            logger.error("Slack %s request failed: %s", method, str(e))
            return SlackResponse(success=False, status_code=0, error=str(e))

        if response.status_code == 429:
            logger.warning("Slack %s rate limited", method)
            return SlackResponse(success=False, status_code=429, error="ratelimited")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200 or not data.get("ok"):
            error = data.get("error") or response.text or f"HTTP {response.status_code}"
            logger.warning("Slack %s failed: %d - %s", method, response.status_code, error)
            return SlackResponse(
                success=False,
                status_code=response.status_code,
                error=error,
                data=data,
            )

        return SlackResponse(success=True, status_code=response.status_code, data=data)

    def post_message(
        self,
        token: str,
        channel: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> SlackResponse:
        """Post a message with chat.postMessage.

        This method performs HTTP I/O.

        Args:
            token: Bot token
            channel: Channel ID
            payload: Message payload (from formatter) with text and blocks
            metadata: Message metadata ({"event_type", "event_payload"})

        Returns:
            SlackResponse; ts is set on success
        """
        body = {"channel": channel, **payload}
        if metadata:
            body["metadata"] = metadata

        logger.info("Posting message to Slack channel %s", channel)
        result = self._call("chat.postMessage", token, json_body=body)
        if result.success:
            logger.info("Message posted to %s (ts=%s)", channel, result.ts)
        return result

    def conversations_history(
        self,
        token: str,
        channel: str,
        oldest: float | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> SlackResponse:
        """Fetch one page of a channel's messages, including their metadata."""
        params: dict[str, Any] = {
            "channel": channel,
            "limit": limit,
            "include_all_metadata": "true",
        }
        if oldest is not None:
            params["oldest"] = f"{oldest:.6f}"
        if cursor:
            params["cursor"] = cursor
        return self._call("conversations.history", token, params=params)

    def conversations_list(self, token: str, cursor: str | None = None, limit: int = 200) -> SlackResponse:
        """List public and private channels the bot can see."""
        params: dict[str, Any] = {
            "types": "public_channel,private_channel",
            "exclude_archived": "true",
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor
        return self._call("conversations.list", token, params=params)

    def list_channels(self, token: str) -> SlackResponse:
        """List all channels, following pagination cursors.

        Returns:
            SlackResponse whose data["channels"] holds every page
        """
        channels: list[dict[str, Any]] = []
        cursor = None

        while True:
            result = self.conversations_list(token, cursor=cursor)
            if not result.success:
                return result
            channels.extend(result.data.get("channels", []))
            cursor = (result.data.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break

        return SlackResponse(success=True, status_code=200, data={"ok": True, "channels": channels})

    def conversations_info(self, token: str, channel: str) -> SlackResponse:
        return self._call("conversations.info", token, params={"channel": channel})

    def emoji_list(self, token: str) -> SlackResponse:
        return self._call("emoji.list", token, params={})
