"""DMData.jp API Client - Imperative Shell.

This module handles HTTP communication with the DMData.jp v2 API: the
cursor-based telegram list (pull feed) and the socket start call that
opens a push feed. All I/O is contained here; decoding is in the core
module.
"""

import logging
from dataclasses import dataclass, field

import requests

from anpi.core.telegram import (
    EARTHQUAKE_TELEGRAM_TYPES,
    TELEGRAM_CLASSIFICATION,
    RawTelegramItem,
    parse_raw_item,
)


logger = logging.getLogger(__name__)


DMDATA_API_BASE = "https://api.dmdata.jp"

# Default timeout for API requests (seconds)
DEFAULT_TIMEOUT = 10

WEBSOCKET_PROTOCOL = "dmdata.v2"


@dataclass
class PollResult:
    """One page of the pull feed.

    Attributes:
        items: Telegram envelopes in the provider's cursor order
        next_cursor: Token for the next poll (nextPooling)
        skipped: Items dropped because the envelope was incomplete
    """
    items: list[RawTelegramItem] = field(default_factory=list)
    next_cursor: str | None = None
    skipped: int = 0


@dataclass
class SocketTicket:
    """Connection details returned by socket start.

    Attributes:
        socket_id: Provider socket ID
        url: Websocket URL (carries the one-time ticket)
        protocols: Websocket subprotocols to request
        expiration: Seconds until the ticket expires
    """
    socket_id: int | None
    url: str
    protocols: list[str] = field(default_factory=lambda: [WEBSOCKET_PROTOCOL])
    expiration: int | None = None


class DMDataClient:
    """Client for the DMData.jp v2 API.

    This is part of the imperative shell - it handles HTTP I/O.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DMDATA_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize DMData client.

        Args:
            api_key: API key (sent as the basic auth user name)
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def _auth(self) -> tuple[str, str]:
        return (self.api_key, "")

    def poll(self, cursor: str | None = None) -> PollResult:
        """Fetch telegrams newer than the cursor.

        This method performs HTTP I/O.

        Args:
            cursor: nextPooling token from the previous poll, None to start

        Returns:
            PollResult with parsed envelopes and the next cursor

        Raises:
            requests.RequestException: If the request fails
        """
        params: dict[str, str] = {
            "type": "VXSE",
            "formatMode": "json",
            "showBody": "true",
        }
        if cursor:
            params["cursorToken"] = cursor

        response = requests.get(
            f"{self.base_url}/v2/telegram",
            params=params,
            auth=self._auth,
            timeout=self.timeout,
        )
        response.raise_for_status()

        data = response.json()
        items = []
        skipped = 0

        for raw in data.get("items") or []:
            item = parse_raw_item(raw)
            if item is None:
                skipped += 1
                continue
            items.append(item)

        logger.info("Fetched %d telegrams from DMData", len(items))

        return PollResult(
            items=items,
            next_cursor=data.get("nextPooling") or cursor,
            skipped=skipped,
        )

    def start_socket(
        self,
        types: frozenset[str] = EARTHQUAKE_TELEGRAM_TYPES,
        app_name: str = "anpi",
    ) -> SocketTicket:
        """Request a websocket ticket for the earthquake classification.

        This method performs HTTP I/O.

        Raises:
            requests.RequestException: If the request fails
            ValueError: If the response has no websocket URL
        """
        response = requests.post(
            f"{self.base_url}/v2/socket",
            json={
                "classifications": [TELEGRAM_CLASSIFICATION],
                "types": sorted(types),
                "appName": app_name,
                "formatMode": "json",
            },
            auth=self._auth,
            timeout=self.timeout,
        )
        response.raise_for_status()

        websocket = response.json().get("websocket") or {}
        if not websocket.get("url"):
            raise ValueError("Socket start response has no websocket URL")

        logger.info("Obtained websocket ticket (socket id %s)", websocket.get("id"))

        return SocketTicket(
            socket_id=websocket.get("id"),
            url=websocket["url"],
            protocols=list(websocket.get("protocol") or [WEBSOCKET_PROTOCOL]),
            expiration=websocket.get("expiration"),
        )

    def close_socket(self, socket_id: int) -> None:
        """Close a socket on the provider side so it frees a connection slot."""
        try:
            response = requests.delete(
                f"{self.base_url}/v2/socket/{socket_id}",
                auth=self._auth,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Failed to close socket %s: %s", socket_id, str(e))
