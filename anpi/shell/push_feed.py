"""DMData.jp Push Feed - Imperative Shell.

Holds one websocket connection to the provider on a background thread and
hands received telegram envelopes to subscribers. Connection state lives
on the PushFeed instance; the polling loop reads it to decide whether the
pull feed is authoritative.

Protocol messages handled:
- start: connection established, state becomes open
- ping: answered with a pong carrying the same pingId
- data: a telegram envelope, delivered to matching subscriptions
- error: logged; with close=true the server drops the connection
"""

import json
import logging
import queue
import threading
from enum import Enum
from typing import Any, Callable, Iterator

import websocket

from anpi.core.telegram import EARTHQUAKE_TELEGRAM_TYPES, RawTelegramItem, parse_raw_item
from anpi.shell.dmdata_client import DMDataClient


logger = logging.getLogger(__name__)


RECONNECT_DELAY_SECONDS = 5.0
MAX_CONNECTIONS_DELAY_SECONDS = 30.0

_MAX_CONNECTIONS_ERROR = "maximum number of simultaneous connections"

# Queue sentinel that ends a subscription
_CLOSED = object()


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


class TelegramSubscription:
    """Blocking iterator over telegrams delivered by a PushFeed.

    Iteration ends when the subscription or the feed is closed.
    """

    def __init__(self, feed: "PushFeed", types: frozenset[str]) -> None:
        self.types = types
        self._feed = feed
        self._queue: queue.Queue = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, item: RawTelegramItem) -> None:
        if not self._closed and item.telegram_type in self.types:
            self._queue.put(item)

    def __iter__(self) -> Iterator[RawTelegramItem]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def close(self) -> None:
        """Detach from the feed and end iteration."""
        if self._closed:
            return
        self._closed = True
        self._feed._unsubscribe(self)
        self._queue.put(_CLOSED)


class PushFeed:
    """Reconnecting websocket consumer for the provider's push feed.

    This is part of the imperative shell - it handles network I/O.
    """

    def __init__(
        self,
        client: DMDataClient,
        types: frozenset[str] = EARTHQUAKE_TELEGRAM_TYPES,
        app_name: str = "anpi",
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        max_connections_delay: float = MAX_CONNECTIONS_DELAY_SECONDS,
        app_factory: Callable[..., Any] = websocket.WebSocketApp,
        on_ping: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the push feed (no connection is made yet).

        Args:
            client: DMData API client used for socket start
            types: Telegram codes to request
            app_name: Application name reported to the provider
            reconnect_delay: Delay before reconnecting after a close or error
            max_connections_delay: Delay after a "maximum connections" error
            app_factory: Websocket app constructor
            on_ping: Called on every server ping while the feed is open
        """
        self.client = client
        self.types = types
        self.app_name = app_name
        self.reconnect_delay = reconnect_delay
        self.max_connections_delay = max_connections_delay
        self._app_factory = app_factory
        self._on_ping = on_ping

        self._state = FeedState.DISCONNECTED
        self._lock = threading.Lock()
        self._subscriptions: list[TelegramSubscription] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._app: Any = None
        self._socket_id: int | None = None
        self._next_delay = reconnect_delay

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == FeedState.OPEN

    def _set_state(self, state: FeedState) -> None:
        if state != self._state:
            logger.info("Push feed state: %s -> %s", self._state.value, state.value)
        self._state = state

    def subscribe(self, types: frozenset[str] | None = None) -> TelegramSubscription:
        """Register a subscriber for telegrams of the given types."""
        subscription = TelegramSubscription(self, types or self.types)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: TelegramSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _deliver(self, item: RawTelegramItem) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.deliver(item)

    def start(self) -> None:
        """Start the connection loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="push-feed", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Close the connection, end all subscriptions and stop reconnecting."""
        self._stop.set()
        if self._app is not None:
            self._app.close()
        if self._thread is not None:
            self._thread.join(timeout)

        if self._socket_id is not None:
            self.client.close_socket(self._socket_id)
            self._socket_id = None

        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()

        self._set_state(FeedState.DISCONNECTED)

    def _run(self) -> None:
        while not self._stop.is_set():
            self._next_delay = self.reconnect_delay
            try:
                self.connect()
            except Exception as e:
                logger.exception("Push feed connection failed: %s", str(e))
                self._set_state(FeedState.ERROR)

            if self._stop.is_set():
                break
            logger.info("Reconnecting push feed in %.0f seconds", self._next_delay)
            self._stop.wait(self._next_delay)

    def connect(self) -> None:
        """Open one connection and block until it closes.

        Raises:
            requests.RequestException: If socket start fails
        """
        self._set_state(FeedState.CONNECTING)
        ticket = self.client.start_socket(self.types, self.app_name)
        self._socket_id = ticket.socket_id

        self._app = self._app_factory(
            ticket.url,
            subprotocols=ticket.protocols,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        self._app.run_forever()

        if self._state not in (FeedState.ERROR, FeedState.CLOSED):
            self._set_state(FeedState.CLOSED)

    def _on_message(self, ws: Any, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except ValueError:
            logger.warning("Ignoring non-JSON push feed message")
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring push feed message that is not an object")
            return

        message_type = data.get("type")

        if message_type == "start":
            self._set_state(FeedState.OPEN)
            logger.info("Push feed started (socket id %s)", data.get("socketId"))

        elif message_type == "ping":
            ws.send(json.dumps({"type": "pong", "pingId": data.get("pingId")}))
            if self._on_ping is not None:
                try:
                    self._on_ping()
                except Exception as e:
                    logger.error("Push feed ping handler failed: %s", str(e))

        elif message_type == "data":
            item = parse_raw_item(data)
            if item is None:
                logger.warning("Ignoring push feed data without id or type")
                return
            logger.info("Received %s telegram %s via push feed", item.telegram_type, item.id)
            self._deliver(item)

        elif message_type == "error":
            error = str(data.get("error", ""))
            logger.error("Push feed error (code %s): %s", data.get("code"), error)
            if data.get("close"):
                if _MAX_CONNECTIONS_ERROR in error:
                    self._next_delay = self.max_connections_delay
                self._set_state(FeedState.CLOSED)
                ws.close()

    def _on_error(self, ws: Any, error: Exception) -> None:
        logger.error("Push feed websocket error: %s", str(error))
        self._set_state(FeedState.ERROR)

    def _on_close(self, ws: Any, status_code: int | None, reason: str | None) -> None:
        logger.info("Push feed closed (%s %s)", status_code, reason or "")
        if self._state != FeedState.ERROR:
            self._set_state(FeedState.CLOSED)
