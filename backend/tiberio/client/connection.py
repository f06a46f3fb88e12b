import threading
from typing import Callable, Dict, List, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from tiberio.config import settings
from tiberio.errors import TransportError
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.client.connection")

Handler = Callable[[dict], None]


def default_client_factory() -> socketio.Client:
    return socketio.Client(
        reconnection=True,
        reconnection_attempts=5,
        reconnection_delay=1,
        reconnection_delay_max=5,
    )


class ConnectionManager:
    """
    Owns one Socket.IO client connection and the set of rooms ("topics") the
    application follows.

    Rooms are re-joined on every (re)connect. Until that has happened the
    manager reports itself stale, and resync listeners are called once it
    has, so live views can reload instead of trusting buffered state.
    """

    def __init__(self, client_factory: Optional[Callable[[], object]] = None):
        self._factory = client_factory or default_client_factory
        self.client = None
        self._lock = threading.RLock()
        self._handlers: Dict[str, List[Handler]] = {}
        self._joined = set()
        self._resync_listeners: List[Callable[[], None]] = []
        self._resynced = False

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return bool(self.client is not None and getattr(self.client, "connected", False))

    @property
    def is_stale(self) -> bool:
        with self._lock:
            if not self.is_connected or not self._resynced:
                return True
            return any(topic not in self._joined for topic in self._handlers)

    def connect(self, url: Optional[str] = None, token: Optional[str] = None) -> None:
        with self._lock:
            if self.is_connected:
                return
            client = self._factory()
            client.on("connect", self._on_connect)
            client.on("disconnect", self._on_disconnect)
            client.on("connect_error", self._on_connect_error)
            for topic in self._handlers:
                client.on(topic, self._dispatcher(topic))
            self.client = client

        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            client.connect(
                url or settings.SOCKET_URL,
                headers=headers,
                transports=["websocket", "polling"],
            )
        except SocketConnectionError as e:
            log.warning("socket connection failed: %s", e)
            raise TransportError(f"Socket connection failed: {e}") from e

    def disconnect(self) -> None:
        with self._lock:
            client, self.client = self.client, None
            self._joined.clear()
            self._resynced = False
        if client is not None:
            client.disconnect()

    # -- topics ------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(topic, [])
            first = not handlers
            handlers.append(handler)
            if first and self.client is not None:
                self.client.on(topic, self._dispatcher(topic))
            if first and self.is_connected:
                self._join(topic)

    def unsubscribe(self, topic: str, handler: Optional[Handler] = None) -> None:
        with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler is None:
                handlers.clear()
            elif handler in handlers:
                handlers.remove(handler)
            if handlers:
                return
            self._handlers.pop(topic, None)
            if topic in self._joined and self.is_connected:
                self.client.emit("leave-room", topic)
            self._joined.discard(topic)

    def add_resync_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            self._resync_listeners.append(listener)

    def remove_resync_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            if listener in self._resync_listeners:
                self._resync_listeners.remove(listener)

    @property
    def topics(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    # -- socket callbacks --------------------------------------------------

    def _join(self, topic: str) -> None:
        self.client.emit("join-room", topic)
        self._joined.add(topic)

    def _dispatcher(self, topic: str) -> Handler:
        def dispatch(message):
            with self._lock:
                handlers = list(self._handlers.get(topic, []))
            for h in handlers:
                h(message)

        return dispatch

    def _on_connect(self) -> None:
        with self._lock:
            self._joined.clear()
            for topic in self._handlers:
                self._join(topic)
            self._resynced = True
            listeners = list(self._resync_listeners)
        log.info("connected; joined %s", ", ".join(sorted(self._joined)) or "no rooms")
        for listener in listeners:
            listener()

    def _on_disconnect(self, *args) -> None:
        with self._lock:
            self._joined.clear()
            self._resynced = False
        log.warning("socket disconnected; live views are stale until resubscribed")

    def _on_connect_error(self, data=None) -> None:
        log.warning("socket connect error: %s", data)
