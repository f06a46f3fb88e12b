import asyncio
from typing import Dict, List, Optional, Tuple

from tiberio.utils.logging import get_logger

log = get_logger("tiberio.events")

ORDER_TOPIC = "order-updated"
TRANSACTION_TOPIC = "transaction-updated"
INVENTORY_TOPIC = "inventory-updated"


class EventEmitter:
    """
    Publishes change notifications to a room named after the topic.
    Payloads look like {"type": "added"|"updated", "<entity>": {...}} or
    {"type": "deleted", "<entity>Id": <int>}.
    """

    def emit(self, topic: str, payload: Dict) -> None:
        raise NotImplementedError

    def health_check(self) -> bool:
        return True


class NullEmitter(EventEmitter):
    """Discards events; used when no bus is configured."""

    def emit(self, topic: str, payload: Dict) -> None:
        log.debug("no bus configured, discarding %s event", topic)


class SocketIOEmitter(EventEmitter):
    """
    Emitter backed by a python-socketio AsyncServer.

    Routes are plain sync functions running in a threadpool, so emits are
    handed to the server's event loop, which is bound during app startup.
    """

    def __init__(self, sio):
        self.sio = sio
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def emit(self, topic: str, payload: Dict) -> None:
        if self.loop is None or self.loop.is_closed():
            log.warning("dropping %s %s event: no running event loop", topic, payload.get("type"))
            return
        coro = self.sio.emit(topic, payload, room=topic)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            pending = self.loop.create_task(coro)
        else:
            pending = asyncio.run_coroutine_threadsafe(coro, self.loop)
        pending.add_done_callback(lambda f: self._emitted(topic, payload.get("type"), f))

    @staticmethod
    def _emitted(topic: str, kind: Optional[str], fut) -> None:
        if fut.cancelled():
            log.warning("%s %s event cancelled before delivery", topic, kind)
        elif fut.exception() is not None:
            log.error("failed to emit %s %s event: %s", topic, kind, fut.exception())
        else:
            log.info("emitted %s %s", topic, kind)

    def health_check(self) -> bool:
        return self.loop is not None and not self.loop.is_closed()


class RecordingEmitter(EventEmitter):
    """Keeps every emitted event in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict]] = []

    def emit(self, topic: str, payload: Dict) -> None:
        self.events.append((topic, payload))

    def of_topic(self, topic: str) -> List[Dict]:
        return [p for t, p in self.events if t == topic]

    def clear(self) -> None:
        self.events.clear()
