import socketio

from tiberio.config import settings
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.socket")


def create_socket_server() -> socketio.AsyncServer:
    """
    Socket.IO server where clients join one room per topic they want to
    follow ("order-updated", "transaction-updated", ...).
    """
    sio = socketio.AsyncServer(
        async_mode="asgi", cors_allowed_origins=settings.FRONTEND_ORIGINS
    )

    @sio.event
    async def connect(sid, environ, auth=None):
        log.info("client connected sid=%s", sid)

    @sio.event
    async def disconnect(sid, *args):
        log.info("client disconnected sid=%s", sid)

    @sio.on("join-room")
    async def join_room(sid, room):
        await sio.enter_room(sid, room)
        log.debug("sid=%s joined %s", sid, room)

    @sio.on("leave-room")
    async def leave_room(sid, room):
        await sio.leave_room(sid, room)
        log.debug("sid=%s left %s", sid, room)

    return sio
