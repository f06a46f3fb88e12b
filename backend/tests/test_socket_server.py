import asyncio

from tiberio.adapters.socket_server import create_socket_server


def make_server(monkeypatch):
    sio = create_socket_server()
    calls = []

    async def enter_room(sid, room, namespace=None):
        calls.append(("enter", sid, room))

    async def leave_room(sid, room, namespace=None):
        calls.append(("leave", sid, room))

    monkeypatch.setattr(sio, "enter_room", enter_room)
    monkeypatch.setattr(sio, "leave_room", leave_room)
    return sio, calls


def test_join_and_leave_room(monkeypatch):
    sio, calls = make_server(monkeypatch)
    handlers = sio.handlers["/"]

    asyncio.run(handlers["join-room"]("sid-1", "order-updated"))
    asyncio.run(handlers["leave-room"]("sid-1", "order-updated"))

    assert calls == [("enter", "sid-1", "order-updated"), ("leave", "sid-1", "order-updated")]


def test_connect_and_disconnect_handlers_registered(monkeypatch):
    sio, _ = make_server(monkeypatch)
    handlers = sio.handlers["/"]
    asyncio.run(handlers["connect"]("sid-2", {}))
    asyncio.run(handlers["disconnect"]("sid-2", "client disconnect"))
