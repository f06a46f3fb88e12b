import asyncio
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tiberio.adapters.event_emitter import SocketIOEmitter
from tiberio.adapters.socket_server import create_socket_server
from tiberio.api.health import router as health_router
from tiberio.api.routes_orders import router as orders_router
from tiberio.api.routes_products import router as products_router
from tiberio.api.routes_transactions import router as transactions_router
from tiberio.config import settings
from tiberio.db import init_db
from tiberio.utils.logging import get_logger

log = get_logger("tiberio")

sio = create_socket_server()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    emitter = app.state.emitter
    if isinstance(emitter, SocketIOEmitter):
        emitter.bind_loop(asyncio.get_running_loop())
    log.info("Tiberio API is running on http://%s:%s", settings.APP_HOST, settings.APP_PORT)
    yield


app = FastAPI(title="Tiberio Clinic - Backend", version="0.1.0", lifespan=lifespan)
app.state.emitter = SocketIOEmitter(sio)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(orders_router, prefix="/api/orders", tags=["orders"])

app.include_router(products_router, prefix="/api/products", tags=["inventory"])

app.include_router(transactions_router, prefix="/api/transactions", tags=["transactions"])

# serve with: uvicorn tiberio.main:asgi
asgi = socketio.ASGIApp(sio, other_asgi_app=app)
