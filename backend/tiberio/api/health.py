from fastapi import APIRouter, Request
from sqlalchemy import text

from tiberio.db import engine

router = APIRouter()


@router.get("/health", tags=["health"])
def health(request: Request):
    db_ok = False
    bus_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        db_ok = False
    emitter = getattr(request.app.state, "emitter", None)
    if emitter is not None:
        bus_ok = emitter.health_check()

    return {
        "status": "ok" if db_ok and bus_ok else "degraded",
        "db": db_ok,
        "event_bus": bus_ok,
    }
