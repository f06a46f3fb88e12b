import importlib
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from tiberio.config import settings
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.db")

DATABASE_URL = settings.DATABASE_URL

# sync routes run in a threadpool; sqlite connections must be shareable
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# model modules must be imported before create_all so metadata is populated
MODEL_MODULES = [
    "tiberio.models.supplier",
    "tiberio.models.product",
    "tiberio.models.order",
    "tiberio.models.transaction",
]


def init_db(reset: bool = False):
    """
    Initialize DB schema.

    Drops and recreates every table when `reset` is true or the RESET_DB env
    var is set to 1/true/yes; otherwise existing tables are left in place.
    """
    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")

    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset or env_reset:
        log.info("Resetting database %s", DATABASE_URL)
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    log.info("Database initialized.")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
