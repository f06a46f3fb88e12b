import os
import tempfile

# settings are read at import time, so point them at a throwaway db first
_tmp = tempfile.mkdtemp(prefix="tiberio-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_tmp, 'test.db')}")
os.environ.setdefault("LOCK_DIR", os.path.join(_tmp, "locks"))

import pytest

from tiberio.adapters.event_emitter import RecordingEmitter
from tiberio.db import SessionLocal, init_db
from tiberio.main import app
from tiberio.models.product import Product
from tiberio.models.supplier import Supplier

AUTH = {"Authorization": "Bearer test-token"}


@pytest.fixture(scope="session", autouse=True)
def setup_db():
    init_db(reset=True)
    yield


@pytest.fixture()
def events():
    recorder = RecordingEmitter()
    previous = app.state.emitter
    app.state.emitter = recorder
    yield recorder
    app.state.emitter = previous


def seed_product(code, stock=0, unit_price=10):
    db = SessionLocal()
    try:
        p = Product(code=code, description=f"{code} test product", unit_price=unit_price, stock=stock)
        db.add(p)
        db.commit()
        return p.id
    finally:
        db.close()


def seed_supplier(name):
    db = SessionLocal()
    try:
        s = Supplier(name=name, contact_person="Ana", contact_number="555-0100")
        db.add(s)
        db.commit()
        return s.id
    finally:
        db.close()


def stock_of(product_id):
    db = SessionLocal()
    try:
        return db.get(Product, product_id).stock
    finally:
        db.close()
