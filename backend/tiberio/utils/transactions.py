from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def smart_transaction(session: Session) -> Iterator:
    """
    Context manager that begins a transaction on the given Session.
    If a transaction is already active, start a nested SAVEPOINT (begin_nested).
    Otherwise start a normal transaction (begin).
    Usage:
        with smart_transaction(db):
            ... DB work ...
    """
    if session.in_transaction():
        cm = session.begin_nested()
    else:
        cm = session.begin()
    with cm:
        yield


@contextmanager
def committed_transaction(session: Session) -> Iterator:
    """
    Like smart_transaction, but also commits an enclosing transaction that the
    session autobegan for earlier reads, so the work is durable on exit.
    Services use this for mutations that broadcast events afterwards.
    """
    with smart_transaction(session):
        yield
    if session.in_transaction():
        session.commit()
