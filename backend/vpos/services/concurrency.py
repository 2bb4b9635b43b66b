# Overview: Transaction boundaries and retry helpers shared by the services.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, scoped_session
from sqlalchemy.orm.exc import StaleDataError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; UnitOfWork takes the
    database write lock up front there instead.
    """
    return query.with_for_update()


class UnitOfWork:
    """
    Explicit atomic boundary over one session.

    Every mutation of a checkout (stock, transaction, customer, ledger) is
    issued against the same session between begin() and commit(). Nothing
    inside the boundary commits on its own.

    Usage:
        uow = UnitOfWork(session).begin()
        try:
            ...
            uow.commit()
        except Exception:
            uow.rollback()
            raise

    or as a context manager, which commits on clean exit and rolls back on
    any exception.
    """

    def __init__(self, session: Session, *, immediate: bool = True):
        # db.session is a scoped_session, which does not proxy in_transaction()
        self.session = session() if isinstance(session, scoped_session) else session
        self.immediate = immediate
        self.active = False

    def begin(self) -> "UnitOfWork":
        if self.active:
            raise RuntimeError("Unit of work already begun")

        if self.session.in_transaction():
            if self.session.new or self.session.dirty or self.session.deleted:
                raise RuntimeError("Unit of work requires a session without pending changes")
            # Close a read-only transaction left open by earlier lookups
            self.session.rollback()

        if self.immediate and self.session.get_bind().dialect.name == "sqlite":
            # Take the write lock now so the stock check and the decrement
            # see the same state (SQLite has no row locks).
            self.session.execute(text("BEGIN IMMEDIATE"))

        self.active = True
        return self

    def commit(self) -> None:
        if not self.active:
            raise RuntimeError("Unit of work not begun")
        try:
            self.session.commit()
        finally:
            self.active = False

    def rollback(self) -> None:
        self.active = False
        self.session.rollback()

    def __enter__(self) -> "UnitOfWork":
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False
        if self.active:
            self.commit()
        return False


def run_with_retry(session: Session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
