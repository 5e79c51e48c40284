"""
warden.database.engine — Database Connection, Transactions & Async Helper
==========================================================================

**Why this file exists:**
Every mutating operation in Warden (report intake, ledger credit/debit,
guardian investment, mission claims) must be a single read-modify-write
transaction per user.  This module owns the three pieces that make that
true:

    1. :func:`transaction` — one ``Session``, commit on success, rollback on
       any exception, bounded by a statement timeout.
    2. :func:`run_in_transaction` — the optimistic retry loop.  Lost updates
       (``StaleDataError`` from the ``users.version`` counter) and unique-key
       races (``IntegrityError`` on a unique constraint) are retried a bounded number of times,
       then surfaced as :class:`~warden.errors.ConcurrencyConflict`.
    3. :func:`run_db` — ships a synchronous DB function to a thread so an
       async caller (FastAPI handler, worker) never blocks its event loop.

Usage::

    from warden.database.engine import create_db_engine, init_db, run_in_transaction

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    snapshot = run_in_transaction(engine, lambda s: do_work(s, user_id))
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from warden.database.models import Base
from warden.errors import ConcurrencyConflict, StoreTimeout

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_RETRIES = 3

# PostgreSQL SQLSTATE for "canceling statement due to statement timeout"
_PG_QUERY_CANCELED = "57014"
_PG_UNIQUE_VIOLATION = "23505"


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from ``DATABASE_URL``.

    * ``pool_size=5`` / ``max_overflow=10`` — small service footprint.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`warden.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
def _is_timeout(exc: OperationalError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) == _PG_QUERY_CANCELED:
        return True
    # SQLite busy timeout
    return "database is locked" in str(orig)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) == _PG_UNIQUE_VIOLATION:
        return True
    return "UNIQUE constraint failed" in str(orig)


@contextmanager
def transaction(engine: Engine, *, timeout_ms: int | None = None) -> Iterator[Session]:
    """One all-or-nothing unit of work.

    Objects stay readable after commit (``expire_on_commit=False``).  On
    PostgreSQL every statement inside the block is bounded by
    ``statement_timeout``; a timeout rolls the whole transaction back and
    surfaces as :class:`~warden.errors.StoreTimeout`.
    """
    timeout_ms = timeout_ms or DEFAULT_TIMEOUT_MS
    session = Session(engine, expire_on_commit=False)
    try:
        if engine.dialect.name == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield session
        session.commit()
    except PoolTimeoutError as exc:
        session.rollback()
        raise StoreTimeout("Store did not acknowledge in time, try again") from exc
    except OperationalError as exc:
        session.rollback()
        if _is_timeout(exc):
            raise StoreTimeout("Store did not acknowledge in time, try again") from exc
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_in_transaction(
    engine: Engine,
    work: Callable[[Session], T],
    *,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> T:
    """Run *work(session)* in a transaction, retrying on concurrency races.

    *work* must be safe to re-run from scratch: every attempt gets a fresh
    session and re-reads state.  Domain errors and non-unique integrity
    violations (CHECK, NOT NULL, foreign key) raised by *work* are not
    retried.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with transaction(engine, timeout_ms=timeout_ms) as session:
                return work(session)
        except (StaleDataError, IntegrityError) as exc:
            if isinstance(exc, IntegrityError) and not _is_unique_violation(exc):
                raise
            if attempt > retries:
                logger.error(
                    "Transaction %s gave up after %d attempts: %s",
                    getattr(work, "__name__", "work"), attempt, exc,
                )
                raise ConcurrencyConflict(
                    "Concurrent update conflict, retry budget exhausted"
                ) from exc
            logger.warning(
                "Transaction %s conflicted (attempt %d/%d): %s",
                getattr(work, "__name__", "work"), attempt, retries + 1,
                type(exc).__name__,
            )


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the caller's event loop
    is never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
