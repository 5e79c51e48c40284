"""
tests/test_database_engine.py — Transactions & retry loop
==========================================================
``transaction`` rollback and timeout mapping, and the bounded retry in
``run_in_transaction``, against the in-memory SQLite engine.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from conftest import seed_user
from warden.database.engine import run_db, run_in_transaction, transaction
from warden.database.models import EnergyCredit, User
from warden.errors import ConcurrencyConflict, StoreTimeout
from warden.services import ledger_service


class PgError(Exception):
    """Stand-in for a psycopg2 error carrying a SQLSTATE."""

    def __init__(self, pgcode: str):
        super().__init__(f"SQLSTATE {pgcode}")
        self.pgcode = pgcode


def _unique_violation() -> IntegrityError:
    return IntegrityError(
        "INSERT INTO reports", {},
        Exception("UNIQUE constraint failed: reports.user_id, reports.date"),
    )


class Flaky:
    """Raises each queued exception once, then returns ``"done"``."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self, session: Session) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "done"


@pytest.fixture
def engine(db_engine):
    seed_user(db_engine, "u1", energy=100)
    return db_engine


class TestRetry:
    def test_success_runs_once(self, engine):
        work = Flaky()
        assert run_in_transaction(engine, work) == "done"
        assert work.calls == 1

    def test_stale_version_retried_then_succeeds(self, engine):
        work = Flaky(StaleDataError("version mismatch"), StaleDataError("version mismatch"))
        assert run_in_transaction(engine, work, retries=2) == "done"
        assert work.calls == 3

    def test_unique_violation_retried(self, engine):
        work = Flaky(_unique_violation(), _unique_violation())
        assert run_in_transaction(engine, work) == "done"
        assert work.calls == 3

    def test_postgres_unique_violation_retried(self, engine):
        work = Flaky(IntegrityError("INSERT", {}, PgError("23505")))
        assert run_in_transaction(engine, work) == "done"
        assert work.calls == 2

    def test_retry_budget_exhausted(self, engine):
        work = Flaky(*[StaleDataError("version mismatch") for _ in range(5)])
        with pytest.raises(ConcurrencyConflict):
            run_in_transaction(engine, work, retries=2)
        assert work.calls == 3

    def test_zero_retries_fails_on_first_conflict(self, engine):
        work = Flaky(_unique_violation())
        with pytest.raises(ConcurrencyConflict):
            run_in_transaction(engine, work, retries=0)
        assert work.calls == 1

    def test_check_violation_is_not_retried(self, engine):
        calls = []

        def overdraw(session: Session) -> None:
            calls.append(1)
            session.get(User, "u1").energy_current = -1
            session.flush()

        with pytest.raises(IntegrityError):
            run_in_transaction(engine, overdraw)
        assert len(calls) == 1
        assert ledger_service.get_ledger(engine, "u1").current == 100

    def test_domain_errors_are_not_retried(self, engine):
        work = Flaky(ValueError("bad input"))
        with pytest.raises(ValueError):
            run_in_transaction(engine, work)
        assert work.calls == 1


class TestTimeoutAndRollback:
    def _credit_then_fail(self, exc: Exception):
        def work(session: Session) -> None:
            ledger_service.lock_user(session, "u1")
            ledger_service.credit(session, "u1", 50, "manual:timeout")
            raise exc
        return work

    def test_locked_database_maps_to_store_timeout(self, engine):
        exc = OperationalError("UPDATE users", {}, Exception("database is locked"))
        with pytest.raises(StoreTimeout):
            run_in_transaction(engine, self._credit_then_fail(exc))

    def test_statement_timeout_maps_to_store_timeout(self, engine):
        exc = OperationalError("UPDATE users", {}, PgError("57014"))
        with pytest.raises(StoreTimeout):
            run_in_transaction(engine, self._credit_then_fail(exc))

    def test_pool_timeout_maps_to_store_timeout(self, engine):
        with pytest.raises(StoreTimeout):
            run_in_transaction(engine, self._credit_then_fail(PoolTimeoutError("pool exhausted")))

    def test_timeout_leaves_no_partial_credit(self, engine):
        exc = OperationalError("UPDATE users", {}, Exception("database is locked"))
        with pytest.raises(StoreTimeout):
            run_in_transaction(engine, self._credit_then_fail(exc))

        ledger = ledger_service.get_ledger(engine, "u1")
        assert (ledger.current, ledger.total_earned) == (100, 100)
        with Session(engine) as session:
            assert session.scalars(select(EnergyCredit)).all() == []

    def test_other_operational_errors_propagate(self, engine):
        exc = OperationalError("SELECT 1", {}, Exception("no such table: nope"))
        with pytest.raises(OperationalError):
            run_in_transaction(engine, self._credit_then_fail(exc))
        assert ledger_service.get_ledger(engine, "u1").current == 100

    def test_timeout_is_not_retried(self, engine):
        work = Flaky(OperationalError("UPDATE", {}, Exception("database is locked")))
        with pytest.raises(StoreTimeout):
            run_in_transaction(engine, work)
        assert work.calls == 1


class TestTransaction:
    def test_commits_on_success(self, engine):
        with transaction(engine) as session:
            ledger_service.credit(session, "u1", 5, "manual:commit")
        assert ledger_service.get_ledger(engine, "u1").current == 105

    def test_objects_readable_after_commit(self, engine):
        with transaction(engine) as session:
            user = session.get(User, "u1")
        assert user.energy_current == 100

    def test_rolls_back_on_error(self, engine):
        with pytest.raises(RuntimeError):
            with transaction(engine) as session:
                ledger_service.credit(session, "u1", 5, "manual:rollback")
                raise RuntimeError("boom")
        assert ledger_service.get_ledger(engine, "u1").current == 100


class TestRunDb:
    def test_runs_sync_function_off_loop(self, engine):
        ledger = asyncio.run(run_db(ledger_service.get_ledger, engine, "u1"))
        assert ledger.current == 100
