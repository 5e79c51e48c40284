"""
warden.services.ledger_service — Energy Ledger
===============================================

Spendable (``energy_current``) and cumulative (``energy_total_earned``)
energy live on the ``users`` row; every credit is additionally journaled
in ``energy_credits`` under a ``source_key`` unique per user.

The journal is what makes a credit exactly-once: applying the same
``source_key`` a second time finds the existing row and returns the
ledger unchanged.  Two racing inserts of the same key are stopped by
``uq_energy_credits_user_source_key`` and the loser is retried by
:func:`~warden.database.engine.run_in_transaction`, which then takes the
"already credited" branch.

:func:`credit` and :func:`debit` take a ``Session`` so that they can run
inside the caller's per-user transaction (report intake, investment,
mission claims).  :func:`credit_energy` / :func:`debit_energy` are the
standalone transactional wrappers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.database.engine import DEFAULT_RETRIES, run_in_transaction
from warden.database.models import CreditKind, EnergyCredit, User, as_utc
from warden.engine.events import EventKind, LedgerEvent, LedgerEventHub, publish
from warden.engine.snapshots import LedgerSnapshot
from warden.errors import InsufficientEnergy, NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-user lock
# ---------------------------------------------------------------------------
def lock_user(session: Session, user_id: str) -> User:
    """Load the user row for update and claim its version.

    ``SELECT … FOR UPDATE`` serializes writers on PostgreSQL.  Touching
    ``updated_at`` and flushing immediately bumps ``users.version``, so a
    writer that read the row before a concurrent commit fails here with
    ``StaleDataError`` instead of silently overwriting it.
    """
    user = session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFoundError(f"Unknown user {user_id!r}")
    user.updated_at = datetime.now(UTC)
    session.flush()
    return user


# ---------------------------------------------------------------------------
# Session-level operations
# ---------------------------------------------------------------------------
def find_credit(session: Session, user_id: str, source_key: str) -> EnergyCredit | None:
    return session.scalar(
        select(EnergyCredit).where(
            EnergyCredit.user_id == user_id, EnergyCredit.source_key == source_key
        )
    )


def credit(
    session: Session,
    user_id: str,
    amount: int,
    source_key: str,
    *,
    kind: CreditKind = CreditKind.MANUAL,
    breakdown: dict | None = None,
    on_date: date | None = None,
    streak_day: int | None = None,
    now: datetime | None = None,
    events: list[LedgerEvent] | None = None,
) -> LedgerSnapshot:
    """Add *amount* to both balances, once per *source_key*.

    Raises
    ------
    ValidationError
        If *amount* is negative or *source_key* is blank.
    NotFoundError
        If the user does not exist.
    """
    if amount < 0:
        raise ValidationError("NegativeAmount", f"Credit amount must be ≥ 0, got {amount}")
    if not source_key or not source_key.strip():
        raise ValidationError("MissingSourceKey", "Credit requires a source key")

    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"Unknown user {user_id!r}")

    if find_credit(session, user_id, source_key) is not None:
        logger.debug("Credit %s already applied for %s — no-op", source_key, user_id)
        return LedgerSnapshot.from_user(user)

    now = now or datetime.now(UTC)
    session.add(EnergyCredit(
        user_id=user_id,
        source_key=source_key,
        kind=str(kind),
        amount=amount,
        breakdown=breakdown,
        on_date=on_date or now.date(),
        streak_day=streak_day,
    ))
    user.energy_current += amount
    user.energy_total_earned += amount
    user.last_earned_at = as_utc(now)
    session.flush()

    logger.info(
        "Credited %d energy to %s (%s) → %d/%d",
        amount, user_id, source_key, user.energy_current, user.energy_total_earned,
    )
    if events is not None:
        events.append(LedgerEvent(
            kind=EventKind.ENERGY_CREDITED,
            user_id=user_id,
            payload={"amount": amount, "source_key": source_key, "kind": str(kind),
                     "current": user.energy_current,
                     "total_earned": user.energy_total_earned},
        ))
    return LedgerSnapshot.from_user(user)


def debit(
    session: Session,
    user_id: str,
    amount: int,
    *,
    events: list[LedgerEvent] | None = None,
) -> LedgerSnapshot:
    """Remove *amount* from the spendable balance only.

    Raises
    ------
    InsufficientEnergy
        Unless ``0 < amount <= current``.
    NotFoundError
        If the user does not exist.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"Unknown user {user_id!r}")
    if amount <= 0 or amount > user.energy_current:
        logger.warning(
            "Debit of %d rejected for %s (balance %d)",
            amount, user_id, user.energy_current,
        )
        raise InsufficientEnergy(amount, user.energy_current)

    user.energy_current -= amount
    session.flush()

    logger.info("Debited %d energy from %s → %d", amount, user_id, user.energy_current)
    if events is not None:
        events.append(LedgerEvent(
            kind=EventKind.ENERGY_DEBITED,
            user_id=user_id,
            payload={"amount": amount, "current": user.energy_current},
        ))
    return LedgerSnapshot.from_user(user)


# ---------------------------------------------------------------------------
# Transactional wrappers
# ---------------------------------------------------------------------------
def credit_energy(
    engine: Engine,
    user_id: str,
    amount: int,
    source_key: str,
    *,
    kind: CreditKind = CreditKind.MANUAL,
    breakdown: dict | None = None,
    on_date: date | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> LedgerSnapshot:
    """Standalone idempotent credit in its own per-user transaction."""
    events: list[LedgerEvent] = []

    def work(session: Session) -> LedgerSnapshot:
        events.clear()
        lock_user(session, user_id)
        return credit(
            session, user_id, amount, source_key,
            kind=kind, breakdown=breakdown, on_date=on_date, events=events,
        )

    snapshot = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    publish(hub, events)
    return snapshot


def debit_energy(
    engine: Engine,
    user_id: str,
    amount: int,
    *,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> LedgerSnapshot:
    """Standalone debit in its own per-user transaction."""
    events: list[LedgerEvent] = []

    def work(session: Session) -> LedgerSnapshot:
        events.clear()
        lock_user(session, user_id)
        return debit(session, user_id, amount, events=events)

    snapshot = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    publish(hub, events)
    return snapshot


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_ledger(engine: Engine, user_id: str) -> LedgerSnapshot:
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"Unknown user {user_id!r}")
        return LedgerSnapshot.from_user(user)


@dataclass(frozen=True, slots=True)
class DayEnergy:
    date: date
    total: int
    by_kind: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EnergyHistory:
    days: list[DayEnergy]
    total: int
    daily_average: float
    best_day: DayEnergy | None


def get_energy_history(
    engine: Engine,
    user_id: str,
    days: int = 7,
    *,
    today: date | None = None,
) -> EnergyHistory:
    """Energy earned per day over the last *days* days (today included).

    Every day in the window appears, zero-filled, oldest first.
    """
    if days < 1:
        raise ValidationError("InvalidWindow", f"days must be ≥ 1, got {days}")
    today = today or datetime.now(UTC).date()
    start = today - timedelta(days=days - 1)

    with Session(engine) as session:
        if session.get(User, user_id) is None:
            raise NotFoundError(f"Unknown user {user_id!r}")
        credits = session.scalars(
            select(EnergyCredit).where(
                EnergyCredit.user_id == user_id,
                EnergyCredit.on_date >= start,
                EnergyCredit.on_date <= today,
            )
        ).all()

    per_day: dict[date, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for c in credits:
        per_day[c.on_date][c.kind] += c.amount

    window = [
        DayEnergy(
            date=start + timedelta(days=i),
            total=sum(per_day[start + timedelta(days=i)].values()),
            by_kind=dict(per_day[start + timedelta(days=i)]),
        )
        for i in range(days)
    ]
    total = sum(d.total for d in window)
    best = max(window, key=lambda d: d.total) if total else None
    return EnergyHistory(
        days=window,
        total=total,
        daily_average=round(total / days, 1),
        best_day=best,
    )
