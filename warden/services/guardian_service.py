"""
warden.services.guardian_service — Guardian Profile & Evolution
================================================================

Everything that mutates a member's guardians runs here, each operation a
single per-user transaction:

* :func:`approve_user`       — account approval; creates the profile.
* :func:`unlock_guardian`    — first initial guardian free, later ones paid.
* :func:`invest`             — debit, add to invested energy, resolve
                               one or more evolution steps.
* :func:`switch_active_guardian` / :func:`update_guardian_memo`.

:func:`get_profile` is the read model the UI renders: ledger, level and
progress, guardians with aura and next-stage requirement, streak and its
continuation warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.config import GameTables
from warden.constants import STAGE_NAMES, STREAK_CRITICAL_HOURS, STREAK_WARNING_HOURS
from warden.database.engine import DEFAULT_RETRIES, run_in_transaction
from warden.database.models import AdminLog, Guardian, Report, User, UserStatus, as_utc
from warden.engine.energy import active_abilities
from warden.engine.events import EventKind, LedgerEvent, LedgerEventHub, publish
from warden.engine.evolution import aura_level, energy_to_next_stage, resolve_evolution
from warden.engine.levels import level_for, progress
from warden.engine.snapshots import GuardianSnapshot, LedgerSnapshot
from warden.engine.streak import continuation_warning, recompute
from warden.errors import (
    GuardianLocked,
    NotFoundError,
    TerminalStage,
    ValidationError,
)
from warden.services import mission_service
from warden.services.ledger_service import debit, lock_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_MEMO_LENGTH = 500


@dataclass(frozen=True, slots=True)
class InvestResult:
    steps: list[tuple[int, int]]
    final_stage: int
    final_invested_energy: int
    ledger: LedgerSnapshot

    @property
    def evolved(self) -> bool:
        return bool(self.steps)


@dataclass(frozen=True, slots=True)
class UnlockResult:
    guardian: GuardianSnapshot
    cost: int
    ledger: LedgerSnapshot


def _memory(kind: str, now: datetime, **extra: Any) -> dict:
    return {"type": kind, "at": as_utc(now).isoformat(), **extra}


# ---------------------------------------------------------------------------
# Profile lifecycle
# ---------------------------------------------------------------------------
def ensure_profile(
    session: Session,
    user_id: str,
    display_name: str,
    *,
    team: str | None = None,
) -> User:
    """Fetch or insert the ``users`` row (status ``pending`` when new)."""
    user = session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            display_name=display_name,
            team=team,
            status=UserStatus.PENDING.value,
            energy_current=0,
            energy_total_earned=0,
            streak_current=0,
            streak_max=0,
        )
        session.add(user)
        session.flush()
        logger.info("Created profile for %s", user_id)
    return user


def approve_user(
    engine: Engine,
    user_id: str,
    *,
    actor_id: str,
    display_name: str | None = None,
    team: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> LedgerSnapshot:
    """Approve an account, creating its guardian profile if needed.

    Writes an ``admin_log`` row with before/after status.  Approving an
    already approved account changes nothing and logs nothing.
    """
    now = now or datetime.now(UTC)

    def work(session: Session) -> LedgerSnapshot:
        user = ensure_profile(session, user_id, display_name or user_id, team=team)
        if user.status == UserStatus.APPROVED.value:
            return LedgerSnapshot.from_user(user)
        before = {"status": user.status}
        user.status = UserStatus.APPROVED.value
        user.approved_at = as_utc(now)
        if team and not user.team:
            user.team = team
        session.add(AdminLog(
            actor_id=actor_id,
            action_type="APPROVE",
            target_table="users",
            target_id=user_id,
            before_snapshot=before,
            after_snapshot={
                "status": user.status, "approved_at": user.approved_at.isoformat(),
            },
            reason=reason,
        ))
        session.flush()
        logger.info("User %s approved by %s", user_id, actor_id)
        return LedgerSnapshot.from_user(user)

    return run_in_transaction(engine, work)


# ---------------------------------------------------------------------------
# Unlocking
# ---------------------------------------------------------------------------
def unlock_guardian(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    guardian_id: str,
    *,
    now: datetime | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> UnlockResult:
    """Unlock *guardian_id* for the user.

    * Initial (tier 1): the first one is free, each further one costs
      ``extra_initial_guardian_cost``.
    * Evolution (tier 2): requires the named tier-1 guardian at
      ``requires_stage`` or above, and costs ``unlock_cost``.

    Raises
    ------
    NotFoundError
        Unknown guardian or user.
    ValidationError
        ``AlreadyUnlocked``.
    GuardianLocked
        The prerequisite guardian is missing or not evolved far enough.
    InsufficientEnergy
        The unlock cost cannot be paid.
    """
    definition = tables.guardians.get(guardian_id)
    if definition is None:
        raise NotFoundError(f"Unknown guardian {guardian_id!r}")
    now = now or datetime.now(UTC)
    events: list[LedgerEvent] = []

    def work(session: Session) -> UnlockResult:
        events.clear()
        user = lock_user(session, user_id)
        owned = {g.guardian_id: g for g in user.guardians}

        existing = owned.get(guardian_id)
        if existing is not None and existing.unlocked:
            raise ValidationError("AlreadyUnlocked", f"{definition.name} is already unlocked")

        if definition.unlock_type == "evolution":
            parent = owned.get(definition.requires_guardian or "")
            if parent is None or not parent.unlocked or parent.stage < definition.requires_stage:
                raise GuardianLocked(
                    f"{definition.name} requires {definition.requires_guardian} "
                    f"at stage {definition.requires_stage}"
                )
            cost = definition.unlock_cost
        else:
            initial_owned = sum(
                1 for g in owned.values()
                if g.unlocked
                and tables.guardians.get(g.guardian_id) is not None
                and tables.guardians[g.guardian_id].unlock_type == "initial"
            )
            cost = tables.extra_initial_guardian_cost if initial_owned else 0

        if cost:
            ledger = debit(session, user_id, cost, events=events)
        else:
            ledger = LedgerSnapshot.from_user(user)

        if existing is None:
            existing = Guardian(
                user_id=user_id,
                guardian_id=guardian_id,
                stage=0,
                invested_energy=0,
                memories=[],
            )
            session.add(existing)
        existing.unlocked = True
        existing.unlocked_at = as_utc(now)
        existing.memories = [*(existing.memories or []), _memory("unlocked", now, cost=cost)]
        if user.active_guardian_id is None:
            user.active_guardian_id = guardian_id
        session.flush()

        logger.info("User %s unlocked %s for %d energy", user_id, guardian_id, cost)
        events.append(LedgerEvent(
            kind=EventKind.GUARDIAN_UNLOCKED,
            user_id=user_id,
            payload={"guardian_id": guardian_id, "cost": cost},
        ))
        return UnlockResult(
            guardian=GuardianSnapshot.from_model(existing), cost=cost, ledger=ledger
        )

    result = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    publish(hub, events)
    return result


# ---------------------------------------------------------------------------
# Investment & evolution
# ---------------------------------------------------------------------------
def _unlocked_guardian(session: Session, user_id: str, guardian_id: str) -> Guardian:
    g = session.get(Guardian, (user_id, guardian_id))
    if g is None or not g.unlocked:
        raise GuardianLocked(f"Guardian {guardian_id!r} is not unlocked")
    return g


def invest(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    guardian_id: str,
    amount: int,
    *,
    now: datetime | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> InvestResult:
    """Spend *amount* energy on a guardian and resolve its evolution.

    A single investment can cross several thresholds; ``steps`` lists
    every ``(from, to)`` transition in order.  Stage never decreases.

    Raises
    ------
    ValidationError
        ``InvalidAmount`` if *amount* is not positive.
    GuardianLocked
        The guardian is not unlocked for this user.
    TerminalStage
        The guardian is already at its final stage; nothing is debited.
    InsufficientEnergy
        *amount* exceeds the spendable balance.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("InvalidAmount", f"Investment must be a positive integer, got {amount!r}")
    now = now or datetime.now(UTC)
    events: list[LedgerEvent] = []

    def work(session: Session) -> InvestResult:
        events.clear()
        lock_user(session, user_id)
        g = _unlocked_guardian(session, user_id, guardian_id)
        if g.stage >= tables.max_stage:
            raise TerminalStage(f"{guardian_id} is already at its final stage")

        ledger = debit(session, user_id, amount, events=events)
        g.invested_energy += amount
        outcome = resolve_evolution(g.stage, g.invested_energy, tables.stage_thresholds)
        if outcome.evolved:
            g.stage = outcome.final_stage
            g.memories = [
                *(g.memories or []),
                *(
                    _memory("evolution", now, **{"from": a, "to": b, "stage_name": STAGE_NAMES[b]})
                    for a, b in outcome.steps
                ),
            ]
        mission_service.mark_completed(
            session, tables, user_id, now.date(), trigger="energy_invest", now=now
        )
        session.flush()

        for a, b in outcome.steps:
            logger.info("Guardian %s/%s evolved %d → %d", user_id, guardian_id, a, b)
            events.append(LedgerEvent(
                kind=EventKind.GUARDIAN_EVOLVED,
                user_id=user_id,
                payload={"guardian_id": guardian_id, "from": a, "to": b},
            ))
        return InvestResult(
            steps=outcome.steps,
            final_stage=outcome.final_stage,
            final_invested_energy=outcome.final_invested_energy,
            ledger=ledger,
        )

    try:
        result = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    except TerminalStage:
        logger.debug("Investment in %s/%s skipped: terminal stage", user_id, guardian_id)
        raise
    publish(hub, events)
    return result


invest_guardian_energy = invest


# ---------------------------------------------------------------------------
# Active guardian & memo
# ---------------------------------------------------------------------------
def switch_active_guardian(
    engine: Engine,
    user_id: str,
    guardian_id: str,
    *,
    retries: int = DEFAULT_RETRIES,
) -> GuardianSnapshot:
    def work(session: Session) -> GuardianSnapshot:
        user = lock_user(session, user_id)
        g = _unlocked_guardian(session, user_id, guardian_id)
        user.active_guardian_id = guardian_id
        logger.info("User %s switched active guardian to %s", user_id, guardian_id)
        return GuardianSnapshot.from_model(g)

    return run_in_transaction(engine, work, retries=retries)


def update_guardian_memo(
    engine: Engine,
    user_id: str,
    guardian_id: str,
    memo: str | None,
    *,
    nickname: str | None = None,
    retries: int = DEFAULT_RETRIES,
) -> GuardianSnapshot:
    """Replace the free-text memo (and optionally the nickname)."""
    if memo is not None and len(memo) > MAX_MEMO_LENGTH:
        raise ValidationError("MemoTooLong", f"Memo exceeds {MAX_MEMO_LENGTH} chars")

    def work(session: Session) -> GuardianSnapshot:
        lock_user(session, user_id)
        g = _unlocked_guardian(session, user_id, guardian_id)
        g.memo = memo.strip() if memo else None
        if nickname is not None:
            g.nickname = nickname.strip() or None
        session.flush()
        return GuardianSnapshot.from_model(g)

    return run_in_transaction(engine, work, retries=retries)


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------
def get_profile(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Everything the profile page shows, as plain JSON-ready data."""
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"Unknown user {user_id!r}")

        abilities = active_abilities(user.guardians, tables)
        cost_reduction = abilities.get("cost_reduce", 0.0)
        grace = abilities.get("streak_grace", 0.0)

        guardians = []
        for g in sorted(user.guardians, key=lambda g: g.guardian_id):
            definition = tables.guardians.get(g.guardian_id)
            nxt = energy_to_next_stage(
                g.invested_energy, g.stage, tables.stage_thresholds,
                cost_reduction=cost_reduction,
            )
            guardians.append({
                "guardian_id": g.guardian_id,
                "name": definition.name if definition else g.guardian_id,
                "attribute": definition.attribute if definition else None,
                "unlocked": g.unlocked,
                "stage": g.stage,
                "stage_name": STAGE_NAMES[g.stage],
                "invested_energy": g.invested_energy,
                "aura": aura_level(
                    g.invested_energy, g.stage, tables.stage_thresholds, tables.stage_aura
                ),
                "next_stage": (
                    {"required": nxt.required, "remaining": nxt.remaining} if nxt else None
                ),
                "memo": g.memo,
                "nickname": g.nickname,
                "memories": list(g.memories or []),
            })

        level = level_for(user.energy_total_earned, tables.level_table)
        prog = progress(user.energy_total_earned, tables.level_table)
        streak = recompute(
            session.scalars(select(Report.date).where(Report.user_id == user_id)).all(),
            now.date(),
        )
        warning = continuation_warning(
            as_utc(user.last_report_at),
            now,
            warning_hours=STREAK_WARNING_HOURS + grace,
            critical_hours=STREAK_CRITICAL_HOURS + grace,
        )

        return {
            "user_id": user.id,
            "display_name": user.display_name,
            "team": user.team,
            "status": user.status,
            "energy": {
                "current": user.energy_current,
                "total_earned": user.energy_total_earned,
            },
            "level": {
                "level": level.level,
                "title": level.title,
                "percent": prog.percent,
                "remaining": prog.remaining,
            },
            "streak": {
                "current": streak.current,
                "max": max(user.streak_max, streak.longest),
                "warning": str(warning),
            },
            "active_guardian_id": user.active_guardian_id,
            "abilities": abilities,
            "guardians": guardians,
        }
