"""
warden.services.mission_service — Daily Missions & Claims
==========================================================

One ``daily_missions`` row per (user, day), created on first access and
merged with the mission catalogue so a mission added mid-day still shows
up.  Completion comes from three places:

* an explicit :func:`complete_mission` call,
* a named trigger fired by another service (``daily_report`` from report
  intake, ``energy_invest`` from guardian investment),
* a page visit matching a mission's ``target_page``.

Claims credit the ledger under ``"{user}:{date}:{mission_id}"`` and the
all-complete bonus under ``"{user}:{date}:all-complete-bonus"``; the
``claimed`` flags and the ledger's source-key journal together make each
reward payable at most once per day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from warden.config import GameTables, MissionDefinition
from warden.database.engine import DEFAULT_RETRIES, run_in_transaction
from warden.database.models import CreditKind, DailyMission, as_utc
from warden.engine.events import EventKind, LedgerEvent, LedgerEventHub, publish
from warden.engine.snapshots import LedgerSnapshot
from warden.errors import AlreadyClaimed, NotCompleted, NotFoundError
from warden.services.ledger_service import credit, lock_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

BONUS_ID = "all-complete-bonus"


@dataclass(frozen=True, slots=True)
class MissionStatus:
    mission_id: str
    title: str
    reward: int
    order: int
    completed: bool
    claimed: bool
    target_page: str | None = None
    completed_at: str | None = None
    claimed_at: str | None = None


@dataclass(frozen=True, slots=True)
class DailyMissionsView:
    date: date
    missions: list[MissionStatus]
    all_completed: bool
    bonus_claimed: bool
    bonus_reward: int
    total_reward_earned: int

    @property
    def claimable(self) -> list[str]:
        return [m.mission_id for m in self.missions if m.completed and not m.claimed]


@dataclass(frozen=True, slots=True)
class ClaimResult:
    mission_id: str
    reward: int
    ledger: LedgerSnapshot


# ---------------------------------------------------------------------------
# Session-level state helpers
# ---------------------------------------------------------------------------
def _today(now: datetime | None) -> tuple[datetime, date]:
    now = now or datetime.now(UTC)
    return now, now.date()


def _blank_entry(mission_id: str) -> dict:
    return {
        "mission_id": mission_id,
        "completed": False,
        "completed_at": None,
        "claimed": False,
        "claimed_at": None,
    }


def load_state(
    session: Session, tables: GameTables, user_id: str, day: date
) -> DailyMission:
    """Fetch (or create) the day's row, merged with the current catalogue."""
    state = session.get(DailyMission, (user_id, day))
    if state is None:
        state = DailyMission(
            user_id=user_id,
            date=day,
            missions=[_blank_entry(m.id) for m in _ordered(tables)],
            all_completed=False,
            bonus_claimed=False,
            total_reward_earned=0,
        )
        session.add(state)
        session.flush()
        logger.debug("Created mission state for %s on %s", user_id, day)
        return state

    known = {e["mission_id"] for e in state.missions}
    missing = [m.id for m in _ordered(tables) if m.id not in known]
    if missing:
        state.missions = [*state.missions, *(_blank_entry(mid) for mid in missing)]
        state.all_completed = False
    return state


def _ordered(tables: GameTables) -> list[MissionDefinition]:
    return sorted(tables.missions, key=lambda m: m.order)


def _matches(m: MissionDefinition, trigger: str | None, page: str | None) -> bool:
    if trigger is not None and m.trigger == trigger:
        return True
    return page is not None and m.target_page is not None and m.target_page == page


def mark_completed(
    session: Session,
    tables: GameTables,
    user_id: str,
    day: date,
    *,
    mission_id: str | None = None,
    trigger: str | None = None,
    page: str | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Mark matching missions completed; returns the ids newly completed.

    Completing an already-completed mission is a no-op.
    """
    now = now or datetime.now(UTC)
    state = load_state(session, tables, user_id, day)
    targets = {
        m.id for m in tables.missions
        if m.id == mission_id or _matches(m, trigger, page)
    }
    if not targets:
        return []

    newly: list[str] = []
    entries = []
    for entry in state.missions:
        entry = dict(entry)
        if entry["mission_id"] in targets and not entry["completed"]:
            entry["completed"] = True
            entry["completed_at"] = as_utc(now).isoformat()
            newly.append(entry["mission_id"])
        entries.append(entry)

    if newly:
        state.missions = entries
        state.all_completed = _all_done(state, tables)
        session.flush()
        logger.info("Missions completed for %s on %s: %s", user_id, day, newly)
    return newly


def _all_done(state: DailyMission, tables: GameTables) -> bool:
    catalogue = {m.id for m in tables.missions}
    done = {e["mission_id"] for e in state.missions if e["completed"]}
    return bool(catalogue) and catalogue <= done


def _view(state: DailyMission, tables: GameTables) -> DailyMissionsView:
    entries = {e["mission_id"]: e for e in state.missions}
    missions = []
    for m in _ordered(tables):
        entry = entries.get(m.id, _blank_entry(m.id))
        missions.append(MissionStatus(
            mission_id=m.id,
            title=m.title,
            reward=m.reward,
            order=m.order,
            completed=bool(entry["completed"]),
            claimed=bool(entry["claimed"]),
            target_page=m.target_page,
            completed_at=entry.get("completed_at"),
            claimed_at=entry.get("claimed_at"),
        ))
    return DailyMissionsView(
        date=state.date,
        missions=missions,
        all_completed=bool(state.all_completed),
        bonus_claimed=bool(state.bonus_claimed),
        bonus_reward=tables.all_complete_bonus,
        total_reward_earned=state.total_reward_earned or 0,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def get_today_missions(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    *,
    now: datetime | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> DailyMissionsView:
    """Today's missions; the state row is created on first access."""
    _, day = _today(now)

    def work(session: Session) -> DailyMissionsView:
        lock_user(session, user_id)
        return _view(load_state(session, tables, user_id, day), tables)

    return run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)


def complete_mission(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    mission_id: str,
    *,
    now: datetime | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> DailyMissionsView:
    if tables.mission(mission_id) is None:
        raise NotFoundError(f"Unknown mission {mission_id!r}")
    now, day = _today(now)

    def work(session: Session) -> DailyMissionsView:
        lock_user(session, user_id)
        mark_completed(session, tables, user_id, day, mission_id=mission_id, now=now)
        return _view(load_state(session, tables, user_id, day), tables)

    return run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)


def trigger_mission(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    trigger: str,
    *,
    now: datetime | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> list[str]:
    """Fire a named trigger; returns the mission ids it newly completed."""
    now, day = _today(now)

    def work(session: Session) -> list[str]:
        lock_user(session, user_id)
        return mark_completed(session, tables, user_id, day, trigger=trigger, now=now)

    return run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)


def trigger_page_visit(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    page: str,
    *,
    now: datetime | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> list[str]:
    """Record a visit to *page*; completes every mission targeting it."""
    now, day = _today(now)
    page = "/" + page.strip().strip("/") if page.strip() else page

    def work(session: Session) -> list[str]:
        lock_user(session, user_id)
        return mark_completed(session, tables, user_id, day, page=page, now=now)

    return run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)


def claim_mission_reward(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    mission_id: str,
    *,
    now: datetime | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> ClaimResult:
    """Pay out one completed mission.

    Raises
    ------
    NotFoundError
        Unknown mission or user.
    AlreadyClaimed
        The mission's reward was already paid today.
    NotCompleted
        The mission has not been completed today.
    """
    definition = tables.mission(mission_id)
    if definition is None:
        raise NotFoundError(f"Unknown mission {mission_id!r}")
    now, day = _today(now)
    events: list[LedgerEvent] = []

    def work(session: Session) -> ClaimResult:
        events.clear()
        lock_user(session, user_id)
        state = load_state(session, tables, user_id, day)

        entries = [dict(e) for e in state.missions]
        entry = next(e for e in entries if e["mission_id"] == mission_id)
        if entry["claimed"]:
            raise AlreadyClaimed(f"Mission {mission_id!r} already claimed for {day}")
        if not entry["completed"]:
            raise NotCompleted(f"Mission {mission_id!r} is not completed yet")

        entry["claimed"] = True
        entry["claimed_at"] = as_utc(now).isoformat()
        state.missions = entries
        state.total_reward_earned = (state.total_reward_earned or 0) + definition.reward

        ledger = credit(
            session, user_id, definition.reward,
            f"{user_id}:{day.isoformat()}:{mission_id}",
            kind=CreditKind.MISSION,
            breakdown={"mission_id": mission_id},
            on_date=day,
            now=now,
            events=events,
        )
        events.append(LedgerEvent(
            kind=EventKind.MISSION_CLAIMED,
            user_id=user_id,
            payload={"mission_id": mission_id, "reward": definition.reward},
        ))
        return ClaimResult(mission_id=mission_id, reward=definition.reward, ledger=ledger)

    try:
        result = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    except (AlreadyClaimed, NotCompleted) as exc:
        logger.warning("Claim of %s by %s rejected: %s", mission_id, user_id, exc.code)
        raise
    publish(hub, events)
    return result


def claim_all_completed_bonus(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    *,
    now: datetime | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> ClaimResult:
    """Pay the bonus for finishing every mission of the day, once."""
    now, day = _today(now)
    events: list[LedgerEvent] = []
    reward = tables.all_complete_bonus

    def work(session: Session) -> ClaimResult:
        events.clear()
        lock_user(session, user_id)
        state = load_state(session, tables, user_id, day)
        if state.bonus_claimed:
            raise AlreadyClaimed(f"All-complete bonus already claimed for {day}")
        if not _all_done(state, tables):
            raise NotCompleted("Not every mission is completed yet")

        state.bonus_claimed = True
        state.total_reward_earned = (state.total_reward_earned or 0) + reward
        ledger = credit(
            session, user_id, reward,
            f"{user_id}:{day.isoformat()}:{BONUS_ID}",
            kind=CreditKind.MISSION_BONUS,
            on_date=day,
            now=now,
            events=events,
        )
        events.append(LedgerEvent(
            kind=EventKind.MISSION_CLAIMED,
            user_id=user_id,
            payload={"mission_id": BONUS_ID, "reward": reward},
        ))
        return ClaimResult(mission_id=BONUS_ID, reward=reward, ledger=ledger)

    try:
        result = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    except (AlreadyClaimed, NotCompleted) as exc:
        logger.warning("Bonus claim by %s rejected: %s", user_id, exc.code)
        raise
    publish(hub, events)
    return result
