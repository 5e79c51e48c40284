"""
warden.services.report_service — Report Intake Gateway
=======================================================

``submit_or_update_report`` is the only way a daily report enters the
store.  One transaction per call, holding the user lock:

1. Validate the input (team, day, metrics).
2. Look up the (user, day) report.
3. **Create** path — compute follower growth against the most recent
   earlier report, insert, recompute the streak, compute the award and
   credit it once under ``"{user}:{day}:report-credit"``, complete the
   ``daily_report`` mission.
4. **Edit** path — enforce the modify cap, apply the new metrics, keep
   the stored follower growth verbatim, never credit.

Two simultaneous first submissions for the same day collide on
``uq_reports_user_date``; the loser is retried and lands on the edit
path.  A timeout rolls everything back (see
:func:`~warden.database.engine.transaction`).
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from warden.config import GameTables
from warden.constants import REPORT_METRIC_FIELDS
from warden.database.engine import DEFAULT_RETRIES, run_in_transaction
from warden.database.models import CreditKind, Report, User, as_utc
from warden.engine.energy import EnergyAward, active_abilities, calculate_report_energy
from warden.engine.events import EventKind, LedgerEvent, LedgerEventHub, publish
from warden.engine.growth import follower_growth
from warden.engine.snapshots import LedgerSnapshot, ReportSnapshot
from warden.engine.streak import StreakResult, recompute
from warden.errors import ModifyLimitExceeded, NotFoundError, ValidationError
from warden.services import mission_service
from warden.services.ledger_service import credit, lock_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Warning attached to the edit that uses up the last modification.
DISTRUST_WARNING = "guardian_distrust"

MAX_COMMENT_LENGTH = 1000


@dataclass(frozen=True, slots=True)
class ReportResult:
    report: ReportSnapshot
    created: bool
    energy_awarded: int = 0
    award: EnergyAward | None = None
    streak: StreakResult | None = None
    ledger: LedgerSnapshot | None = None
    warning: str | None = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def parse_report_date(value: date | str) -> date:
    """Accept a ``date`` or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError("InvalidDate", f"Not a calendar day: {value!r}") from exc


def validate_metrics(metrics: Mapping[str, Any]) -> dict[str, int]:
    """Known metric names only, each a non-negative integer."""
    clean: dict[str, int] = {}
    for name, value in metrics.items():
        if name not in REPORT_METRIC_FIELDS:
            raise ValidationError("UnknownMetric", f"Unknown metric {name!r}")
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("InvalidMetric", f"{name} must be an integer")
        if value < 0:
            raise ValidationError("InvalidMetric", f"{name} must be ≥ 0")
        clean[name] = value
    return clean


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def submit_or_update_report(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    date: date | str,
    team_id: str | None,
    metrics: Mapping[str, Any],
    *,
    comment: str | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
    hub: LedgerEventHub | None = None,
    retries: int = DEFAULT_RETRIES,
    timeout_ms: int | None = None,
) -> ReportResult:
    """Create the day's report, or edit it if one already exists.

    Raises
    ------
    ValidationError
        ``MissingTeam``, ``InvalidDate``, ``FutureDate``, ``UnknownMetric``,
        ``InvalidMetric`` or ``CommentTooLong``.
    ModifyLimitExceeded
        The day's report has already been edited ``max_modify`` times.
    NotFoundError
        Unknown user, or the report disappeared mid-edit.
    StoreTimeout
        The store did not acknowledge in time; nothing was applied.
    """
    if not team_id or not str(team_id).strip():
        raise ValidationError("MissingTeam", "A team is required to submit a report")
    team = str(team_id).strip()
    day = parse_report_date(date)
    now = now or datetime.now(UTC)
    if day > now.date():
        raise ValidationError("FutureDate", f"Cannot report for a future day ({day})")
    values = validate_metrics(metrics)
    if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError("CommentTooLong", f"Comment exceeds {MAX_COMMENT_LENGTH} chars")

    events: list[LedgerEvent] = []

    def work(session: Session) -> ReportResult:
        events.clear()
        lock_user(session, user_id)
        report = _find_report(session, user_id, day)
        if report is None:
            return _create(session, tables, user_id, day, team, values, comment, now, rng, events)
        return _edit(session, tables, report, team, values, comment, now, events)

    try:
        result = run_in_transaction(engine, work, retries=retries, timeout_ms=timeout_ms)
    except ModifyLimitExceeded:
        logger.warning("Report edit for %s on %s rejected: modify cap reached", user_id, day)
        raise
    publish(hub, events)
    return result


def _find_report(session: Session, user_id: str, day: date) -> Report | None:
    return session.scalar(
        select(Report).where(Report.user_id == user_id, Report.date == day)
    )


def _create(
    session: Session,
    tables: GameTables,
    user_id: str,
    day: date,
    team: str,
    values: dict[str, int],
    comment: str | None,
    now: datetime,
    rng: random.Random | None,
    events: list[LedgerEvent],
) -> ReportResult:
    previous = session.scalar(
        select(Report)
        .where(Report.user_id == user_id, Report.date < day)
        .order_by(Report.date.desc())
        .limit(1)
    )
    growth = follower_growth(
        values,
        {f: getattr(previous, f) for f in REPORT_METRIC_FIELDS} if previous else None,
    )

    report = Report(
        user_id=user_id,
        date=day,
        team=team,
        follower_growth=growth,
        comment=comment,
        modify_count=0,
        created_at=as_utc(now),
        **{f: values.get(f, 0) for f in REPORT_METRIC_FIELDS},
    )
    session.add(report)
    session.flush()

    user = session.get(User, user_id)
    dates = session.scalars(select(Report.date).where(Report.user_id == user_id)).all()
    streak = recompute(dates, now.date())
    user.streak_current = streak.current
    user.streak_max = max(user.streak_max or 0, streak.longest)
    user.last_report_at = as_utc(now)
    if not user.team:
        user.team = team

    award = calculate_report_energy(
        tables,
        streak_days=max(streak.current, 1),
        abilities=active_abilities(user.guardians, tables),
        submitted_on=now.date(),
        rng=rng,
    )
    report.energy_awarded = award.total
    ledger = credit(
        session, user_id, award.total, f"{user_id}:{day.isoformat()}:report-credit",
        kind=CreditKind.REPORT,
        breakdown=award.as_dict(),
        on_date=day,
        streak_day=streak.current,
        now=now,
        events=events,
    )
    mission_service.mark_completed(
        session, tables, user_id, now.date(), trigger="daily_report", now=now
    )

    logger.info(
        "Report %s created for %s on %s — %d energy (streak %d)",
        report.id, user_id, day, award.total, streak.current,
    )
    snapshot = ReportSnapshot.from_model(report)
    events.append(LedgerEvent(
        kind=EventKind.REPORT_SUBMITTED,
        user_id=user_id,
        payload={"report_id": report.id, "date": day.isoformat(),
                 "energy": award.total, "streak": streak.current},
    ))
    return ReportResult(
        report=snapshot,
        created=True,
        energy_awarded=award.total,
        award=award,
        streak=streak,
        ledger=ledger,
    )


def _edit(
    session: Session,
    tables: GameTables,
    report: Report,
    team: str,
    values: dict[str, int],
    comment: str | None,
    now: datetime,
    events: list[LedgerEvent],
) -> ReportResult:
    if report.modify_count >= tables.max_modify:
        raise ModifyLimitExceeded(
            f"Report for {report.date} has already been modified "
            f"{report.modify_count} times"
        )

    # follower_growth is fixed at creation and never recomputed here.
    for name, value in values.items():
        setattr(report, name, value)
    report.team = team
    if comment is not None:
        report.comment = comment
    report.modify_count += 1
    report.modified_at = as_utc(now)
    try:
        session.flush()
    except StaleDataError as exc:
        raise NotFoundError(f"Report for {report.date} no longer exists") from exc

    warning = DISTRUST_WARNING if report.modify_count >= tables.max_modify else None
    logger.info(
        "Report %s modified by %s (%d/%d)",
        report.id, report.user_id, report.modify_count, tables.max_modify,
    )
    events.append(LedgerEvent(
        kind=EventKind.REPORT_MODIFIED,
        user_id=report.user_id,
        payload={"report_id": report.id, "date": report.date.isoformat(),
                 "modify_count": report.modify_count},
    ))
    return ReportResult(
        report=ReportSnapshot.from_model(report),
        created=False,
        warning=warning,
    )


def get_reports(
    engine: Engine, user_id: str, *, limit: int | None = None
) -> list[ReportSnapshot]:
    """A user's reports, newest first."""
    with Session(engine) as session:
        stmt = (
            select(Report)
            .where(Report.user_id == user_id)
            .order_by(Report.date.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [ReportSnapshot.from_model(r) for r in session.scalars(stmt)]
