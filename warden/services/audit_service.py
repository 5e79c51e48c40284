"""
warden.services.audit_service — Admin audit over persisted state
=================================================================

Read-only.  Loads reports, ledger and guardian stage in a plain session
(no locks, nothing committed) and hands them to the pure auditor in
:mod:`warden.engine.audit`.  Safe to run alongside any write.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.config import AuditThresholds, GameTables
from warden.database.models import Report, User, UserStatus
from warden.engine import audit as auditor
from warden.engine.snapshots import LedgerSnapshot, ReportSnapshot
from warden.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserAudit:
    user_id: str
    display_name: str
    team: str | None
    guardian_stage: int
    ledger: LedgerSnapshot
    report_count: int
    result: auditor.AnomalyReport

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "team": self.team,
            "guardian_stage": self.guardian_stage,
            "energy": {
                "current": self.ledger.current,
                "total_earned": self.ledger.total_earned,
            },
            "report_count": self.report_count,
            "flag_count": self.result.flags.count,
            **self.result.as_dict(),
        }


def detect_anomalies(
    reports: Sequence[ReportSnapshot],
    energy: int,
    stage: int,
    thresholds: AuditThresholds | None = None,
) -> auditor.AnomalyFlags:
    """Flags only, for callers that already hold the data."""
    return auditor.detect_anomalies(reports, energy, stage, thresholds)


def _guardian_stage(user: User) -> int:
    """Stage of the active guardian, else the most evolved unlocked one."""
    unlocked = [g for g in user.guardians if g.unlocked]
    for g in unlocked:
        if g.guardian_id == user.active_guardian_id:
            return g.stage
    return max((g.stage for g in unlocked), default=0)


def _audit_loaded(
    session: Session, user: User, tables: GameTables, today: date
) -> UserAudit:
    reports = [
        ReportSnapshot.from_model(r)
        for r in session.scalars(select(Report).where(Report.user_id == user.id))
    ]
    ledger = LedgerSnapshot.from_user(user)
    stage = _guardian_stage(user)
    result = auditor.audit(
        reports, ledger, stage, today=today, thresholds=tables.audit
    )
    return UserAudit(
        user_id=user.id,
        display_name=user.display_name,
        team=user.team,
        guardian_stage=stage,
        ledger=ledger,
        report_count=len(reports),
        result=result,
    )


def audit_user(
    engine: Engine,
    tables: GameTables,
    user_id: str,
    *,
    today: date | None = None,
) -> UserAudit:
    today = today or datetime.now(UTC).date()
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"Unknown user {user_id!r}")
        return _audit_loaded(session, user, tables, today)


def audit_all(
    engine: Engine,
    tables: GameTables,
    *,
    today: date | None = None,
    team: str | None = None,
) -> list[UserAudit]:
    """Audit every approved member, most suspicious first.

    Ordered by flag count (descending), then consistency score
    (ascending), then user id.
    """
    today = today or datetime.now(UTC).date()
    with Session(engine) as session:
        stmt = select(User).where(User.status == UserStatus.APPROVED.value)
        if team is not None:
            stmt = stmt.where(User.team == team)
        results = [_audit_loaded(session, u, tables, today) for u in session.scalars(stmt).all()]

    flagged = sum(1 for r in results if r.result.flags.count)
    logger.info("Audited %d members, %d flagged", len(results), flagged)
    return sorted(
        results,
        key=lambda r: (-r.result.flags.count, r.result.consistency_score, r.user_id),
    )
