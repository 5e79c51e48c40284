"""
warden.engine.snapshots — Detached read models
===============================================

Plain frozen dataclasses handed out by the services instead of live ORM
rows, so callers can read them after the session has closed and can
never mutate persisted state through them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

from warden.constants import REPORT_METRIC_FIELDS

if TYPE_CHECKING:
    from warden.database.models import Guardian, Report, User


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    user_id: str
    current: int
    total_earned: int

    @classmethod
    def from_user(cls, user: User) -> LedgerSnapshot:
        return cls(
            user_id=user.id,
            current=user.energy_current,
            total_earned=user.energy_total_earned,
        )


@dataclass(frozen=True, slots=True)
class GuardianSnapshot:
    guardian_id: str
    unlocked: bool
    stage: int
    invested_energy: int
    memories: tuple[dict, ...] = ()
    memo: str | None = None
    nickname: str | None = None
    unlocked_at: datetime | None = None

    @classmethod
    def from_model(cls, g: Guardian) -> GuardianSnapshot:
        return cls(
            guardian_id=g.guardian_id,
            unlocked=bool(g.unlocked),
            stage=g.stage,
            invested_energy=g.invested_energy,
            memories=tuple(g.memories or ()),
            memo=g.memo,
            nickname=g.nickname,
            unlocked_at=g.unlocked_at,
        )


@dataclass(frozen=True, slots=True)
class ReportSnapshot:
    id: int | None
    user_id: str
    date: date
    team: str
    metrics: dict[str, int] = field(default_factory=dict)
    follower_growth: dict[str, int] = field(default_factory=dict)
    comment: str | None = None
    modify_count: int = 0
    energy_awarded: int = 0
    created_at: datetime | None = None
    modified_at: datetime | None = None

    def metric(self, name: str) -> int:
        return self.metrics.get(name) or 0

    @classmethod
    def from_model(cls, r: Report) -> ReportSnapshot:
        return cls(
            id=r.id,
            user_id=r.user_id,
            date=r.date,
            team=r.team,
            metrics={name: getattr(r, name) or 0 for name in REPORT_METRIC_FIELDS},
            follower_growth=dict(r.follower_growth or {}),
            comment=r.comment,
            modify_count=r.modify_count or 0,
            energy_awarded=r.energy_awarded or 0,
            created_at=r.created_at,
            modified_at=r.modified_at,
        )
