"""
warden.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- users            — Member profile: energy ledger, streak, active guardian
- guardians        — One row per (user, guardian): stage, invested energy, memories
- reports          — One daily report per (user, date), unique-constrained
- energy_credits   — Append-only credit journal; per-user unique ``source_key`` makes
                     every credit idempotent and doubles as energy history
- daily_missions   — Per (user, date) mission completion / claim state
- admin_log        — Append-only audit trail of admin mutations

Timestamps are stored in UTC (see :func:`as_utc`); SQLite drops the zone
on the way in, so anything else would read back shifted.
"""

from __future__ import annotations

import enum
import datetime as dt
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Warden ORM models."""


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a timestamp to UTC.  Naive values are taken as UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class CreditKind(enum.StrEnum):
    """Where a ledger credit came from."""
    REPORT = "report"
    MISSION = "mission"
    MISSION_BONUS = "mission_bonus"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Users — profile + energy ledger
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    team: Mapped[str | None] = mapped_column(String(50), default=None)
    status: Mapped[str] = mapped_column(String(20), default=UserStatus.PENDING.value)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # Energy ledger
    energy_current: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    energy_total_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    active_guardian_id: Mapped[str | None] = mapped_column(String(32), default=None)

    # Streak
    streak_current: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak_max: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_report_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # Optimistic concurrency counter (managed by the mapper)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    guardians: Mapped[list[Guardian]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    reports: Mapped[list[Report]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    credits: Mapped[list[EnergyCredit]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("energy_current >= 0", name="ck_users_energy_non_negative"),
        CheckConstraint("energy_total_earned >= 0", name="ck_users_total_non_negative"),
        Index("ix_users_total_earned", "energy_total_earned"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<User id={self.id!r} energy={self.energy_current}/{self.energy_total_earned}>"


# ---------------------------------------------------------------------------
# Guardians — one per (user, guardian_id)
# ---------------------------------------------------------------------------
class Guardian(Base):
    __tablename__ = "guardians"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    guardian_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    unlocked: Mapped[bool] = mapped_column(Boolean, default=True)
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    stage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    invested_energy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    memories: Mapped[list | None] = mapped_column(JSONB, default=list)
    memo: Mapped[str | None] = mapped_column(Text, default=None)
    nickname: Mapped[str | None] = mapped_column(String(50), default=None)

    user: Mapped[User] = relationship(back_populates="guardians")

    __table_args__ = (
        CheckConstraint("stage >= 0 AND stage <= 4", name="ck_guardians_stage_range"),
        CheckConstraint("invested_energy >= 0", name="ck_guardians_invested_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Guardian {self.user_id}/{self.guardian_id} stage={self.stage}>"


# ---------------------------------------------------------------------------
# Reports — one per (user, date)
# ---------------------------------------------------------------------------
class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    team: Mapped[str] = mapped_column(String(50), nullable=False)

    # Shorts-style metrics
    ig_views: Mapped[int] = mapped_column(Integer, default=0)
    ig_profile_access: Mapped[int] = mapped_column(Integer, default=0)
    ig_external_taps: Mapped[int] = mapped_column(Integer, default=0)
    ig_interactions: Mapped[int] = mapped_column(Integer, default=0)
    weekly_stories: Mapped[int] = mapped_column(Integer, default=0)
    ig_posts: Mapped[int] = mapped_column(Integer, default=0)
    yt_posts: Mapped[int] = mapped_column(Integer, default=0)
    tiktok_posts: Mapped[int] = mapped_column(Integer, default=0)

    # X-style metrics
    post_count: Mapped[int] = mapped_column(Integer, default=0)
    like_count: Mapped[int] = mapped_column(Integer, default=0)
    reply_count: Mapped[int] = mapped_column(Integer, default=0)

    # Absolute follower counts as reported
    ig_followers: Mapped[int] = mapped_column(Integer, default=0)
    yt_followers: Mapped[int] = mapped_column(Integer, default=0)
    tiktok_followers: Mapped[int] = mapped_column(Integer, default=0)
    x_followers: Mapped[int] = mapped_column(Integer, default=0)

    # {"ig": n, "yt": n, "tiktok": n, "x": n}, fixed at creation
    follower_growth: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, default=None)

    modify_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    energy_awarded: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    user: Mapped[User] = relationship(back_populates="reports")

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_reports_user_date"),
        Index("ix_reports_user_date", "user_id", "date"),
        Index("ix_reports_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} user={self.user_id!r} date={self.date}>"


# ---------------------------------------------------------------------------
# EnergyCredit — idempotent credit journal
# ---------------------------------------------------------------------------
class EnergyCredit(Base):
    __tablename__ = "energy_credits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    source_key: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    breakdown: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    on_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    streak_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="credits")

    __table_args__ = (
        UniqueConstraint("user_id", "source_key", name="uq_energy_credits_user_source_key"),
        CheckConstraint("amount >= 0", name="ck_energy_credits_amount_non_negative"),
        Index("ix_energy_credits_user_date", "user_id", "on_date"),
    )

    def __repr__(self) -> str:
        return f"<EnergyCredit key={self.source_key!r} amount={self.amount}>"


# ---------------------------------------------------------------------------
# DailyMission — per (user, date) mission state
# ---------------------------------------------------------------------------
class DailyMission(Base):
    __tablename__ = "daily_missions"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    # [{"mission_id", "completed", "completed_at", "claimed", "claimed_at"}]
    missions: Mapped[list] = mapped_column(JSONB, nullable=False)
    all_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    bonus_claimed: Mapped[bool] = mapped_column(Boolean, default=False)
    total_reward_earned: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<DailyMission user={self.user_id!r} date={self.date}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"
