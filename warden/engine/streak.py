"""
warden.engine.streak — Consecutive-day streaks
===============================================

Pure functions over a user's report dates.  Nothing here mutates state;
the continuation warning is advisory only.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from warden.constants import (
    STREAK_CRITICAL_HOURS,
    STREAK_MULTIPLIER_TIERS,
    STREAK_WARNING_HOURS,
)

__all__ = [
    "StreakResult",
    "StreakWarning",
    "continuation_warning",
    "recompute",
    "streak_multiplier",
]

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class StreakResult:
    current: int
    longest: int


class StreakWarning(enum.StrEnum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


def recompute(report_dates: Iterable[date], today: date) -> StreakResult:
    """Current and longest run of consecutive report days.

    ``current`` counts the unbroken run ending today, or ending yesterday
    when today's report is not in yet; any older gap yields 0.  Dates after
    *today* are ignored.
    """
    days = sorted({d for d in report_dates if d <= today}, reverse=True)
    if not days:
        return StreakResult(current=0, longest=0)

    current = 0
    if days[0] in (today, today - _ONE_DAY):
        expected = days[0]
        for d in days:
            if d != expected:
                break
            current += 1
            expected = d - _ONE_DAY

    longest = run = 1
    for newer, older in zip(days, days[1:]):
        if newer - older == _ONE_DAY:
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    return StreakResult(current=current, longest=max(longest, current))


def continuation_warning(
    last_report_at: datetime | None,
    now: datetime,
    *,
    warning_hours: float = STREAK_WARNING_HOURS,
    critical_hours: float = STREAK_CRITICAL_HOURS,
) -> StreakWarning:
    """How urgently the member should report to keep the streak alive."""
    if last_report_at is None:
        return StreakWarning.NONE
    hours = (now - last_report_at).total_seconds() / 3600
    if hours >= critical_hours:
        return StreakWarning.CRITICAL
    if hours >= warning_hours:
        return StreakWarning.WARNING
    return StreakWarning.NONE


def streak_multiplier(
    streak_days: int,
    tiers: Sequence[tuple[int, float]] = STREAK_MULTIPLIER_TIERS,
    *,
    bonus: float = 0.0,
) -> float:
    """Energy multiplier for a streak of *streak_days*, plus an ability *bonus*.

    *tiers* is a sequence of ``(minimum days, multiplier)``.
    """
    multiplier = 1.0
    for min_days, mult in sorted(tiers, reverse=True):
        if streak_days >= min_days:
            multiplier = mult
            break
    return multiplier + bonus
