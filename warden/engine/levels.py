"""
warden.engine.levels — Level & title from cumulative energy
============================================================

Pure lookup over the monotonically increasing level table.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from warden.config import LevelTier

__all__ = ["LevelInfo", "LevelProgress", "level_for", "progress"]


@dataclass(frozen=True, slots=True)
class LevelInfo:
    level: int
    title: str


@dataclass(frozen=True, slots=True)
class LevelProgress:
    percent: int
    remaining: int
    next_level: int | None = None


def _tier_index(total_earned: int, table: Sequence[LevelTier]) -> int:
    index = 0
    for i, tier in enumerate(table):
        if total_earned >= tier.min_total:
            index = i
    return index


def level_for(total_earned: int, table: Sequence[LevelTier]) -> LevelInfo:
    tier = table[_tier_index(total_earned, table)]
    return LevelInfo(level=tier.level, title=tier.title)


def progress(total_earned: int, table: Sequence[LevelTier]) -> LevelProgress:
    """Progress toward the next tier; the top tier reports 100 / 0."""
    index = _tier_index(total_earned, table)
    if index >= len(table) - 1:
        return LevelProgress(percent=100, remaining=0)

    current, nxt = table[index], table[index + 1]
    span = nxt.min_total - current.min_total
    into = total_earned - current.min_total
    return LevelProgress(
        percent=min(100, round(into / span * 100)),
        remaining=nxt.min_total - total_earned,
        next_level=nxt.level,
    )
