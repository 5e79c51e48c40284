"""
warden.engine.energy — Report energy award pipeline
====================================================

Pure calculation — the only randomness (lucky bonus) comes from an
injected :class:`random.Random`, so tests and replays are deterministic.

Pipeline stages:
  Base → Streak multiplier → Energy-boost ability → Lucky roll → Weekend bonus → floor
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

from warden.config import GameTables
from warden.constants import ABILITY_STAGE
from warden.engine.streak import streak_multiplier

logger = logging.getLogger(__name__)

__all__ = ["EnergyAward", "active_abilities", "calculate_report_energy"]


class _GuardianLike(Protocol):
    guardian_id: str
    stage: int
    unlocked: bool


@dataclass
class EnergyAward:
    """Final award for one report, with a human-readable breakdown."""

    base: int
    streak_days: int
    streak_multiplier: float
    ability_bonus: float = 0.0
    lucky: bool = False
    weekend: bool = False
    total: int = 0
    breakdown: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "base": self.base,
            "streak_days": self.streak_days,
            "streak_multiplier": self.streak_multiplier,
            "ability_bonus": self.ability_bonus,
            "lucky": self.lucky,
            "weekend": self.weekend,
            "total": self.total,
            "lines": list(self.breakdown),
        }


def active_abilities(
    guardians: Iterable[_GuardianLike], tables: GameTables
) -> dict[str, float]:
    """Ability name → effect value for every unlocked guardian at stage ≥ 3."""
    abilities: dict[str, float] = {}
    for g in guardians:
        if not g.unlocked or g.stage < ABILITY_STAGE:
            continue
        definition = tables.guardians.get(g.guardian_id)
        if definition is None:
            continue
        abilities[definition.ability] = definition.ability_value
    return abilities


def calculate_report_energy(
    tables: GameTables,
    *,
    streak_days: int,
    abilities: dict[str, float],
    submitted_on: date,
    rng: random.Random | None = None,
) -> EnergyAward:
    """Energy earned for a day's first report.

    *streak_days* is the streak **including** this report.  The weekend
    bonus follows *submitted_on*, the local day the report came in, not
    the day it reports on.
    """
    roll = (rng or random).random()

    base = tables.base_energy_per_report
    mult = streak_multiplier(
        streak_days, tables.streak_tiers, bonus=abilities.get("streak_bonus", 0.0)
    )
    award = EnergyAward(base=base, streak_days=streak_days, streak_multiplier=mult)
    award.breakdown.append(f"base: {base}E")

    energy = base * mult
    if mult > 1.0:
        award.breakdown.append(f"streak x{mult:.1f} ({streak_days} days)")

    if "energy_boost" in abilities:
        award.ability_bonus = energy * abilities["energy_boost"]
        energy += award.ability_bonus
        award.breakdown.append(f"energy boost +{abilities['energy_boost']:.0%}")

    chance = abilities.get("lucky_boost", tables.lucky_chance)
    if roll < chance:
        award.lucky = True
        energy *= tables.lucky_multiplier
        award.breakdown.append(f"lucky bonus x{tables.lucky_multiplier:g}")

    if "weekend_bonus" in abilities and submitted_on.weekday() >= 5:
        award.weekend = True
        energy *= abilities["weekend_bonus"]
        award.breakdown.append(f"weekend bonus x{abilities['weekend_bonus']:g}")

    award.total = int(energy)
    logger.debug("Report energy on %s: %d (%s)", submitted_on, award.total, award.breakdown)
    return award
