"""
warden.engine.evolution — Stage resolution & evolution steps
=============================================================

Pure calculation — no DB I/O.  A guardian's stage is a deterministic
function of its invested energy through the threshold table; a single
large investment may cross several thresholds and therefore produce
several evolution steps, returned in order.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

__all__ = [
    "EvolutionOutcome",
    "NextStage",
    "aura_level",
    "energy_to_next_stage",
    "resolve_evolution",
    "stage_for",
]


@dataclass(frozen=True, slots=True)
class EvolutionOutcome:
    steps: list[tuple[int, int]]
    final_stage: int
    final_invested_energy: int

    @property
    def evolved(self) -> bool:
        return bool(self.steps)


@dataclass(frozen=True, slots=True)
class NextStage:
    required: int
    current: int
    remaining: int


def stage_for(invested_energy: int, thresholds: Sequence[int]) -> int:
    """Highest stage whose threshold *invested_energy* has reached."""
    stage = 0
    for s, required in enumerate(thresholds):
        if invested_energy >= required:
            stage = s
    return stage


def resolve_evolution(
    stage: int, invested_energy: int, thresholds: Sequence[int]
) -> EvolutionOutcome:
    """Advance *stage* one step at a time while the next threshold is met.

    Never lowers the stage: a guardian already above what its energy implies
    (e.g. after a threshold table change) keeps its stage.
    """
    max_stage = len(thresholds) - 1
    steps: list[tuple[int, int]] = []
    while stage < max_stage and invested_energy >= thresholds[stage + 1]:
        stage += 1
        steps.append((stage - 1, stage))
    return EvolutionOutcome(
        steps=steps, final_stage=stage, final_invested_energy=invested_energy
    )


def energy_to_next_stage(
    invested_energy: int,
    stage: int,
    thresholds: Sequence[int],
    *,
    cost_reduction: float = 0.0,
) -> NextStage | None:
    """Energy still needed for the next stage, or ``None`` at the final stage.

    *cost_reduction* (0–1) discounts the displayed requirement when a
    cost-reducing guardian ability is active.
    """
    if stage >= len(thresholds) - 1:
        return None
    required = thresholds[stage + 1]
    if cost_reduction:
        required = round(required * (1 - cost_reduction))
    return NextStage(
        required=required,
        current=invested_energy,
        remaining=max(0, required - invested_energy),
    )


def aura_level(
    invested_energy: int,
    stage: int,
    thresholds: Sequence[int],
    aura: Sequence[int],
) -> int:
    """Aura intensity 0–100, interpolated linearly between stage anchors."""
    if stage >= len(thresholds) - 1:
        return 100
    start, end = thresholds[stage], thresholds[stage + 1]
    progress = (invested_energy - start) / (end - start)
    progress = min(max(progress, 0.0), 1.0)
    base, target = aura[stage], aura[stage + 1]
    return min(100, round(base + (target - base) * progress))
