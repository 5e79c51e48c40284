"""
warden.engine.growth — Follower-growth deltas
==============================================

Reports carry absolute follower counts; what gets stored and scored is
the growth since the previous report, never negative.
"""

from __future__ import annotations

from collections.abc import Mapping

from warden.constants import FOLLOWER_PLATFORMS


def follower_growth(
    current: Mapping[str, int | None],
    previous: Mapping[str, int | None] | None,
) -> dict[str, int]:
    """Per-platform ``max(0, current - previous)``.

    Both mappings are keyed ``"{platform}_followers"``.  With no previous
    report every platform starts from zero.  A decrease is zero growth,
    not a loss.
    """
    growth: dict[str, int] = {}
    for platform in FOLLOWER_PLATFORMS:
        key = f"{platform}_followers"
        now = current.get(key) or 0
        before = (previous or {}).get(key) or 0
        growth[platform] = max(0, now - before)
    return growth
