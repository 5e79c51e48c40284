"""
warden.constants — Default Game Tables & Shared Constants
==========================================================

Single source of truth for the default gameplay tables.  Deployments
override any of them through the ``game:`` section of ``config.yaml``;
:func:`warden.config.default_game_tables` turns these plain values into
the frozen dataclasses the engine consumes.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Evolution stages
# ---------------------------------------------------------------------------
MAX_STAGE = 4

STAGE_NAMES: tuple[str, ...] = ("Egg", "Hatchling", "Juvenile", "Mature", "Ultimate")

# Cumulative invested energy required to *reach* each stage (index = stage).
DEFAULT_STAGE_THRESHOLDS: tuple[int, ...] = (0, 30, 150, 600, 2000)

# Aura intensity (0-100) at the start of each stage.
DEFAULT_STAGE_AURA: tuple[int, ...] = (0, 20, 50, 80, 100)

# Stage at which a guardian's ability switches on.
ABILITY_STAGE = 3


# ---------------------------------------------------------------------------
# Report intake
# ---------------------------------------------------------------------------
MAX_MODIFY = 3

FOLLOWER_PLATFORMS: tuple[str, ...] = ("ig", "yt", "tiktok", "x")

# Metric fields accepted on a report, all non-negative integers.
REPORT_METRIC_FIELDS: tuple[str, ...] = (
    "ig_views",
    "ig_profile_access",
    "ig_external_taps",
    "ig_interactions",
    "weekly_stories",
    "ig_posts",
    "yt_posts",
    "tiktok_posts",
    "post_count",
    "like_count",
    "reply_count",
    "ig_followers",
    "yt_followers",
    "tiktok_followers",
    "x_followers",
)

# Activity fields inspected by the zero-activity integrity check.
ACTIVITY_FIELDS: tuple[str, ...] = (
    "ig_views",
    "ig_posts",
    "yt_posts",
    "tiktok_posts",
    "post_count",
    "like_count",
    "reply_count",
)


# ---------------------------------------------------------------------------
# Energy earning
# ---------------------------------------------------------------------------
BASE_ENERGY_PER_REPORT = 10

# (minimum streak days, multiplier), checked top-down.
STREAK_MULTIPLIER_TIERS: tuple[tuple[int, float], ...] = (
    (31, 3.0),
    (15, 2.0),
    (8, 1.5),
    (4, 1.2),
)

LUCKY_BONUS_CHANCE = 0.05
LUCKY_BONUS_MULTIPLIER = 10

STREAK_WARNING_HOURS = 20
STREAK_CRITICAL_HOURS = 23


# ---------------------------------------------------------------------------
# Guardian catalogue
# ---------------------------------------------------------------------------
# Cost of a second (or later) tier-1 guardian; the first one is free.
EXTRA_INITIAL_GUARDIAN_COST = 200

GUARDIAN_CATALOG: dict[str, dict] = {
    "horyu": {
        "name": "Horyu",
        "attribute": "power",
        "tier": 1,
        "ability": ("energy_boost", 0.15),
        "unlock": {"type": "initial"},
    },
    "shishimaru": {
        "name": "Shishimaru",
        "attribute": "power",
        "tier": 2,
        "ability": ("streak_bonus", 0.2),
        "unlock": {"type": "evolution", "energy_cost": 300, "requires": "horyu", "stage": 2},
    },
    "hanase": {
        "name": "Hanase",
        "attribute": "beauty",
        "tier": 1,
        "ability": ("streak_grace", 12),
        "unlock": {"type": "initial"},
    },
    "shiroko": {
        "name": "Shiroko",
        "attribute": "beauty",
        "tier": 2,
        "ability": ("lucky_boost", 0.10),
        "unlock": {"type": "evolution", "energy_cost": 300, "requires": "hanase", "stage": 2},
    },
    "kitama": {
        "name": "Kitama",
        "attribute": "cyber",
        "tier": 1,
        "ability": ("cost_reduce", 0.15),
        "unlock": {"type": "initial"},
    },
    "hoshimaru": {
        "name": "Hoshimaru",
        "attribute": "cyber",
        "tier": 2,
        "ability": ("weekend_bonus", 2.5),
        "unlock": {"type": "evolution", "energy_cost": 300, "requires": "kitama", "stage": 2},
    },
}


# ---------------------------------------------------------------------------
# Levels — (minimum total earned, level, title)
# ---------------------------------------------------------------------------
DEFAULT_LEVEL_TABLE: tuple[tuple[int, int, str], ...] = (
    (0, 1, "Rookie"),
    (100, 2, "Apprentice"),
    (300, 3, "Adventurer"),
    (700, 4, "Challenger"),
    (1500, 5, "Veteran"),
    (3000, 6, "Expert"),
    (6000, 7, "Master"),
    (10000, 8, "Hero"),
    (20000, 9, "Legend"),
    (50000, 10, "Deity"),
)


# ---------------------------------------------------------------------------
# Daily missions
# ---------------------------------------------------------------------------
DEFAULT_MISSIONS: tuple[dict, ...] = (
    {"id": "daily_report", "title": "Submit today's report", "reward": 5,
     "order": 1, "trigger": "daily_report"},
    {"id": "guardian_feed", "title": "Invest energy in a guardian", "reward": 3,
     "order": 2, "trigger": "energy_invest"},
    {"id": "ranking_check", "title": "Check the ranking", "reward": 2,
     "order": 3, "target_page": "/ranking"},
    {"id": "dm_check", "title": "Check your messages", "reward": 2,
     "order": 4, "target_page": "/dm"},
)

ALL_COMPLETE_BONUS = 5


# ---------------------------------------------------------------------------
# Audit heuristics
# ---------------------------------------------------------------------------
DEFAULT_AUDIT: dict[str, float | int] = {
    "expected_energy_per_stage": 100,    # K_e
    "expected_views_per_stage": 1000,    # K_v
    "recent_window": 7,
    "stale_after_days": 30,
    "high_energy_stage": 3,
    "high_energy_min": 300,
    "low_output_views": 1000,
    "low_output_posts": 2,
    "modification_ratio": 2,
    "growth_ratio": 3,
    "growth_window": 3,
    "identical_views_min_reports": 3,
}
