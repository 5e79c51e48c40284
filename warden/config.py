"""
warden.config — YAML Configuration Loader
==========================================

**Why this file exists:**
Gameplay tables (evolution thresholds, level table, mission catalogue,
audit heuristics) are deployment configuration, not code.  This module
reads ``config.yaml`` once at process start and returns frozen
dataclasses that are passed explicitly into every service call.  Nothing
here is a mutable global.

Usage::

    from warden.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    cfg.game.stage_thresholds           # (0, 30, 150, 600, 2000)
    cfg.game.threshold(2)               # 150
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from warden import constants as C


# ---------------------------------------------------------------------------
# Table row types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LevelTier:
    min_total: int
    level: int
    title: str


@dataclass(frozen=True, slots=True)
class MissionDefinition:
    """A daily mission.  Completion comes from ``trigger`` or ``target_page``."""

    id: str
    title: str
    reward: int
    order: int
    trigger: str | None = None
    target_page: str | None = None


@dataclass(frozen=True, slots=True)
class GuardianDefinition:
    id: str
    name: str
    attribute: str
    tier: int
    ability: str
    ability_value: float
    unlock_type: str = "initial"          # "initial" | "evolution"
    unlock_cost: int = 0
    requires_guardian: str | None = None
    requires_stage: int = 0


@dataclass(frozen=True, slots=True)
class AuditThresholds:
    """Constants for the anomaly heuristics and the consistency score."""

    expected_energy_per_stage: float = 100
    expected_views_per_stage: float = 1000
    recent_window: int = 7
    stale_after_days: int = 30
    high_energy_stage: int = 3
    high_energy_min: float = 300
    low_output_views: float = 1000
    low_output_posts: float = 2
    modification_ratio: float = 2
    growth_ratio: float = 3
    growth_window: int = 3
    identical_views_min_reports: int = 3


# ---------------------------------------------------------------------------
# GameTables — everything the engine needs, immutable
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GameTables:
    stage_thresholds: tuple[int, ...] = C.DEFAULT_STAGE_THRESHOLDS
    stage_aura: tuple[int, ...] = C.DEFAULT_STAGE_AURA
    level_table: tuple[LevelTier, ...] = ()
    missions: tuple[MissionDefinition, ...] = ()
    guardians: dict[str, GuardianDefinition] = field(default_factory=dict)
    audit: AuditThresholds = field(default_factory=AuditThresholds)
    all_complete_bonus: int = C.ALL_COMPLETE_BONUS
    max_modify: int = C.MAX_MODIFY
    base_energy_per_report: int = C.BASE_ENERGY_PER_REPORT
    streak_tiers: tuple[tuple[int, float], ...] = C.STREAK_MULTIPLIER_TIERS
    lucky_chance: float = C.LUCKY_BONUS_CHANCE
    lucky_multiplier: float = C.LUCKY_BONUS_MULTIPLIER
    extra_initial_guardian_cost: int = C.EXTRA_INITIAL_GUARDIAN_COST

    @property
    def max_stage(self) -> int:
        return len(self.stage_thresholds) - 1

    def threshold(self, stage: int) -> int:
        """Cumulative invested energy required to reach *stage*."""
        return self.stage_thresholds[stage]

    def mission(self, mission_id: str) -> MissionDefinition | None:
        for m in self.missions:
            if m.id == mission_id:
                return m
        return None

    def validate(self) -> None:
        """Raise ``ValueError`` if a threshold table is not strictly increasing."""
        _check_increasing("stage_thresholds", list(self.stage_thresholds))
        if len(self.stage_thresholds) != C.MAX_STAGE + 1:
            raise ValueError(
                f"stage_thresholds must have {C.MAX_STAGE + 1} entries, "
                f"got {len(self.stage_thresholds)}"
            )
        if self.stage_thresholds[0] != 0:
            raise ValueError("stage_thresholds[0] must be 0")
        if len(self.stage_aura) != len(self.stage_thresholds):
            raise ValueError("stage_aura must match stage_thresholds in length")
        _check_increasing("level_table", [t.min_total for t in self.level_table])
        if not self.level_table or self.level_table[0].min_total != 0:
            raise ValueError("level_table must start at min_total 0")


def _check_increasing(name: str, values: list) -> None:
    for prev, cur in zip(values, values[1:]):
        if cur <= prev:
            raise ValueError(f"{name} must be strictly increasing: {values}")


def default_game_tables() -> GameTables:
    """Build :class:`GameTables` from the defaults in :mod:`warden.constants`."""
    return GameTables(
        level_table=tuple(LevelTier(*row) for row in C.DEFAULT_LEVEL_TABLE),
        missions=tuple(_mission_from_dict(m) for m in C.DEFAULT_MISSIONS),
        guardians={
            gid: _guardian_from_dict(gid, raw) for gid, raw in C.GUARDIAN_CATALOG.items()
        },
        audit=AuditThresholds(**C.DEFAULT_AUDIT),
    )


def _mission_from_dict(raw: dict) -> MissionDefinition:
    return MissionDefinition(
        id=raw["id"],
        title=raw.get("title", raw["id"]),
        reward=int(raw["reward"]),
        order=int(raw.get("order", 0)),
        trigger=raw.get("trigger"),
        target_page=raw.get("target_page"),
    )


def _guardian_from_dict(gid: str, raw: dict) -> GuardianDefinition:
    ability, value = raw["ability"]
    unlock = raw.get("unlock", {})
    return GuardianDefinition(
        id=gid,
        name=raw["name"],
        attribute=raw["attribute"],
        tier=int(raw["tier"]),
        ability=ability,
        ability_value=float(value),
        unlock_type=unlock.get("type", "initial"),
        unlock_cost=int(unlock.get("energy_cost", 0)),
        requires_guardian=unlock.get("requires"),
        requires_stage=int(unlock.get("stage", 0)),
    )


def _game_tables_from_raw(raw: dict | None) -> GameTables:
    """Overlay the ``game:`` section of the YAML file onto the defaults."""
    tables = default_game_tables()
    if not raw:
        return tables

    overrides: dict = {}
    if "stage_thresholds" in raw:
        overrides["stage_thresholds"] = tuple(int(v) for v in raw["stage_thresholds"])
    if "stage_aura" in raw:
        overrides["stage_aura"] = tuple(int(v) for v in raw["stage_aura"])
    if "level_table" in raw:
        overrides["level_table"] = tuple(
            LevelTier(int(r["min_total"]), int(r["level"]), str(r["title"]))
            for r in raw["level_table"]
        )
    if "missions" in raw:
        overrides["missions"] = tuple(_mission_from_dict(m) for m in raw["missions"])
    if "guardians" in raw:
        overrides["guardians"] = {
            gid: _guardian_from_dict(gid, g) for gid, g in raw["guardians"].items()
        }
    if "audit" in raw:
        overrides["audit"] = replace(tables.audit, **raw["audit"])
    if "streak_tiers" in raw:
        overrides["streak_tiers"] = tuple(
            (int(days), float(mult)) for days, mult in raw["streak_tiers"]
        )
    for key in (
        "all_complete_bonus",
        "max_modify",
        "base_energy_per_report",
        "extra_initial_guardian_cost",
    ):
        if key in raw:
            overrides[key] = int(raw[key])
    for key in ("lucky_chance", "lucky_multiplier"):
        if key in raw:
            overrides[key] = float(raw[key])

    return replace(tables, **overrides)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WardenConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    service_name: str

    # Clock: "today" is evaluated in this zone
    timezone: str

    # Dashboard
    dashboard_port: int

    # Store
    transaction_timeout_ms: int = 5000
    max_transaction_retries: int = 3

    game: GameTables = field(default_factory=default_game_tables)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> WardenConfig:
    """Read *path* and return a :class:`WardenConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a threshold table in the ``game:`` section is malformed.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    game = _game_tables_from_raw(raw.get("game"))
    game.validate()

    return WardenConfig(
        service_name=raw["service_name"],
        timezone=raw.get("timezone", "UTC"),
        dashboard_port=int(raw["dashboard_port"]),
        transaction_timeout_ms=int(raw.get("transaction_timeout_ms", 5000)),
        max_transaction_retries=int(raw.get("max_transaction_retries", 3)),
        game=game,
    )
