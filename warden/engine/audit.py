"""
warden.engine.audit — Anomaly & consistency auditor
====================================================

Pure, deterministic, read-only.  Given the same reports, ledger and
stage it always returns the same :class:`AnomalyReport`; nothing is
persisted, so the result can never drift from the underlying data.

The flags are advisory signals for administrators, not proof of
wrongdoing.  No input ever makes this module raise: missing data simply
yields a clean result.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import date

from warden.config import AuditThresholds
from warden.constants import ACTIVITY_FIELDS
from warden.engine.snapshots import LedgerSnapshot, ReportSnapshot

logger = logging.getLogger(__name__)

__all__ = [
    "AnomalyFlags",
    "AnomalyReport",
    "DataIntegrityIssue",
    "IssueType",
    "audit",
    "consistency_score",
    "detect_anomalies",
    "find_integrity_issues",
]


class IssueType(enum.StrEnum):
    DUPLICATE_DATE = "duplicate_date"
    FUTURE_DATE = "future_date"
    STALE_REPORT = "stale_report"
    ZERO_ACTIVITY = "zero_activity"
    STAGE_ENERGY_MISMATCH = "stage_energy_mismatch"


@dataclass(frozen=True, slots=True)
class DataIntegrityIssue:
    type: IssueType
    severity: str          # "low" | "medium" | "high"
    message: str


@dataclass(frozen=True, slots=True)
class AnomalyFlags:
    high_energy_low_output: bool = False
    frequent_modification: bool = False
    inconsistent_growth: bool = False
    suspicious_pattern: bool = False

    @property
    def count(self) -> int:
        return sum(
            (
                self.high_energy_low_output,
                self.frequent_modification,
                self.inconsistent_growth,
                self.suspicious_pattern,
            )
        )


@dataclass(frozen=True, slots=True)
class AnomalyReport:
    flags: AnomalyFlags
    consistency_score: int
    issues: list[DataIntegrityIssue] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "flags": asdict(self.flags),
            "consistency_score": self.consistency_score,
            "issues": [
                {"type": str(i.type), "severity": i.severity, "message": i.message}
                for i in self.issues
            ],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _views(r: ReportSnapshot) -> int:
    """Primary output figure: IG views, falling back to X post count."""
    return r.metric("ig_views") or r.metric("post_count")


def _posts(r: ReportSnapshot) -> int:
    return (
        r.metric("ig_posts")
        + r.metric("yt_posts")
        + r.metric("tiktok_posts")
        + r.metric("post_count")
    )


def _recent(reports: Sequence[ReportSnapshot], window: int) -> list[ReportSnapshot]:
    dated = [r for r in reports if r.date is not None]
    return sorted(dated, key=lambda r: (r.date, r.id or 0), reverse=True)[:window]


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------
def detect_anomalies(
    reports: Sequence[ReportSnapshot],
    energy: int,
    guardian_stage: int,
    thresholds: AuditThresholds | None = None,
) -> AnomalyFlags:
    """Threshold heuristics over the most recent *recent_window* reports."""
    t = thresholds or AuditThresholds()
    recent = _recent(reports, t.recent_window)
    if not recent:
        return AnomalyFlags()

    n = len(recent)
    avg_views = sum(r.metric("ig_views") for r in recent) / n
    avg_posts = sum(_posts(r) for r in recent) / n

    high_energy_low_output = (
        guardian_stage >= t.high_energy_stage
        and energy > t.high_energy_min
        and avg_views < t.low_output_views
        and avg_posts < t.low_output_posts
    )

    total_modifications = sum(r.modify_count for r in recent)
    frequent_modification = total_modifications > n * t.modification_ratio

    inconsistent_growth = False
    w = t.growth_window
    newer, older = recent[:w], recent[w:2 * w]
    if n >= w and older:
        newer_avg = sum(_views(r) for r in newer) / len(newer)
        older_avg = sum(_views(r) for r in older) / len(older)
        inconsistent_growth = older_avg > 0 and newer_avg > older_avg * t.growth_ratio

    first_views = recent[0].metric("ig_views")
    suspicious_pattern = n >= t.identical_views_min_reports and all(
        r.metric("ig_views") == first_views for r in recent
    )

    return AnomalyFlags(
        high_energy_low_output=high_energy_low_output,
        frequent_modification=frequent_modification,
        inconsistent_growth=inconsistent_growth,
        suspicious_pattern=suspicious_pattern,
    )


# ---------------------------------------------------------------------------
# Consistency score
# ---------------------------------------------------------------------------
def consistency_score(
    reports: Sequence[ReportSnapshot],
    energy: int,
    guardian_stage: int,
    thresholds: AuditThresholds | None = None,
) -> int:
    """0–100; how well claimed energy and output match the guardian's stage.

    With no reports there is nothing to contradict, so the score is 100.
    """
    t = thresholds or AuditThresholds()
    recent = _recent(reports, t.recent_window)
    if not recent:
        return 100

    expected_energy = guardian_stage * t.expected_energy_per_stage
    expected_views = guardian_stage * t.expected_views_per_stage
    avg_views = sum(_views(r) for r in recent) / len(recent)

    energy_gap = abs(energy - expected_energy) / max(expected_energy, 1)
    views_gap = abs(avg_views - expected_views) / max(expected_views, 1)

    score = 100 - min((energy_gap + views_gap) * 50, 100)
    return round(min(max(score, 0), 100))


# ---------------------------------------------------------------------------
# Data integrity
# ---------------------------------------------------------------------------
def find_integrity_issues(
    reports: Sequence[ReportSnapshot],
    energy: int,
    guardian_stage: int,
    *,
    today: date,
    thresholds: AuditThresholds | None = None,
) -> list[DataIntegrityIssue]:
    """Structural problems in the stored data, in a stable order."""
    t = thresholds or AuditThresholds()
    issues: list[DataIntegrityIssue] = []

    dated = sorted(
        (r for r in reports if r.date is not None), key=lambda r: (r.date, r.id or 0)
    )

    for day, count in sorted(Counter(r.date for r in dated).items()):
        if count > 1:
            issues.append(DataIntegrityIssue(
                IssueType.DUPLICATE_DATE, "high",
                f"{count} reports share the date {day.isoformat()}",
            ))

    for r in dated:
        if r.date > today:
            issues.append(DataIntegrityIssue(
                IssueType.FUTURE_DATE, "high",
                f"Report {r.id} is dated in the future ({r.date.isoformat()})",
            ))
        elif (today - r.date).days > t.stale_after_days:
            issues.append(DataIntegrityIssue(
                IssueType.STALE_REPORT, "low",
                f"Report {r.id} is older than {t.stale_after_days} days "
                f"({r.date.isoformat()})",
            ))
        if all(r.metric(name) == 0 for name in ACTIVITY_FIELDS):
            issues.append(DataIntegrityIssue(
                IssueType.ZERO_ACTIVITY, "medium",
                f"Report {r.id} ({r.date.isoformat()}) has no recorded activity",
            ))

    # Stage 0 expects no energy at all, so the check only applies from stage 1.
    expected_energy = guardian_stage * t.expected_energy_per_stage
    if guardian_stage > 0 and abs(energy - expected_energy) > 2 * expected_energy:
        issues.append(DataIntegrityIssue(
            IssueType.STAGE_ENERGY_MISMATCH, "medium",
            f"Energy {energy} is far from the {expected_energy:g} expected "
            f"at stage {guardian_stage}",
        ))

    return issues


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def audit(
    reports: Sequence[ReportSnapshot],
    ledger: LedgerSnapshot | None,
    guardian_stage: int,
    *,
    today: date,
    thresholds: AuditThresholds | None = None,
) -> AnomalyReport:
    """Full audit of one member: flags, consistency score, integrity issues."""
    energy = ledger.current if ledger is not None else 0
    return AnomalyReport(
        flags=detect_anomalies(reports, energy, guardian_stage, thresholds),
        consistency_score=consistency_score(reports, energy, guardian_stage, thresholds),
        issues=find_integrity_issues(
            reports, energy, guardian_stage, today=today, thresholds=thresholds
        ),
    )
