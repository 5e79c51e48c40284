"""
tests/test_guardian_service.py — Guardian unlock, investment & profile
=======================================================================
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import NOW, NeverLucky, seed_user
from warden.database.models import AdminLog, DailyMission, Guardian, User, UserStatus
from warden.engine.events import EventKind, LedgerEventHub
from warden.errors import (
    GuardianLocked,
    InsufficientEnergy,
    NotFoundError,
    TerminalStage,
    ValidationError,
)
from warden.services import guardian_service, ledger_service, report_service

THRESHOLDS = (0, 100, 300, 600, 1000)


@pytest.fixture
def small_tables(tables):
    return replace(tables, stage_thresholds=THRESHOLDS)


class TestInvest:
    def test_multi_stage_example(self, db_engine, small_tables):
        """Stage 1 with 80 invested, invest 250 → 330, stage 2, one step."""
        seed_user(db_engine, "u1", energy=500, guardians={"horyu": (1, 80)})
        result = guardian_service.invest(db_engine, small_tables, "u1", "horyu", 250, now=NOW)
        assert result.final_invested_energy == 330
        assert result.final_stage == 2
        assert result.steps == [(1, 2)]
        assert result.ledger.current == 250
        assert result.ledger.total_earned == 500

    def test_evolution_appends_memories(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=700, guardians={"horyu": (0, 0)})
        result = guardian_service.invest(db_engine, small_tables, "u1", "horyu", 650, now=NOW)
        assert result.steps == [(0, 1), (1, 2), (2, 3)]
        with Session(db_engine) as session:
            g = session.get(Guardian, ("u1", "horyu"))
            assert [(m["from"], m["to"]) for m in g.memories] == result.steps

    def test_stage_is_monotonic(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=2000, guardians={"horyu": (0, 0)})
        stages = []
        for amount in (50, 60, 200, 1, 400, 500):
            try:
                stages.append(
                    guardian_service.invest(
                        db_engine, small_tables, "u1", "horyu", amount, now=NOW
                    ).final_stage
                )
            except TerminalStage:
                stages.append(4)
        assert stages == sorted(stages)
        assert max(stages) <= 4

    def test_terminal_stage_is_a_no_op(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=100, guardians={"horyu": (4, 1000)})
        with pytest.raises(TerminalStage):
            guardian_service.invest(db_engine, small_tables, "u1", "horyu", 50, now=NOW)
        assert ledger_service.get_ledger(db_engine, "u1").current == 100

    def test_locked_guardian(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=100)
        with pytest.raises(GuardianLocked):
            guardian_service.invest(db_engine, small_tables, "u1", "hanase", 50, now=NOW)

    def test_insufficient_energy_changes_nothing(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=10, guardians={"horyu": (0, 0)})
        with pytest.raises(InsufficientEnergy):
            guardian_service.invest(db_engine, small_tables, "u1", "horyu", 50, now=NOW)
        with Session(db_engine) as session:
            assert session.get(Guardian, ("u1", "horyu")).invested_energy == 0

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, db_engine, small_tables, amount):
        seed_user(db_engine, "u1", energy=10, guardians={"horyu": (0, 0)})
        with pytest.raises(ValidationError):
            guardian_service.invest(db_engine, small_tables, "u1", "horyu", amount, now=NOW)

    def test_completes_guardian_feed_mission(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=10, guardians={"horyu": (0, 0)})
        guardian_service.invest(db_engine, small_tables, "u1", "horyu", 5, now=NOW)
        with Session(db_engine) as session:
            state = session.get(DailyMission, ("u1", NOW.date()))
            done = {e["mission_id"] for e in state.missions if e["completed"]}
        assert done == {"guardian_feed"}

    def test_events_after_commit(self, db_engine, small_tables):
        seed_user(db_engine, "u1", energy=500, guardians={"horyu": (0, 0)})
        hub = LedgerEventHub()
        seen = []
        hub.subscribe(seen.append)
        guardian_service.invest(db_engine, small_tables, "u1", "horyu", 300, now=NOW, hub=hub)
        kinds = [e.kind for e in seen]
        assert kinds == [
            EventKind.ENERGY_DEBITED,
            EventKind.GUARDIAN_EVOLVED,
            EventKind.GUARDIAN_EVOLVED,
        ]


class TestUnlock:
    def test_first_initial_guardian_is_free(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=0)
        result = guardian_service.unlock_guardian(db_engine, tables, "u1", "hanase", now=NOW)
        assert result.cost == 0
        assert result.guardian.unlocked
        with Session(db_engine) as session:
            assert session.get(User, "u1").active_guardian_id == "hanase"

    def test_second_initial_guardian_costs(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=250, guardians={"horyu": (0, 0)})
        result = guardian_service.unlock_guardian(db_engine, tables, "u1", "kitama", now=NOW)
        assert result.cost == 200
        assert result.ledger.current == 50

    def test_evolution_guardian_requires_parent_stage(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=1000, guardians={"horyu": (1, 40)})
        with pytest.raises(GuardianLocked):
            guardian_service.unlock_guardian(db_engine, tables, "u1", "shishimaru", now=NOW)

    def test_evolution_guardian_unlocks(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=1000, guardians={"horyu": (2, 200)})
        result = guardian_service.unlock_guardian(db_engine, tables, "u1", "shishimaru", now=NOW)
        assert result.cost == 300
        assert result.ledger.current == 700

    def test_already_unlocked(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=0, guardians={"horyu": (0, 0)})
        with pytest.raises(ValidationError):
            guardian_service.unlock_guardian(db_engine, tables, "u1", "horyu", now=NOW)

    def test_unknown_guardian(self, db_engine, tables):
        seed_user(db_engine, "u1")
        with pytest.raises(NotFoundError):
            guardian_service.unlock_guardian(db_engine, tables, "u1", "nobody", now=NOW)


class TestActiveAndMemo:
    def test_switch_active(self, db_engine):
        seed_user(db_engine, "u1", guardians={"horyu": (0, 0), "hanase": (0, 0)}, active="horyu")
        guardian_service.switch_active_guardian(db_engine, "u1", "hanase")
        with Session(db_engine) as session:
            assert session.get(User, "u1").active_guardian_id == "hanase"

    def test_switch_to_locked_guardian(self, db_engine):
        seed_user(db_engine, "u1", guardians={"horyu": (0, 0)})
        with pytest.raises(GuardianLocked):
            guardian_service.switch_active_guardian(db_engine, "u1", "kitama")

    def test_memo(self, db_engine):
        seed_user(db_engine, "u1", guardians={"horyu": (0, 0)})
        snap = guardian_service.update_guardian_memo(
            db_engine, "u1", "horyu", "  likes mornings ", nickname="Ho"
        )
        assert snap.memo == "likes mornings"
        assert snap.nickname == "Ho"

    def test_memo_too_long(self, db_engine):
        seed_user(db_engine, "u1", guardians={"horyu": (0, 0)})
        with pytest.raises(ValidationError):
            guardian_service.update_guardian_memo(db_engine, "u1", "horyu", "x" * 501)


class TestApproval:
    def test_approve_creates_profile_and_logs(self, db_engine):
        snap = guardian_service.approve_user(
            db_engine, "new", actor_id="admin", display_name="Newbie", team="beta", now=NOW
        )
        assert snap.current == 0
        with Session(db_engine) as session:
            user = session.get(User, "new")
            assert user.status == UserStatus.APPROVED.value
            assert user.team == "beta"
            logs = session.scalars(select(AdminLog)).all()
        assert len(logs) == 1
        assert logs[0].after_snapshot["status"] == "approved"

    def test_approve_twice_logs_once(self, db_engine):
        guardian_service.approve_user(db_engine, "new", actor_id="admin", now=NOW)
        guardian_service.approve_user(db_engine, "new", actor_id="admin", now=NOW)
        with Session(db_engine) as session:
            assert len(session.scalars(select(AdminLog)).all()) == 1


class TestProfile:
    def test_profile_view(self, db_engine, tables):
        seed_user(db_engine, "u1", energy=120, total=350, guardians={"horyu": (1, 90)},
                  active="horyu")
        with Session(db_engine) as session:
            session.get(User, "u1").last_report_at = NOW - timedelta(hours=21)
            session.commit()

        profile = guardian_service.get_profile(db_engine, tables, "u1", now=NOW)
        assert profile["energy"] == {"current": 120, "total_earned": 350}
        assert profile["level"]["level"] == 3
        assert profile["streak"]["warning"] == "warning"
        horyu = profile["guardians"][0]
        # Stage 1 spans 30..150 with aura 20..50.
        assert horyu["aura"] == 35
        assert horyu["next_stage"] == {"required": 150, "remaining": 60}

    def test_streak_grace_extends_warning(self, db_engine, tables):
        seed_user(db_engine, "u1", guardians={"hanase": (3, 600)}, active="hanase")
        with Session(db_engine) as session:
            session.get(User, "u1").last_report_at = NOW - timedelta(hours=21)
            session.commit()
        profile = guardian_service.get_profile(db_engine, tables, "u1", now=NOW)
        assert profile["streak"]["warning"] == "none"

    def test_stale_streak_reads_as_broken(self, db_engine, tables):
        seed_user(db_engine, "u1")
        for day in (1, 2, 3):
            report_service.submit_or_update_report(
                db_engine, tables, "u1", date(2024, 1, day), "alpha", {},
                now=datetime(2024, 1, day, 9, 0, tzinfo=UTC), rng=NeverLucky(),
            )
        profile = guardian_service.get_profile(
            db_engine, tables, "u1", now=datetime(2024, 1, 7, 9, 0, tzinfo=UTC)
        )
        assert profile["streak"]["current"] == 0
        assert profile["streak"]["max"] == 3

    def test_streak_through_yesterday_is_current(self, db_engine, tables):
        seed_user(db_engine, "u1")
        for day in (1, 2, 3):
            report_service.submit_or_update_report(
                db_engine, tables, "u1", date(2024, 1, day), "alpha", {},
                now=datetime(2024, 1, day, 9, 0, tzinfo=UTC), rng=NeverLucky(),
            )
        profile = guardian_service.get_profile(
            db_engine, tables, "u1", now=datetime(2024, 1, 4, 8, 0, tzinfo=UTC)
        )
        assert profile["streak"]["current"] == 3

    def test_unknown_user(self, db_engine, tables):
        with pytest.raises(NotFoundError):
            guardian_service.get_profile(db_engine, tables, "ghost", now=NOW)
