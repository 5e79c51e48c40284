"""
tests/test_report_service.py — Report Intake Gateway Integration Tests
=======================================================================
Create/edit branching, modify cap, exactly-once award, follower growth
and streak bookkeeping.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import NOW, AlwaysLucky, NeverLucky, seed_user
from warden.database.models import DailyMission, EnergyCredit, Report, User, as_utc
from warden.errors import ModifyLimitExceeded, NotFoundError, StoreTimeout, ValidationError
from warden.services import guardian_service, ledger_service, report_service
from warden.services.report_service import DISTRUST_WARNING, submit_or_update_report

TODAY = NOW.date()


@pytest.fixture
def engine(db_engine):
    seed_user(db_engine, "u1", energy=0)
    return db_engine


def _submit(engine, tables, day=TODAY, team="alpha", now=NOW, rng=None, **metrics):
    return submit_or_update_report(
        engine, tables, "u1", day, team, metrics,
        now=now, rng=rng or NeverLucky(),
    )


class TestValidation:
    @pytest.mark.parametrize("team", [None, "", "   "])
    def test_missing_team(self, engine, tables, team):
        with pytest.raises(ValidationError) as exc_info:
            _submit(engine, tables, team=team)
        assert exc_info.value.reason == "MissingTeam"

    def test_bad_date(self, engine, tables):
        with pytest.raises(ValidationError) as exc_info:
            _submit(engine, tables, day="2024-13-45")
        assert exc_info.value.reason == "InvalidDate"

    def test_future_date(self, engine, tables):
        with pytest.raises(ValidationError):
            _submit(engine, tables, day=TODAY + timedelta(days=1))

    def test_unknown_metric(self, engine, tables):
        with pytest.raises(ValidationError):
            _submit(engine, tables, bogus=1)

    def test_negative_metric(self, engine, tables):
        with pytest.raises(ValidationError):
            _submit(engine, tables, ig_views=-1)

    def test_unknown_user(self, engine, tables):
        with pytest.raises(NotFoundError):
            submit_or_update_report(engine, tables, "ghost", TODAY, "alpha", {})

    def test_iso_string_date_accepted(self, engine, tables):
        result = _submit(engine, tables, day=TODAY.isoformat())
        assert result.report.date == TODAY


class TestCreate:
    def test_first_report_awards_base_energy(self, engine, tables):
        result = _submit(engine, tables, ig_views=500)
        assert result.created
        assert result.energy_awarded == 10
        assert result.ledger.current == 10
        assert result.report.modify_count == 0
        assert result.streak.current == 1

    def test_credit_keyed_by_user_and_date(self, engine, tables):
        _submit(engine, tables)
        with Session(engine) as session:
            keys = session.scalars(select(EnergyCredit.source_key)).all()
        assert keys == [f"u1:{TODAY.isoformat()}:report-credit"]

    def test_lucky_report(self, engine, tables):
        result = _submit(engine, tables, rng=AlwaysLucky())
        assert result.award.lucky
        assert result.energy_awarded == 100

    def test_growth_against_previous_report(self, engine, tables):
        _submit(engine, tables, day=TODAY - timedelta(days=1), ig_followers=1000, x_followers=10)
        result = _submit(engine, tables, ig_followers=900, x_followers=25)
        assert result.report.follower_growth["ig"] == 0
        assert result.report.follower_growth["x"] == 15

    def test_first_report_growth_counts_from_zero(self, engine, tables):
        result = _submit(engine, tables, ig_followers=300)
        assert result.report.follower_growth["ig"] == 300

    def test_streak_updates_profile(self, engine, tables):
        for back in (2, 1, 0):
            result = _submit(engine, tables, day=TODAY - timedelta(days=back))
        assert result.streak.current == 3
        with Session(engine) as session:
            user = session.get(User, "u1")
            assert user.streak_current == 3
            assert user.streak_max == 3

    def test_daily_report_mission_completed(self, engine, tables):
        _submit(engine, tables)
        with Session(engine) as session:
            state = session.get(DailyMission, ("u1", TODAY))
            entry = next(e for e in state.missions if e["mission_id"] == "daily_report")
        assert entry["completed"] is True
        assert entry["claimed"] is False


class TestEdit:
    def test_edit_never_changes_total_earned(self, engine, tables):
        created = _submit(engine, tables, ig_views=100)
        edited = _submit(engine, tables, ig_views=5000, rng=AlwaysLucky())
        assert not edited.created
        assert edited.energy_awarded == 0
        ledger = ledger_service.get_ledger(engine, "u1")
        assert ledger.total_earned == created.energy_awarded
        assert edited.report.metric("ig_views") == 5000

    def test_edit_keeps_stored_growth(self, engine, tables):
        _submit(engine, tables, day=TODAY - timedelta(days=1), ig_followers=1000)
        first = _submit(engine, tables, ig_followers=1100)
        edited = _submit(engine, tables, ig_followers=5000)
        assert first.report.follower_growth["ig"] == 100
        assert edited.report.follower_growth == first.report.follower_growth

    def test_modify_cap(self, engine, tables):
        _submit(engine, tables)
        results = [_submit(engine, tables, ig_views=i) for i in range(3)]
        assert [r.report.modify_count for r in results] == [1, 2, 3]
        assert [r.warning for r in results] == [None, None, DISTRUST_WARNING]
        with pytest.raises(ModifyLimitExceeded):
            _submit(engine, tables, ig_views=99)
        with Session(engine) as session:
            report = session.scalar(select(Report).where(Report.date == TODAY))
            assert report.modify_count == 3
            assert report.ig_views == 2

    def test_new_day_resets_counter(self, engine, tables):
        yesterday = TODAY - timedelta(days=1)
        _submit(engine, tables, day=yesterday)
        for _ in range(3):
            _submit(engine, tables, day=yesterday)
        result = _submit(engine, tables)
        assert result.created
        assert result.report.modify_count == 0

    def test_exactly_one_credit_per_day(self, engine, tables):
        for _ in range(4):
            _submit(engine, tables)
        with Session(engine) as session:
            credits = session.scalars(select(EnergyCredit)).all()
        assert len(credits) == 1
        assert credits[0].on_date == date(2024, 1, 10)


class TestWeekendBonus:
    """Weekend bonus goes by the local day of submission."""

    SATURDAY = date(2024, 1, 6)

    @pytest.fixture
    def engine(self, db_engine):
        seed_user(db_engine, "u1", guardians={"hoshimaru": (3, 600)}, active="hoshimaru")
        return db_engine

    def test_saturday_report_filed_on_monday_gets_no_bonus(self, engine, tables):
        monday = datetime(2024, 1, 8, 9, 0, tzinfo=UTC)
        result = _submit(engine, tables, day=self.SATURDAY, now=monday)
        assert not result.award.weekend
        assert result.energy_awarded == 10

    def test_friday_report_filed_on_saturday_gets_bonus(self, engine, tables):
        saturday = datetime(2024, 1, 6, 9, 0, tzinfo=UTC)
        result = _submit(engine, tables, day=self.SATURDAY - timedelta(days=1), now=saturday)
        assert result.award.weekend
        assert result.energy_awarded == 25

    def test_credit_still_dated_by_report_day(self, engine, tables):
        _submit(engine, tables, day=self.SATURDAY, now=datetime(2024, 1, 8, 9, 0, tzinfo=UTC))
        with Session(engine) as session:
            credit = session.scalar(select(EnergyCredit))
        assert credit.on_date == self.SATURDAY


class TestTimestamps:
    TOKYO = ZoneInfo("Asia/Tokyo")

    def test_zone_aware_now_stored_as_utc(self, engine, tables):
        local = NOW.astimezone(self.TOKYO)
        _submit(engine, tables, now=local)
        with Session(engine) as session:
            user = session.get(User, "u1")
            report = session.scalar(select(Report))
            assert as_utc(user.last_report_at) == NOW
            assert as_utc(user.last_earned_at) == NOW
            assert as_utc(report.created_at) == NOW

    def test_continuation_warning_not_shifted_by_zone(self, engine, tables):
        _submit(engine, tables, now=NOW.astimezone(self.TOKYO))
        later = guardian_service.get_profile(engine, tables, "u1", now=NOW + timedelta(hours=21))
        sooner = guardian_service.get_profile(engine, tables, "u1", now=NOW + timedelta(hours=19))
        assert later["streak"]["warning"] == "warning"
        assert sooner["streak"]["warning"] == "none"

    def test_local_day_decides_report_day(self, engine, tables):
        # 23:30 UTC on the 9th is already the 10th in Tokyo.
        late = datetime(2024, 1, 9, 23, 30, tzinfo=UTC).astimezone(self.TOKYO)
        result = _submit(engine, tables, day=TODAY, now=late)
        assert result.created
        assert result.streak.current == 1


class TestConcurrency:
    def test_lost_first_submission_race_lands_on_edit(self, engine, tables, monkeypatch):
        _submit(engine, tables, ig_views=1)

        real_lookup = report_service._find_report
        lookups = []

        def lookup_missing_concurrent_insert(session, user_id, day):
            lookups.append(day)
            if len(lookups) == 1:
                return None
            return real_lookup(session, user_id, day)

        monkeypatch.setattr(report_service, "_find_report", lookup_missing_concurrent_insert)
        result = _submit(engine, tables, ig_views=2)

        assert len(lookups) == 2
        assert not result.created
        assert result.report.modify_count == 1
        assert result.report.metric("ig_views") == 2
        with Session(engine) as session:
            credits = session.scalars(select(EnergyCredit)).all()
        assert len(credits) == 1
        assert ledger_service.get_ledger(engine, "u1").total_earned == 10

    def test_timeout_mid_submission_applies_nothing(self, engine, tables, monkeypatch):
        def stall(*args, **kwargs):
            raise OperationalError("UPDATE daily_missions", {}, Exception("database is locked"))

        monkeypatch.setattr(report_service.mission_service, "mark_completed", stall)
        with pytest.raises(StoreTimeout):
            _submit(engine, tables, ig_views=1)

        with Session(engine) as session:
            assert session.scalars(select(Report)).all() == []
            assert session.scalars(select(EnergyCredit)).all() == []
            assert session.get(User, "u1").last_report_at is None
        assert ledger_service.get_ledger(engine, "u1").total_earned == 0
