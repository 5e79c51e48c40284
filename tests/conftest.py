"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of warden.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import random  # noqa: E402
from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from warden.config import GameTables, WardenConfig, default_game_tables  # noqa: E402
from warden.database.models import Base, Guardian, User, UserStatus  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# A fixed Wednesday, mid-morning UTC.
NOW = datetime(2024, 1, 10, 9, 0, tzinfo=UTC)


class NeverLucky(random.Random):
    """RNG whose roll never hits the lucky bonus."""

    def random(self) -> float:
        return 0.99


class AlwaysLucky(random.Random):
    def random(self) -> float:
        return 0.0


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Warden tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def tables() -> GameTables:
    return default_game_tables()


@pytest.fixture
def config(tables: GameTables) -> WardenConfig:
    return WardenConfig(
        service_name="Warden Test",
        timezone="UTC",
        dashboard_port=8000,
        game=tables,
    )


def seed_user(
    engine: Engine,
    user_id: str = "u1",
    *,
    energy: int = 0,
    total: int | None = None,
    guardians: dict[str, tuple[int, int]] | None = None,
    active: str | None = None,
) -> None:
    """Insert an approved user.  *guardians* maps id → (stage, invested)."""
    with Session(engine) as session:
        session.add(User(
            id=user_id,
            display_name=f"Member {user_id}",
            team="alpha",
            status=UserStatus.APPROVED.value,
            energy_current=energy,
            energy_total_earned=energy if total is None else total,
            streak_current=0,
            streak_max=0,
            active_guardian_id=active,
        ))
        for gid, (stage, invested) in (guardians or {}).items():
            session.add(Guardian(
                user_id=user_id,
                guardian_id=gid,
                unlocked=True,
                stage=stage,
                invested_energy=invested,
                memories=[],
            ))
        session.commit()


@pytest.fixture
def member(db_engine: Engine) -> str:
    """An approved member with 500 energy and a stage-0 Horyu."""
    seed_user(db_engine, "u1", energy=500, guardians={"horyu": (0, 0)}, active="horyu")
    return "u1"


def make_token(sub: str = "u1", *, is_admin: bool = False) -> str:
    import jwt

    from warden.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": f"user-{sub}", "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
