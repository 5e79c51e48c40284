"""Initial schema: users, guardians, reports, energy ledger, missions, admin log

Revision ID: 4c1e7a9b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4c1e7a9b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("team", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("energy_current", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("energy_total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_earned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active_guardian_id", sa.String(32), nullable=True),
        sa.Column("streak_current", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak_max", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_report_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("energy_current >= 0", name="ck_users_energy_non_negative"),
        sa.CheckConstraint("energy_total_earned >= 0", name="ck_users_total_non_negative"),
    )
    op.create_index("ix_users_total_earned", "users", ["energy_total_earned"])

    op.create_table(
        "guardians",
        sa.Column(
            "user_id", sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("guardian_id", sa.String(32), primary_key=True),
        sa.Column("unlocked", sa.Boolean(), nullable=True),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invested_energy", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("memories", postgresql.JSONB(), nullable=True),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("nickname", sa.String(50), nullable=True),
        sa.CheckConstraint("stage >= 0 AND stage <= 4", name="ck_guardians_stage_range"),
        sa.CheckConstraint("invested_energy >= 0", name="ck_guardians_invested_non_negative"),
    )

    metric_columns = [
        sa.Column(name, sa.Integer(), nullable=True, server_default="0")
        for name in (
            "ig_views", "ig_profile_access", "ig_external_taps", "ig_interactions",
            "weekly_stories", "ig_posts", "yt_posts", "tiktok_posts",
            "post_count", "like_count", "reply_count",
            "ig_followers", "yt_followers", "tiktok_followers", "x_followers",
        )
    ]
    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("team", sa.String(50), nullable=False),
        *metric_columns,
        sa.Column("follower_growth", postgresql.JSONB(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("modify_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("energy_awarded", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "date", name="uq_reports_user_date"),
    )
    op.create_index("ix_reports_user_date", "reports", ["user_id", "date"])
    op.create_index("ix_reports_date", "reports", ["date"])

    op.create_table(
        "energy_credits",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("source_key", sa.String(200), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("breakdown", postgresql.JSONB(), nullable=True),
        sa.Column("on_date", sa.Date(), nullable=True),
        sa.Column("streak_day", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id", "source_key", name="uq_energy_credits_user_source_key"
        ),
        sa.CheckConstraint("amount >= 0", name="ck_energy_credits_amount_non_negative"),
    )
    op.create_index("ix_energy_credits_user_date", "energy_credits", ["user_id", "on_date"])

    op.create_table(
        "daily_missions",
        sa.Column(
            "user_id", sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("date", sa.Date(), primary_key=True),
        sa.Column("missions", postgresql.JSONB(), nullable=False),
        sa.Column("all_completed", sa.Boolean(), server_default="false"),
        sa.Column("bonus_claimed", sa.Boolean(), server_default="false"),
        sa.Column("total_reward_earned", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(128), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    op.drop_table("admin_log")
    op.drop_table("daily_missions")
    op.drop_index("ix_energy_credits_user_date", table_name="energy_credits")
    op.drop_table("energy_credits")
    op.drop_index("ix_reports_date", table_name="reports")
    op.drop_index("ix_reports_user_date", table_name="reports")
    op.drop_table("reports")
    op.drop_table("guardians")
    op.drop_index("ix_users_total_earned", table_name="users")
    op.drop_table("users")
