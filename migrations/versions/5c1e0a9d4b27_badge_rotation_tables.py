"""badge rotation tables

Revision ID: 5c1e0a9d4b27
Revises:
Create Date: 2026-10-18 09:12:40.518204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e0a9d4b27"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_STATUS = sa.text("status IN ('offered', 'active')")


def upgrade() -> None:
    """Create identity, community, content and rotation tables."""
    op.create_table(
        "app_user",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("wallet_address", sa.Text(), nullable=True),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("reputation", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "topic_area",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "community",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("topic_area_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["topic_area_id"], ["topic_area.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_community_topic_area_id", "community", ["topic_area_id"])
    op.create_table(
        "community_member",
        sa.Column("community_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["community_id"], ["community.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("community_id", "user_id"),
    )
    op.create_table(
        "content_item",
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("community_id", sa.String(length=36), nullable=False),
        sa.Column("author_id", sa.String(length=36), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.Column("hidden_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hidden_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["author_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["community_id"], ["community.id"]),
        sa.PrimaryKeyConstraint("content_type", "id"),
    )
    op.create_table(
        "content_flag",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("content_id", sa.String(length=36), nullable=False),
        sa.Column("community_id", sa.String(length=36), nullable=False),
        sa.Column("flagged_by", sa.String(length=36), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["community_id"], ["community.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_content_flag_target", "content_flag", ["content_type", "content_id", "resolved"]
    )
    op.create_index("ix_content_flag_community", "content_flag", ["community_id", "resolved"])

    op.create_table(
        "mod_badge",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("scope_type", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=36), nullable=False),
        sa.Column("holder_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("duty_days", sa.Integer(), nullable=False),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actions_taken", sa.Integer(), nullable=False),
        sa.Column("min_actions_required", sa.Integer(), nullable=False),
        sa.Column("ledger_ref", sa.Text(), nullable=True),
        sa.Column("pass_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["holder_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_mod_badge_open_holder",
        "mod_badge",
        ["holder_id"],
        unique=True,
        postgresql_where=OPEN_STATUS,
        sqlite_where=OPEN_STATUS,
    )
    op.create_index("ix_mod_badge_scope_status", "mod_badge", ["scope_type", "scope_id", "status"])
    op.create_index("ix_mod_badge_status_end", "mod_badge", ["status", "end_date"])

    op.create_table(
        "badge_invitation",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("badge_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("response", sa.String(length=16), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["badge_id"], ["mod_badge.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("badge_id"),
    )
    op.create_index("ix_badge_invitation_open", "badge_invitation", ["response", "expires_at"])
    op.create_index("ix_badge_invitation_user_id", "badge_invitation", ["user_id"])

    op.create_table(
        "badge_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("badge_id", sa.String(length=36), nullable=False),
        sa.Column("scope_type", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=36), nullable=False),
        sa.Column("completion_status", sa.String(length=16), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["badge_id"], ["mod_badge.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("badge_id"),
    )
    op.create_index(
        "ix_badge_history_cooldown",
        "badge_history",
        ["user_id", "scope_type", "scope_id", "completed_at"],
    )

    op.create_table(
        "mod_action",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("badge_id", sa.String(length=36), nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("content_id", sa.String(length=36), nullable=False),
        sa.Column("decision", sa.String(length=8), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("flags_at_review", sa.Integer(), nullable=False),
        sa.Column("ledger_ref", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["badge_id"], ["mod_badge.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mod_action_badge_id", "mod_action", ["badge_id"])
    op.create_index("ix_mod_action_content_id", "mod_action", ["content_id"])

    op.create_table(
        "mod_action_archive",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("badge_id", sa.String(length=36), nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("content_id", sa.String(length=36), nullable=False),
        sa.Column("decision", sa.String(length=8), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("flags_at_review", sa.Integer(), nullable=False),
        sa.Column("ledger_ref", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mod_action_archive_badge_id", "mod_action_archive", ["badge_id"])

    op.create_table(
        "moderation_config",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scope_type", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=36), nullable=False),
        sa.Column("badge_ratio", sa.Integer(), nullable=False),
        sa.Column("min_reputation", sa.Integer(), nullable=False),
        sa.Column("min_account_age_days", sa.Integer(), nullable=False),
        sa.Column("reward_pco", sa.Numeric(18, 6), nullable=False),
        sa.Column("reward_reputation", sa.Integer(), nullable=False),
        sa.Column("penalty_reputation", sa.Integer(), nullable=False),
        sa.Column("min_actions_required", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("scope_type", "scope_id", name="uq_moderation_config_scope"),
    )
    op.create_table(
        "moderation_daily_stats",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("scope_type", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=36), nullable=False),
        sa.Column("badges_completed", sa.Integer(), nullable=False),
        sa.Column("badges_abandoned", sa.Integer(), nullable=False),
        sa.Column("total_actions", sa.Integer(), nullable=False),
        sa.Column("avg_actions_per_badge", sa.Float(), nullable=False),
        sa.Column("unique_moderators", sa.Integer(), nullable=False),
        sa.Column("content_removed", sa.Integer(), nullable=False),
        sa.Column("content_kept", sa.Integer(), nullable=False),
        sa.Column("completion_rate", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("day", "scope_type", "scope_id", name="uq_moderation_daily_stats"),
    )


def downgrade() -> None:
    """Drop every rotation table."""
    op.drop_table("moderation_daily_stats")
    op.drop_table("moderation_config")
    op.drop_index("ix_mod_action_archive_badge_id", table_name="mod_action_archive")
    op.drop_table("mod_action_archive")
    op.drop_index("ix_mod_action_content_id", table_name="mod_action")
    op.drop_index("ix_mod_action_badge_id", table_name="mod_action")
    op.drop_table("mod_action")
    op.drop_index("ix_badge_history_cooldown", table_name="badge_history")
    op.drop_table("badge_history")
    op.drop_index("ix_badge_invitation_user_id", table_name="badge_invitation")
    op.drop_index("ix_badge_invitation_open", table_name="badge_invitation")
    op.drop_table("badge_invitation")
    op.drop_index("ix_mod_badge_status_end", table_name="mod_badge")
    op.drop_index("ix_mod_badge_scope_status", table_name="mod_badge")
    op.drop_index("uq_mod_badge_open_holder", table_name="mod_badge")
    op.drop_table("mod_badge")
    op.drop_index("ix_content_flag_community", table_name="content_flag")
    op.drop_index("ix_content_flag_target", table_name="content_flag")
    op.drop_table("content_flag")
    op.drop_table("content_item")
    op.drop_table("community_member")
    op.drop_index("ix_community_topic_area_id", table_name="community")
    op.drop_table("community")
    op.drop_table("topic_area")
    op.drop_table("app_user")
