"""environs, config_history, change_feed and tags tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── environs ──────────────────────────────────────────────────
    op.create_table(
        "environs",
        sa.Column("env_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("env_name", sa.String(64), nullable=False),
        sa.Column("stage_name", sa.String(64), nullable=False),
        sa.Column("stage_type", sa.String(32), server_default="DEFAULT"),
        sa.Column("env_state", sa.String(32), server_default="ENABLED"),
        sa.Column("external_id", sa.String(36), nullable=True),
        sa.Column("is_sox", sa.Boolean, server_default="false"),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("build_name", sa.String(64), server_default=""),
        sa.Column("branch", sa.String(64), server_default=""),
        sa.Column("chatroom", sa.String(64), server_default=""),
        sa.Column("max_parallel", sa.Integer, server_default="1"),
        sa.Column("max_parallel_pct", sa.Integer, server_default="0"),
        sa.Column("priority", sa.String(16), server_default="NORMAL"),
        sa.Column("stuck_th", sa.Integer, server_default="600"),
        sa.Column("success_th", sa.Integer, server_default="10000"),
        sa.Column("accept_type", sa.String(16), server_default="AUTO"),
        sa.Column("notify_authors", sa.Boolean, server_default="false"),
        sa.Column("watch_recipients", sa.Text, server_default=""),
        sa.Column("max_deploy_num", sa.Integer, server_default="5000"),
        sa.Column("max_deploy_day", sa.Integer, server_default="365"),
        sa.Column("is_docker", sa.Boolean, server_default="false"),
        sa.Column("cluster_name", sa.String(128), nullable=True),
        sa.Column("override_policy", sa.String(16), server_default="OVERRIDE"),
        sa.Column("allow_private_build", sa.Boolean, server_default="false"),
        sa.Column("ensure_trusted_build", sa.Boolean, server_default="false"),
        sa.Column("terminating_limit", sa.Integer, nullable=True),
        sa.Column("last_operator", sa.String(128), server_default=""),
        sa.Column("last_update", sa.DateTime, server_default=sa.func.now()),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("env_name", "stage_name", name="uq_environs_env_stage"),
    )
    op.create_index("ix_environs_external_id", "environs", ["external_id"])

    # ── config_history ────────────────────────────────────────────
    op.create_table(
        "config_history",
        sa.Column("change_id", sa.String(64), primary_key=True),
        sa.Column("config_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("config_change", JSONB, server_default="{}"),
        sa.Column("operator", sa.String(128), server_default=""),
        sa.Column("creation_time", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_config_history_config", "config_history", ["config_id", "creation_time"])

    # ── change_feed ───────────────────────────────────────────────
    op.create_table(
        "change_feed",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("config_type", sa.String(64), nullable=False),
        sa.Column("config_id", sa.String(64), nullable=False),
        sa.Column("change_type", sa.String(64), nullable=False),
        sa.Column("operator", sa.String(128), server_default=""),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_change_feed_config", "change_feed", ["config_type", "config_id"])
    op.create_index("ix_change_feed_created", "change_feed", ["created_at"])

    # ── tags ──────────────────────────────────────────────────────
    op.create_table(
        "tags",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("value", sa.String(32), nullable=False),
        sa.Column("target_type", sa.String(32), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=False),
        sa.Column("operator", sa.String(128), server_default=""),
        sa.Column("comments", sa.Text, server_default=""),
        sa.Column("meta_info", JSONB, nullable=True),
        sa.Column("created_date", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_tags_target", "tags", ["target_type", "target_id"])
    op.create_index("ix_tags_value", "tags", ["value"])


def downgrade() -> None:
    op.drop_table("tags")
    op.drop_table("change_feed")
    op.drop_table("config_history")
    op.drop_table("environs")
