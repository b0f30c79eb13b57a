"""
SQLAlchemy ORM models for the stage service.
Maps to tables created by the Alembic migrations.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    String, Text, Integer, Boolean, DateTime, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stage_service.db.base import Base, JSONType


# ── Stages ───────────────────────────────────────────────────────────────────

class StageModel(Base):
    """A deployment stage, keyed by (env_name, stage_name)."""
    __tablename__ = "environs"

    env_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    env_name: Mapped[str] = mapped_column(String(64), nullable=False)
    stage_name: Mapped[str] = mapped_column(String(64), nullable=False)
    stage_type: Mapped[str] = mapped_column(String(32), default="DEFAULT")
    env_state: Mapped[str] = mapped_column(String(32), default="ENABLED")
    external_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_sox: Mapped[bool] = mapped_column(Boolean, default=False)

    # General configuration
    description: Mapped[str] = mapped_column(Text, default="")
    build_name: Mapped[str] = mapped_column(String(64), default="")
    branch: Mapped[str] = mapped_column(String(64), default="")
    chatroom: Mapped[str] = mapped_column(String(64), default="")
    max_parallel: Mapped[int] = mapped_column(Integer, default=1)
    max_parallel_pct: Mapped[int] = mapped_column(Integer, default=0)
    priority: Mapped[str] = mapped_column(String(16), default="NORMAL")
    stuck_th: Mapped[int] = mapped_column(Integer, default=600)
    success_th: Mapped[int] = mapped_column(Integer, default=10000)
    accept_type: Mapped[str] = mapped_column(String(16), default="AUTO")
    notify_authors: Mapped[bool] = mapped_column(Boolean, default=False)
    watch_recipients: Mapped[str] = mapped_column(Text, default="")
    max_deploy_num: Mapped[int] = mapped_column(Integer, default=5000)
    max_deploy_day: Mapped[int] = mapped_column(Integer, default=365)
    is_docker: Mapped[bool] = mapped_column(Boolean, default=False)
    cluster_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    override_policy: Mapped[str] = mapped_column(String(16), default="OVERRIDE")
    allow_private_build: Mapped[bool] = mapped_column(Boolean, default=False)
    ensure_trusted_build: Mapped[bool] = mapped_column(Boolean, default=False)
    terminating_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Bookkeeping
    last_operator: Mapped[str] = mapped_column(String(128), default="")
    last_update: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("env_name", "stage_name", name="uq_environs_env_stage"),
        Index("ix_environs_external_id", "external_id"),
        # Ids referenced by history and tags must never be recycled
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Stage id={self.env_id} {self.env_name}/{self.stage_name} v{self.version}>"


# ── Config History & Change Feed ─────────────────────────────────────────────

class ConfigHistoryModel(Base):
    """Append-only snapshot of a configuration change."""
    __tablename__ = "config_history"

    change_id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    config_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    config_change: Mapped[dict] = mapped_column(JSONType, default=dict)
    operator: Mapped[str] = mapped_column(String(128), default="")
    creation_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_config_history_config", "config_id", "creation_time"),
    )

    def __repr__(self) -> str:
        return f"<ConfigHistory id={self.change_id} config={self.config_id} type={self.type!r}>"


class ChangeFeedModel(Base):
    """Cross-entity timeline pointer to a configuration change."""
    __tablename__ = "change_feed"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    config_type: Mapped[str] = mapped_column(String(64), nullable=False)
    config_id: Mapped[str] = mapped_column(String(64), nullable=False)
    change_type: Mapped[str] = mapped_column(String(64), nullable=False)
    operator: Mapped[str] = mapped_column(String(128), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_change_feed_config", "config_type", "config_id"),
        Index("ix_change_feed_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ChangeFeed id={self.id} {self.config_type}:{self.config_id} {self.change_type!r}>"


# ── Tags ─────────────────────────────────────────────────────────────────────

class TagModel(Base):
    """Append-only record of a named action applied to a target entity."""
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    value: Mapped[str] = mapped_column(String(32), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    operator: Mapped[str] = mapped_column(String(128), default="")
    comments: Mapped[str] = mapped_column(Text, default="")
    meta_info: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_tags_target", "target_type", "target_id"),
        Index("ix_tags_value", "value"),
    )

    def __repr__(self) -> str:
        return f"<Tag id={self.id} {self.value} on {self.target_type}:{self.target_id}>"
