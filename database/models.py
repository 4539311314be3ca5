"""
SQLAlchemy ORM models for plugin configuration and imported records.

Users live in the surrounding application; ``user_id`` is an opaque
string here, so there are no foreign keys into a users table.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PluginConfig(Base):
    __tablename__ = "plugin_configs"
    __table_args__ = (
        UniqueConstraint("user_id", "plugin_id", name="uq_plugin_configs_user_plugin"),
        Index("ix_plugin_configs_enabled", "enabled"),
    )

    config_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    plugin_id = Column(String(64), nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    credentials = Column(Text, nullable=True)       # encrypted OAuthCredentials JSON
    last_sync = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class MetricValue(Base):
    __tablename__ = "plugin_metric_values"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "plugin_id", "date", "field_id",
            name="uq_plugin_metric_values_key",
        ),
        Index("ix_plugin_metric_values_user_date", "user_id", "date"),
    )

    value_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    plugin_id = Column(String(64), nullable=False)
    date = Column(String(10), nullable=False)       # YYYY-MM-DD, provider-local
    field_id = Column(String(64), nullable=False)
    value = Column(Float, nullable=False)
    imported_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
