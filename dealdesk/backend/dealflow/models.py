# dealflow/models.py
"""
Local tables only. GoHighLevel stays the system of record for buyers,
properties and deals; these rows are caches and audit trails around it.
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class ActivityKind(str, enum.Enum):
    stage_change = "stage-change"
    stage_undo = "stage-undo"


class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Models
# -----------------------------
class GeoCacheEntry(Base):
    __tablename__ = "geocache"
    __table_args__ = (UniqueConstraint("query_key", name="uq_geocache_query"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # normalized lookup key: "zip:85001" or "loc:phoenix, az"
    query_key: Mapped[str] = mapped_column(String(255), index=True)

    # both NULL => negative result (cached so we don't keep asking)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    source: Mapped[str] = mapped_column(String(40), default="mapbox")
    geocoded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


class DealActivity(Base):
    __tablename__ = "deal_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deal_id: Mapped[str] = mapped_column(String(80), index=True)

    kind: Mapped[ActivityKind] = mapped_column(Enum(ActivityKind), default=ActivityKind.stage_change, index=True)
    from_stage: Mapped[str] = mapped_column(String(40))
    to_stage: Mapped[str] = mapped_column(String(40))
    relation_id: Mapped[str | None] = mapped_column(String(80), nullable=True)

    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


class BriefingDismissal(Base):
    __tablename__ = "briefing_dismissals"
    __table_args__ = (UniqueConstraint("dismiss_key", name="uq_briefing_dismiss_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dismiss_key: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class JobRun(Base):
    """
    Tracks job executions (geocache prune, etc.)
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # store error message
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # optional result counters: {"deleted": 12, "remaining": 40}
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
