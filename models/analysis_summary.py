# models/analysis_summary.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey


class AnalysisSummary(Base, UUIDPrimaryKey, TimestampMixin):
    """AI analysis read by the dashboard. One row per job, written once."""

    __tablename__ = "analysis_summaries"
    __table_args__ = (
        Index("ix_analysis_summaries_owner_kind", "owner_id", "kind", "generated_at"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)

    trade_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    summary_text: Mapped[str] = mapped_column(Text, default="")
    plus_points: Mapped[list] = mapped_column(JSONType, default=list)
    minus_points: Mapped[list] = mapped_column(JSONType, default=list)
    ai_suggestions: Mapped[list] = mapped_column(JSONType, default=list)
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stats: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    input_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ready | failed_to_parse
    status: Mapped[str] = mapped_column(String(32), default="ready")
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
