from datetime import datetime
from sqlalchemy import DateTime, Integer, String, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from harmony_ai.models.base import Base, utcnow


class UsageCounter(Base):
    """Per-user, per-metric usage for one billing period.

    A new period is a new row; rows of past periods are never touched again.
    """

    __tablename__ = "usage_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    metric_type: Mapped[str] = mapped_column(String(32), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "metric_type", "period_start", name="uq_usage_counter_period"),
        Index("idx_usage_user_metric", "user_id", "metric_type"),
    )


class UsageIncrement(Base):
    """One row per applied increment; the primary key is the idempotency key."""

    __tablename__ = "usage_increments"

    idempotency_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    metric_type: Mapped[str] = mapped_column(String(32), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
