from sqlalchemy import Boolean, DateTime, Integer, String, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional, List

from harmony_ai.models.base import Base, UUIDMixin, TimestampMixin

from enum import Enum


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)

    def can_transition_to(self, new_status: "GenerationStatus") -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    GenerationStatus.PENDING: {GenerationStatus.PROCESSING, GenerationStatus.FAILED},
    GenerationStatus.PROCESSING: {GenerationStatus.COMPLETED, GenerationStatus.FAILED},
    GenerationStatus.COMPLETED: set(),
    GenerationStatus.FAILED: set(),
}


class GenerationHistory(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "ai_generation_history"

    user_id: Mapped[str] = mapped_column(String, index=True)
    artist_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    operation: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default=GenerationStatus.PENDING.value)
    fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    input_snapshot: Mapped[dict] = mapped_column(JSON)
    refined_output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    provider_used: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts: Mapped[List[dict]] = mapped_column(JSON, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_generation_user_created", "user_id", "created_at"),
        Index("idx_generation_user_operation", "user_id", "operation"),
    )
