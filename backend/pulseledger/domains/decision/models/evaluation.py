"""Subject evaluation model - one row per subject, overwritten on re-evaluation"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, JSON, Float, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from pulseledger.common.base import Base, TimestampMixin, UUIDMixin, iso


class Evaluation(Base, UUIDMixin, TimestampMixin):
    """
    status: EVALUATED until an action on the subject succeeds, then ACTED.
    ACTED subjects are excluded from every later pass.
    """

    __tablename__ = "evaluations"
    __table_args__ = (
        Index("idx_evaluations_status", "status"),
    )

    subject_id: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    subject_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    objective_score: Mapped[float] = mapped_column(Float, nullable=False)
    model_score: Mapped[float] = mapped_column(Float, nullable=False)
    final_score: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    breakdown: Mapped[dict] = mapped_column(JSON, nullable=False)
    objective_signals: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    reasoning_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)  # ACT / SKIP
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    strategy_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="EVALUATED")
    evaluated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    action_record_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "objective_score": self.objective_score,
            "model_score": self.model_score,
            "final_score": self.final_score,
            "threshold": self.threshold,
            "breakdown": self.breakdown,
            "objective_signals": self.objective_signals,
            "reasoning_text": self.reasoning_text,
            "decision": self.decision,
            "confidence": self.confidence,
            "strategy_version": self.strategy_version,
            "status": self.status,
            "evaluated_at": iso(self.evaluated_at),
            "acted_at": iso(self.acted_at),
        }
