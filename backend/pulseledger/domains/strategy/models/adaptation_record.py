"""Strategy adaptation history - one row per applied version"""

from typing import Optional
from sqlalchemy import Integer, Float, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from pulseledger.common.base import Base, TimestampMixin, UUIDMixin, iso


class AdaptationRecord(Base, UUIDMixin, TimestampMixin):
    """Append-only. The newest row is the live strategy after a restart."""

    __tablename__ = "adaptation_records"
    __table_args__ = (
        Index("idx_adaptation_records_created", "created_at"),
    )

    from_version: Mapped[int] = mapped_column(Integer, nullable=False)
    to_version: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    changed_parameters: Mapped[list] = mapped_column(JSON, nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False)  # full set after this version
    metrics_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    performance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "changed_parameters": self.changed_parameters,
            "parameters": self.parameters,
            "metrics_snapshot": self.metrics_snapshot,
            "performance_score": self.performance_score,
            "summary": self.summary,
            "created_at": iso(self.created_at),
        }
