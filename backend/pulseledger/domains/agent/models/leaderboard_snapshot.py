"""Leaderboard snapshot model - periodic copy of the ecosystem ranking"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, JSON, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from pulseledger.common.base import Base, TimestampMixin, UUIDMixin, iso


class LeaderboardSnapshot(Base, UUIDMixin, TimestampMixin):

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (
        Index("idx_leaderboard_snapshots_captured", "captured_at"),
    )

    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    project_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    post_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    top_project: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    entries: Mapped[list] = mapped_column(JSON, nullable=False)
    engagement: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    action_record_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "captured_at": iso(self.captured_at),
            "project_count": self.project_count,
            "post_count": self.post_count,
            "top_project": self.top_project,
            "entries": self.entries,
            "engagement": self.engagement,
            "action_record_id": self.action_record_id,
        }
