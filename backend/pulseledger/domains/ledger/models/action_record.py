"""Action record model - append-only audit trail"""

import enum
from typing import Optional
from sqlalchemy import String, Text, JSON, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from pulseledger.common.base import Base, TimestampMixin, UUIDMixin, iso


class ActionType(str, enum.Enum):
    DATA_COLLECTION = "DATA_COLLECTION"
    POST_DECISION = "POST_DECISION"
    FORUM_POST = "FORUM_POST"
    PROJECT_EVALUATION = "PROJECT_EVALUATION"
    VOTE = "VOTE"
    COMMENT_RESPONSE = "COMMENT_RESPONSE"
    FORUM_COMMENT = "FORUM_COMMENT"
    STRATEGY_ADAPTATION = "STRATEGY_ADAPTATION"
    DAILY_REPORT = "DAILY_REPORT"
    LOOP_FAILURE = "LOOP_FAILURE"


class ActionOutcome(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ActionRecord(Base, UUIDMixin, TimestampMixin):
    """
    One autonomous action. Immutable after insert except ledger_tx_ref and
    outcome, each of which moves from unset to set once (see ActionLogService).
    """

    __tablename__ = "action_records"
    __table_args__ = (
        Index("idx_action_records_type_created", "action_type", "created_at"),
        Index("idx_action_records_subject", "subject_id"),
    )

    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    subject_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    summary: Mapped[str] = mapped_column(String(500), nullable=False)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ledger_tx_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    outcome: Mapped[str] = mapped_column(String(20), nullable=False, default=ActionOutcome.PENDING.value)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # "<TYPE>:<subject_id>" while an action on that subject is live; released on FAILED
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, unique=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.action_type,
            "subject_id": self.subject_id,
            "summary": self.summary,
            "metadata": self.metadata_json or {},
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "content_hash": self.content_hash,
            "hash_prefix": self.content_hash[:16],
            "ledger_tx_ref": self.ledger_tx_ref,
            "outcome": self.outcome,
            "error": self.error,
            "external_ref": self.external_ref,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<ActionRecord(id={self.id}, type={self.action_type}, outcome={self.outcome})>"
