"""Strategy domain - parameter set, immutable snapshots and adaptation entries"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from pulseledger.common.config import settings

PostingTone = Literal["enthusiastic", "analytical", "balanced"]
InsightFocus = Literal["trends", "predictions", "community", "technical"]


class StrategyParameters(BaseModel):
    """
    The adaptive decision parameters. Every field carries its domain, so an
    instance that exists is an instance that is in range.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    posting_tone: PostingTone = "enthusiastic"
    insight_focus: InsightFocus = "trends"
    min_quality_score: int = Field(6, ge=4, le=8)
    max_daily_actions: int = Field(5, ge=2, le=8)
    optimal_hour: int = Field(9, ge=0, le=23)
    min_vote_score: float = Field(5.5, ge=4.0, le=9.0)

    @classmethod
    def from_settings(cls) -> "StrategyParameters":
        return cls(
            posting_tone=settings.default_posting_tone,
            insight_focus=settings.default_insight_focus,
            min_quality_score=settings.gate_required_checks,
            max_daily_actions=settings.default_max_daily_actions,
            optimal_hour=settings.default_optimal_hour,
            min_vote_score=settings.vote_threshold,
        )


@dataclass(frozen=True)
class ParameterChange:
    name: str  # external (camelCase) name
    field: str
    old_value: Any
    new_value: Any
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class AdaptationEntry:
    from_version: int
    to_version: int
    changes: Tuple[ParameterChange, ...]
    metrics_snapshot: Dict[str, Any]
    performance_score: Optional[float]
    created_at: datetime
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_version": self.from_version,
            "to_version": self.to_version,
            "changed_parameters": [c.to_dict() for c in self.changes],
            "metrics_snapshot": self.metrics_snapshot,
            "performance_score": self.performance_score,
            "summary": self.summary,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Strategy:
    """Read-only snapshot handed to every decision"""

    version: int
    parameters: StrategyParameters
    last_adapted_at: Optional[datetime] = None
    history: Tuple[AdaptationEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "parameters": self.parameters.model_dump(),
            "last_adapted_at": self.last_adapted_at.isoformat() if self.last_adapted_at else None,
            "history": [h.to_dict() for h in self.history],
        }
