"""Decision domain - typed subjects and decision results"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pulseledger.domains.strategy.schemas import Strategy


@dataclass(frozen=True)
class Insight:
    """A candidate post produced from an ecosystem snapshot"""

    key: str  # stable id of the underlying observation, used for dedupe
    title: str
    body: str
    tags: Tuple[str, ...] = ()
    data_points: int = 0
    solves_issue: bool = False
    answers_question: bool = False
    actionable: str = ""
    examples: Tuple[str, ...] = ()
    trending: bool = False
    has_visualization: bool = False


@dataclass(frozen=True)
class GateContext:
    """Everything the gate predicates need besides the insight, prefetched"""

    now: datetime
    strategy: Strategy
    recent_titles: Tuple[str, ...] = ()
    last_action_at: Optional[datetime] = None
    actions_today: int = 0


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    rationale: str


@dataclass(frozen=True)
class GateDecision:
    accepted: bool
    passed: int
    total: int
    threshold: int
    strategy_version: int
    checks: Tuple[CheckResult, ...]
    reasoning: str

    @property
    def confidence(self) -> float:
        return round(self.passed / self.total, 3) if self.total else 0.0

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "passed": self.passed,
            "total": self.total,
            "threshold": self.threshold,
            "strategy_version": self.strategy_version,
            "checks": {c.name: c.passed for c in self.checks},
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    innovation: float = 5.0
    effort: float = 5.0
    potential: float = 5.0
    fit: float = 5.0
    reasoning: str = ""
    fallback: bool = False

    @property
    def average(self) -> float:
        return round((self.innovation + self.effort + self.potential + self.fit) / 4, 4)

    def to_dict(self) -> Dict[str, float]:
        return {
            "innovation": self.innovation,
            "effort": self.effort,
            "potential": self.potential,
            "fit": self.fit,
        }


@dataclass(frozen=True)
class ObjectiveScore:
    score: float
    signals: Dict[str, float] = field(default_factory=dict)
    description_label: str = "missing"


@dataclass(frozen=True)
class EvaluationResult:
    subject_id: str
    objective_score: float
    model_score: float
    final_score: float
    threshold: float
    decision: str  # ACT / SKIP
    breakdown: Dict[str, float]
    objective_signals: Dict[str, float]
    reasoning_text: str
    confidence: float
    strategy_version: int
    evaluated_at: datetime
    model_fallback: bool = False

    @property
    def act(self) -> bool:
        return self.decision == "ACT"


@dataclass
class VotingRunStats:
    evaluated: int = 0
    voted: int = 0
    skipped: int = 0
    failed: int = 0
    reasons: List[str] = field(default_factory=list)
