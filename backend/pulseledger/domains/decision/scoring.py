"""
Weighted vote scoring

final = w_objective * objective + w_model * model, ACT iff final >= the
live strategy's min_vote_score. The model side degrades to a neutral 5 on
every dimension when the reasoning capability fails or answers garbage.
"""

import logging
from typing import Any, Dict, Optional

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.decision.schemas import EvaluationResult, ObjectiveScore, ScoreBreakdown
from pulseledger.domains.ecosystem.schemas import Project
from pulseledger.domains.reasoning.client import ReasoningClient, ReasoningUnavailableError, get_reasoning_client
from pulseledger.domains.strategy.strategy_manager import StrategyManager, get_strategy_manager

logger = logging.getLogger(__name__)

DIMENSIONS = ("innovation", "effort", "potential", "fit")
NEUTRAL_SCORE = 5.0

DEMO_POINTS = 3.0
REPO_POINTS = 2.0
VIDEO_POINTS = 1.0


def description_points(description: Optional[str]) -> tuple:
    """(points, label) by description length tier"""
    if not description:
        return 0.0, "missing"
    length = len(description)
    if length > 500:
        return 2.5, "excellent"
    if length > 300:
        return 2.0, "detailed"
    if length > 150:
        return 1.5, "good"
    if length > 50:
        return 0.5, "basic"
    return 0.2, "minimal"


def objective_score(project: Project) -> ObjectiveScore:
    desc_points, label = description_points(project.description)
    signals = {
        "demo": DEMO_POINTS if project.demo_link else 0.0,
        "repo": REPO_POINTS if project.repo_link else 0.0,
        "video": VIDEO_POINTS if project.video_link else 0.0,
        "description": desc_points,
    }
    return ObjectiveScore(score=round(min(sum(signals.values()), 10.0), 4), signals=signals,
                          description_label=label)


def confidence_for(final_score: float) -> float:
    if final_score >= 8.0:
        return 0.95
    if final_score >= 7.0:
        return 0.90
    if final_score >= 6.5:
        return 0.85
    if final_score >= 6.0:
        return 0.80
    if final_score >= 5.5:
        return 0.75
    if final_score >= 5.0:
        return 0.70
    if final_score >= 4.0:
        return 0.65
    return 0.60


def interpret(score: float) -> str:
    if score >= 9:
        return "outstanding"
    if score >= 8:
        return "excellent"
    if score >= 7:
        return "very good"
    if score >= 6:
        return "good"
    if score >= 5:
        return "acceptable"
    if score >= 4:
        return "below average"
    return "poor"


def _dimension(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number < 1 or number > 10:
        return None
    return number


def parse_breakdown(parsed: Optional[Dict[str, Any]]) -> ScoreBreakdown:
    """Any missing or out-of-range dimension is replaced by the neutral score"""
    if not isinstance(parsed, dict):
        return ScoreBreakdown(reasoning="Model evaluation unavailable, neutral scores used.", fallback=True)

    values = {}
    degraded = False
    for name in DIMENSIONS:
        value = _dimension(parsed.get(name))
        if value is None:
            degraded = True
            value = NEUTRAL_SCORE
        values[name] = value
    reasoning = parsed.get("reasoning")
    return ScoreBreakdown(
        reasoning=str(reasoning)[:1000] if reasoning else "",
        fallback=degraded,
        **values,
    )


class ModelScorer:
    """Asks the reasoning capability for the four sub-dimensions"""

    def __init__(self, reasoning: Optional[ReasoningClient] = None):
        self.reasoning = reasoning or get_reasoning_client()

    def build_prompt(self, project: Project) -> str:
        return f"""Evaluate this hackathon project. Score each dimension 1-10.

Project: {project.name}
Tagline: {project.tagline or 'N/A'}
Description: {(project.description or 'N/A')[:1500]}
Tech stack: {project.tech_stack or 'N/A'}
Repository: {'yes' if project.repo_link else 'no'}
Live demo: {'yes' if project.demo_link else 'no'}
Video: {'yes' if project.video_link else 'no'}

Dimensions:
- innovation: is the idea novel, does it solve a real problem
- effort: evidence of engineering work and completeness
- potential: could it grow into something used by others
- fit: value to the Solana / AI agent ecosystem

Respond in JSON only:
{{"innovation": <1-10>, "effort": <1-10>, "potential": <1-10>, "fit": <1-10>, "reasoning": "one or two sentences"}}"""

    async def score(self, project: Project) -> ScoreBreakdown:
        if not self.reasoning.available:
            return parse_breakdown(None)
        try:
            parsed = await self.reasoning.complete_json(self.build_prompt(project), max_tokens=400)
        except ReasoningUnavailableError as e:
            logger.warning(f"Model scoring failed for project {project.id}: {e}")
            parsed = None
        return parse_breakdown(parsed)


class VoteScorer:
    """Combines objective and model scores against the live threshold"""

    def __init__(
        self,
        model_scorer: Optional[ModelScorer] = None,
        strategy_manager: Optional[StrategyManager] = None,
        objective_weight: Optional[float] = None,
        model_weight: Optional[float] = None,
    ):
        self.model_scorer = model_scorer or ModelScorer()
        self.strategy_manager = strategy_manager or get_strategy_manager()
        self.objective_weight = objective_weight if objective_weight is not None else settings.vote_objective_weight
        self.model_weight = model_weight if model_weight is not None else settings.vote_model_weight

    def combine(self, objective: float, model: float) -> float:
        return round(self.objective_weight * objective + self.model_weight * model, 4)

    async def evaluate(self, project: Project) -> EvaluationResult:
        objective = objective_score(project)
        breakdown = await self.model_scorer.score(project)

        # threshold read after the model call, never cached across passes
        strategy = self.strategy_manager.snapshot()
        threshold = strategy.parameters.min_vote_score

        final = self.combine(objective.score, breakdown.average)
        decision = "ACT" if final >= threshold else "SKIP"
        confidence = confidence_for(final)

        return EvaluationResult(
            subject_id=project.subject_id,
            objective_score=objective.score,
            model_score=breakdown.average,
            final_score=final,
            threshold=threshold,
            decision=decision,
            breakdown=breakdown.to_dict(),
            objective_signals=objective.signals,
            reasoning_text=self.reasoning_trace(project, objective, breakdown, final, threshold, decision, confidence),
            confidence=confidence,
            strategy_version=strategy.version,
            evaluated_at=utc_now(),
            model_fallback=breakdown.fallback,
        )

    def reasoning_trace(self, project: Project, objective: ObjectiveScore, breakdown: ScoreBreakdown,
                        final: float, threshold: float, decision: str, confidence: float) -> str:
        s = objective.signals
        lines = [
            f"=== VOTE DECISION FOR PROJECT #{project.id} ===",
            "",
            "1. PROJECT OVERVIEW",
            f"   Name: {project.name!r}",
            f"   Tagline: {project.tagline or 'N/A'}",
            f"   Description length: {len(project.description or '')} chars",
            "",
            f"2. OBJECTIVE ANALYSIS ({self.objective_weight:.0%} weight)",
            f"   Score: {objective.score:.1f}/10",
            f"   Demo: {'yes' if s['demo'] else 'no'} (+{s['demo']:.1f})",
            f"   Repository: {'yes' if s['repo'] else 'no'} (+{s['repo']:.1f})",
            f"   Video: {'yes' if s['video'] else 'no'} (+{s['video']:.1f})",
            f"   Description: {objective.description_label} (+{s['description']:.1f})",
            "",
            f"3. MODEL EVALUATION ({self.model_weight:.0%} weight)",
            f"   Score: {breakdown.average:.2f}/10{' (neutral fallback)' if breakdown.fallback else ''}",
            *[f"   {name}: {getattr(breakdown, name):g}/10 - {interpret(getattr(breakdown, name))}" for name in DIMENSIONS],
            f"   Assessment: {breakdown.reasoning or 'n/a'}",
            "",
            "4. FINAL CALCULATION",
            f"   ({objective.score:.2f} x {self.objective_weight}) + ({breakdown.average:.2f} x {self.model_weight}) = {final:.2f}",
            f"   Threshold: {threshold:.2f}",
            "",
            "5. DECISION",
            f"   {'VOTE' if decision == 'ACT' else 'SKIP'} (confidence {confidence:.0%})",
        ]
        return "\n".join(lines)
