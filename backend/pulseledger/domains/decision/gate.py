"""
Decision gate - multi-factor checklist for publishing an insight

The checklist is an ordered list of named predicates. Each returns
(passed, rationale); the gate counts passes and compares against the
live strategy's min_quality_score. All check results go into the trace.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from pulseledger.common.base import as_utc
from pulseledger.common.config import settings
from pulseledger.domains.decision.schemas import CheckResult, GateContext, GateDecision, Insight

logger = logging.getLogger(__name__)

Predicate = Callable[[Insight, GateContext], Tuple[bool, str]]


def token_set(text: str) -> Set[str]:
    return set((text or "").lower().split())


def jaccard(a: str, b: str) -> float:
    sa, sb = token_set(a), token_set(b)
    if not sa and not sb:
        return 1.0
    union = sa | sb
    return len(sa & sb) / len(union) if union else 0.0


def relevance_score(insight: Insight, keywords: Sequence[str]) -> float:
    text = f"{insight.title} {insight.body}".lower()
    score = sum(0.15 for kw in keywords if kw in text)
    if insight.tags:
        score += 0.2
    return round(min(score, 1.0), 4)


def engagement_score(insight: Insight) -> float:
    score = 0.0
    if re.search(r"\d", insight.body or ""):
        score += 0.2
    if insight.examples:
        score += 0.2
    if insight.trending:
        score += 0.3
    if "How to" in insight.title or "Guide" in insight.title:
        score += 0.2
    if insight.has_visualization:
        score += 0.1
    return round(score, 4)


@dataclass(frozen=True)
class GateCheck:
    name: str
    predicate: Predicate

    def run(self, insight: Insight, context: GateContext) -> CheckResult:
        passed, rationale = self.predicate(insight, context)
        return CheckResult(name=self.name, passed=bool(passed), rationale=rationale)


# ── predicates ──

def has_data(min_points: int) -> Predicate:
    def check(insight: Insight, context: GateContext):
        return insight.data_points >= min_points, f"{insight.data_points} data points (need {min_points})"
    return check


def is_novel(cutoff: float) -> Predicate:
    def check(insight: Insight, context: GateContext):
        best, match = 0.0, None
        for title in context.recent_titles:
            similarity = jaccard(insight.title, title)
            if similarity > best:
                best, match = similarity, title
        if best > cutoff:
            return False, f"similarity {best:.2f} to recent {match!r} exceeds {cutoff}"
        return True, f"max similarity {best:.2f} against {len(context.recent_titles)} recent titles"
    return check


def is_relevant(threshold: float, keywords: Sequence[str]) -> Predicate:
    def check(insight: Insight, context: GateContext):
        score = relevance_score(insight, keywords)
        return score > threshold, f"relevance {score:.2f} (need > {threshold})"
    return check


def answers_question(insight: Insight, context: GateContext):
    passed = insight.solves_issue or insight.answers_question
    return passed, "addresses an open question" if passed else "no question or issue addressed"


def provides_action(insight: Insight, context: GateContext):
    passed = bool(insight.actionable and insight.actionable.strip())
    return passed, "has actionable recommendation" if passed else "no actionable recommendation"


def not_too_frequent(min_interval: timedelta) -> Predicate:
    def check(insight: Insight, context: GateContext):
        if context.last_action_at is None:
            return True, "no previous action"
        elapsed = as_utc(context.now) - as_utc(context.last_action_at)
        minutes = elapsed.total_seconds() / 60
        return elapsed >= min_interval, f"{minutes:.0f} min since last action (need {min_interval.total_seconds() / 60:.0f})"
    return check


def under_daily_limit(insight: Insight, context: GateContext):
    limit = context.strategy.parameters.max_daily_actions
    return context.actions_today < limit, f"{context.actions_today}/{limit} actions today"


def engagement_potential(threshold: float = 0.6) -> Predicate:
    def check(insight: Insight, context: GateContext):
        score = engagement_score(insight)
        return score > threshold, f"engagement {score:.2f} (need > {threshold})"
    return check


def default_checks() -> List[GateCheck]:
    return [
        GateCheck("has_data", has_data(settings.min_data_points)),
        GateCheck("is_novel", is_novel(settings.novelty_similarity_cutoff)),
        GateCheck("is_relevant", is_relevant(settings.relevance_threshold, settings.relevance_keywords)),
        GateCheck("answers_question", answers_question),
        GateCheck("provides_action", provides_action),
        GateCheck("not_too_frequent", not_too_frequent(timedelta(minutes=settings.min_action_interval_minutes))),
        GateCheck("under_daily_limit", under_daily_limit),
        GateCheck("engagement_potential", engagement_potential()),
    ]


class DecisionGate:

    def __init__(self, checks: Optional[Iterable[GateCheck]] = None):
        self.checks: List[GateCheck] = list(checks) if checks is not None else default_checks()

    def evaluate(self, insight: Insight, context: GateContext, threshold: Optional[int] = None) -> GateDecision:
        """
        Run every check. Accept iff passes >= threshold; threshold defaults
        to the min_quality_score of the strategy carried by the context.
        """
        if threshold is None:
            threshold = context.strategy.parameters.min_quality_score

        results = tuple(check.run(insight, context) for check in self.checks)
        passed = sum(1 for r in results if r.passed)
        accepted = passed >= threshold

        lines = [
            f"=== POST DECISION: {insight.title!r} ===",
            f"Strategy v{context.strategy.version}, threshold {threshold}/{len(results)}",
        ]
        lines += [f"  [{'PASS' if r.passed else 'FAIL'}] {r.name}: {r.rationale}" for r in results]
        lines.append(f"Result: {passed}/{len(results)} -> {'PUBLISH' if accepted else 'SKIP'}")

        decision = GateDecision(
            accepted=accepted,
            passed=passed,
            total=len(results),
            threshold=threshold,
            strategy_version=context.strategy.version,
            checks=results,
            reasoning="\n".join(lines),
        )
        logger.info(
            f"Gate {passed}/{len(results)} (threshold {threshold}) -> "
            f"{'PUBLISH' if accepted else 'SKIP'} {insight.title!r}"
        )
        return decision
