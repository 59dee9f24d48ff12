"""
Adaptation service - observe -> recommend -> validate -> apply

One cycle per firing of the strategy_adaptation loop. The reasoning model's
recommendation only ever reaches the StrategyManager through
validate_recommendations().
"""

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType
from pulseledger.domains.reasoning.client import (
    ReasoningClient,
    ReasoningUnavailableError,
    get_reasoning_client,
)
from pulseledger.domains.strategy.schemas import Strategy
from pulseledger.domains.strategy.strategy_manager import StrategyManager, get_strategy_manager
from pulseledger.domains.strategy.validation import validate_recommendations

logger = logging.getLogger(__name__)

TARGET_UPVOTES_PER_POST = 5
TARGET_COMMENTS_PER_POST = 2

FALLBACK_ANALYSIS: Dict[str, Any] = {
    "summary": "Analysis unavailable, maintaining current strategy.",
    "strengths": [],
    "weaknesses": [],
    "recommendations": [],
    "performanceScore": 5,
}

SYSTEM_PROMPT = (
    "You are the self-tuning engine of an autonomous ecosystem analytics agent. "
    "You only answer with a single JSON object."
)


def _score(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number < 0 or number > 10:
        return None
    return round(number, 2)


class AdaptationService:

    def __init__(
        self,
        strategy_manager: Optional[StrategyManager] = None,
        action_log: Optional[ActionLogService] = None,
        reasoning: Optional[ReasoningClient] = None,
        engagement_source: Optional[Callable[[], Optional[Dict[str, Any]]]] = None,
    ):
        self.strategy_manager = strategy_manager or get_strategy_manager()
        self.action_log = action_log or get_action_log_service()
        self.reasoning = reasoning or get_reasoning_client()
        self.engagement_source = engagement_source

    # ── 1. observe ──

    async def gather_metrics(self, window_hours: Optional[int] = None) -> Dict[str, Any]:
        window_hours = window_hours or settings.adaptation_window_hours
        since = utc_now() - timedelta(hours=window_hours)

        by_type = await self.action_log.counts_by_type(since=since)
        outcomes = await self.action_log.outcome_counts(since=since)
        decisions = await self.action_log.list_actions(
            limit=500, action_type=ActionType.POST_DECISION, since=since
        )
        accepted = sum(1 for d in decisions if (d.metadata_json or {}).get("accepted"))
        confidences = [d.confidence for d in decisions if d.confidence is not None]

        metrics: Dict[str, Any] = {
            "window_hours": window_hours,
            "actions_by_type": by_type,
            "posts_published": await self.action_log.count_since(ActionType.FORUM_POST, since),
            "votes_cast": await self.action_log.count_since(ActionType.VOTE, since),
            "ledger_commits": outcomes.get("COMMITTED", 0),
            "failures": outcomes.get(ActionOutcome.FAILED.value, 0),
            "post_decisions": len(decisions),
            "post_acceptance_rate": round(accepted / len(decisions), 3) if decisions else None,
            "avg_gate_confidence": round(sum(confidences) / len(confidences), 3) if confidences else None,
        }
        if self.engagement_source is not None:
            metrics["engagement"] = self.engagement_source() or {}
        return metrics

    # ── 2. recommend ──

    def build_prompt(self, strategy: Strategy, metrics: Dict[str, Any]) -> str:
        p = strategy.parameters
        engagement = metrics.get("engagement") or {}
        return f"""Analyze these performance metrics and recommend parameter changes.

Current strategy (version {strategy.version}):
- postingTone: {p.posting_tone} (one of enthusiastic, analytical, balanced)
- insightFocus: {p.insight_focus} (one of trends, predictions, community, technical)
- minQualityScore: {p.min_quality_score} (checks out of 8 a post must pass, 4-8)
- maxDailyActions: {p.max_daily_actions} (posts per day, 2-8)
- optimalHour: {p.optimal_hour} (UTC hour, 0-23)
- minVoteScore: {p.min_vote_score} (vote threshold, 4.0-9.0)

Last {metrics.get('window_hours')}h:
- Posts published: {metrics.get('posts_published', 0)}
- Post decisions: {metrics.get('post_decisions', 0)}, acceptance rate: {metrics.get('post_acceptance_rate')}
- Avg upvotes per post: {engagement.get('avg_upvotes', 0)}
- Avg comments per post: {engagement.get('avg_comments', 0)}
- Votes cast: {metrics.get('votes_cast', 0)}
- Ledger commitments: {metrics.get('ledger_commits', 0)}
- Failed actions: {metrics.get('failures', 0)}

Targets: {TARGET_UPVOTES_PER_POST} upvotes/post, {TARGET_COMMENTS_PER_POST} comments/post.

Respond in JSON:
{{
  "summary": "2-3 sentence overall assessment",
  "strengths": ["..."],
  "weaknesses": ["..."],
  "recommendations": [
    {{"parameter": "postingTone|insightFocus|minQualityScore|maxDailyActions|optimalHour|minVoteScore",
      "currentValue": "...", "suggestedValue": "...", "reason": "..."}}
  ],
  "performanceScore": <1-10>
}}"""

    async def request_recommendation(self, strategy: Strategy, metrics: Dict[str, Any]) -> Dict[str, Any]:
        if not self.reasoning.available:
            return dict(FALLBACK_ANALYSIS)
        try:
            parsed = await self.reasoning.complete_json(
                self.build_prompt(strategy, metrics), system=SYSTEM_PROMPT
            )
        except ReasoningUnavailableError as e:
            logger.error(f"Strategy analysis failed: {e}")
            return dict(FALLBACK_ANALYSIS)
        if parsed is None:
            return dict(FALLBACK_ANALYSIS)
        return parsed

    # ── full cycle ──

    async def run_cycle(self) -> Dict[str, Any]:
        strategy = self.strategy_manager.snapshot()
        metrics = await self.gather_metrics()
        analysis = await self.request_recommendation(strategy, metrics)

        summary = analysis.get("summary")
        summary = summary if isinstance(summary, str) and summary.strip() else FALLBACK_ANALYSIS["summary"]
        performance_score = _score(analysis.get("performanceScore"))
        raw_recs = analysis.get("recommendations")
        if not isinstance(raw_recs, list):
            raw_recs = []

        # validated against the snapshot taken at the start of the cycle;
        # apply() re-checks against whatever is current when it runs
        accepted, rejected = validate_recommendations(strategy.parameters, raw_recs)
        entry = None
        if accepted:
            entry = await self.strategy_manager.apply(accepted, metrics, performance_score, summary)

        after = self.strategy_manager.snapshot()
        applied: List[Dict[str, Any]] = [c.to_dict() for c in entry.changes] if entry else []

        reasoning_lines = [
            f"Strategy adaptation v{strategy.version} -> v{after.version}",
            f"Summary: {summary}",
            f"Performance score: {performance_score if performance_score is not None else 'n/a'}",
            f"Metrics: {json.dumps(metrics, default=str, sort_keys=True)}",
            f"Applied ({len(applied)}):",
            *[f"  - {c['name']}: {c['old_value']!r} -> {c['new_value']!r} ({c['reason']})" for c in applied],
            f"Dropped ({len(rejected)}):",
            *[f"  - {r}" for r in rejected],
        ]
        record = await self.action_log.record_action(
            ActionType.STRATEGY_ADAPTATION,
            summary=(
                f"Strategy v{after.version}: {len(applied)} change(s) applied"
                if entry else f"Strategy v{after.version} unchanged"
            ),
            metadata={
                "from_version": strategy.version,
                "to_version": after.version,
                "applied": applied,
                "rejected_count": len(rejected),
                "performance_score": performance_score,
            },
            reasoning="\n".join(reasoning_lines),
            confidence=performance_score / 10 if performance_score is not None else None,
        )
        ledger_tx = await self.action_log.commit_to_ledger(record)

        return {
            "status": "adapted" if entry else "unchanged",
            "version": after.version,
            "applied": applied,
            "rejected": rejected,
            "performance_score": performance_score,
            "summary": summary,
            "record_id": record.id,
            "ledger_tx": ledger_tx,
        }


_adaptation_service: Optional[AdaptationService] = None


def get_adaptation_service() -> AdaptationService:
    global _adaptation_service
    if _adaptation_service is None:
        _adaptation_service = AdaptationService()
    return _adaptation_service
