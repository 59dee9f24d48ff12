"""
Posting workflow - gate each candidate insight, publish the accepted ones

Per insight: fresh strategy snapshot -> context -> gate -> POST_DECISION
record -> (accepted) claim FORUM_POST -> create post -> outcome -> ledger.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.agent.data_refresh_service import DataRefreshService, get_data_refresh_service
from pulseledger.domains.agent.insight_generator import InsightGenerator
from pulseledger.domains.decision.gate import DecisionGate
from pulseledger.domains.decision.schemas import GateContext, GateDecision, Insight
from pulseledger.domains.ecosystem.client import EcosystemClient, get_ecosystem_client
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType
from pulseledger.domains.strategy.schemas import Strategy
from pulseledger.domains.strategy.strategy_manager import StrategyManager, get_strategy_manager

logger = logging.getLogger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class PostingService:

    def __init__(
        self,
        data_refresh: Optional[DataRefreshService] = None,
        generator: Optional[InsightGenerator] = None,
        gate: Optional[DecisionGate] = None,
        ecosystem: Optional[EcosystemClient] = None,
        action_log: Optional[ActionLogService] = None,
        strategy_manager: Optional[StrategyManager] = None,
    ):
        self.data_refresh = data_refresh or get_data_refresh_service()
        self.generator = generator or InsightGenerator()
        self.gate = gate or DecisionGate()
        self.ecosystem = ecosystem or get_ecosystem_client()
        self.action_log = action_log or get_action_log_service()
        self.strategy_manager = strategy_manager or get_strategy_manager()

    async def build_context(self, strategy: Strategy, now: Optional[datetime] = None) -> GateContext:
        now = now or utc_now()
        window_start = now - timedelta(hours=settings.novelty_window_hours)
        own_titles = await self.action_log.recent_summaries(ActionType.FORUM_POST, since=window_start)
        forum_titles = [p.title for p in self.data_refresh.latest.posts] if self.data_refresh.latest else []
        return GateContext(
            now=now,
            strategy=strategy,
            recent_titles=tuple(own_titles + forum_titles),
            last_action_at=await self.action_log.last_action_at(ActionType.FORUM_POST),
            actions_today=await self.action_log.count_since(ActionType.FORUM_POST, start_of_day(now)),
        )

    async def run_cycle(self) -> Dict[str, Any]:
        snapshot = await self.data_refresh.ensure_snapshot()
        insights = await self.generator.generate(snapshot, self.strategy_manager.snapshot())

        # insights already published (or being published) never go back through the gate
        claimed = await self.action_log.claimed_subject_ids(ActionType.FORUM_POST)
        fresh = [i for i in insights if f"insight:{i.key}" not in claimed]
        skipped = len(insights) - len(fresh)
        if skipped:
            logger.info(f"Skipping {skipped} already published insight(s)")
        if not fresh:
            logger.info("No candidate insights this cycle")
            return {"status": "completed", "candidates": 0, "skipped": skipped, "published": 0, "results": []}

        results: List[Dict[str, Any]] = []
        published = 0
        for insight in fresh:
            # re-read per decision: an adaptation may have landed in between
            strategy = self.strategy_manager.snapshot()
            context = await self.build_context(strategy)
            decision = self.gate.evaluate(insight, context)
            await self._record_decision(insight, decision, context)

            result = {"key": insight.key, "title": insight.title, "accepted": decision.accepted,
                      "passed": decision.passed, "threshold": decision.threshold}
            if decision.accepted:
                result.update(await self.publish(insight, decision))
                if result.get("outcome") == ActionOutcome.SUCCESS.value:
                    published += 1
            results.append(result)

        return {"status": "completed", "candidates": len(fresh), "skipped": skipped, "published": published,
                "results": results}

    async def _record_decision(self, insight: Insight, decision: GateDecision, context: GateContext):
        metadata = decision.to_metadata()
        metadata.update({
            "insight_key": insight.key,
            "at_optimal_hour": context.now.hour == context.strategy.parameters.optimal_hour,
        })
        await self.action_log.record_action(
            ActionType.POST_DECISION,
            summary=f"{'PUBLISH' if decision.accepted else 'SKIP'}: {insight.title}",
            subject_id=f"insight:{insight.key}",
            metadata=metadata,
            reasoning=decision.reasoning,
            confidence=decision.confidence,
        )

    async def publish(self, insight: Insight, decision: GateDecision) -> Dict[str, Any]:
        record = await self.action_log.claim_action(
            ActionType.FORUM_POST,
            subject_id=f"insight:{insight.key}",
            summary=insight.title,
            metadata={"insight_key": insight.key, "data_points": insight.data_points,
                      "strategy_version": decision.strategy_version},
            reasoning=decision.reasoning,
            confidence=decision.confidence,
        )
        if record is None:
            return {"outcome": "DUPLICATE"}

        try:
            post = await self.ecosystem.create_post(insight.title, self._format_body(insight), list(insight.tags))
        except Exception as e:
            logger.error(f"Forum post failed for {insight.key}: {e}", exc_info=True)
            await self.action_log.set_outcome(record.id, ActionOutcome.FAILED, error=str(e))
            return {"outcome": ActionOutcome.FAILED.value, "record_id": record.id, "error": str(e)}

        post_id = str(post.get("id")) if post.get("id") is not None else None
        await self.action_log.set_outcome(record.id, ActionOutcome.SUCCESS, external_ref=post_id)
        signature = await self.action_log.commit_to_ledger(record)
        logger.info(f"Published {insight.title!r} (post {post_id}, ledger {signature or 'none'})")
        return {"outcome": ActionOutcome.SUCCESS.value, "record_id": record.id, "post_id": post_id,
                "ledger_tx": signature}

    @staticmethod
    def _format_body(insight: Insight) -> str:
        return (
            f"{insight.body}\n\n"
            f"**Recommendation:** {insight.actionable}\n\n"
            f"---\n"
            f"*Based on {insight.data_points} data points. Generated autonomously by "
            f"{settings.agent_name}; every action is hash-committed to a public ledger.*"
        )


_posting_service: Optional[PostingService] = None


def get_posting_service() -> PostingService:
    global _posting_service
    if _posting_service is None:
        _posting_service = PostingService()
    return _posting_service
