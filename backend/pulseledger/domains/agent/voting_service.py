"""
Voting workflow - score unvoted projects, vote for those above threshold

Subject lifecycle: UNEVALUATED -> EVALUATED(SKIP)
                   UNEVALUATED -> EVALUATED(ACT) -> ACTED
ACTED subjects never re-enter a pass. A vote is claimed in the action log
before it is cast, so an overlapping or retried pass cannot vote twice; a
subject with a live claim is not scored again either.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.agent.data_refresh_service import DataRefreshService, get_data_refresh_service
from pulseledger.domains.decision.evaluation_service import EvaluationService, get_evaluation_service
from pulseledger.domains.decision.schemas import EvaluationResult
from pulseledger.domains.decision.scoring import VoteScorer
from pulseledger.domains.ecosystem.client import EcosystemClient, get_ecosystem_client
from pulseledger.domains.ecosystem.schemas import Project
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType

logger = logging.getLogger(__name__)


class VotingService:

    def __init__(
        self,
        data_refresh: Optional[DataRefreshService] = None,
        scorer: Optional[VoteScorer] = None,
        evaluations: Optional[EvaluationService] = None,
        ecosystem: Optional[EcosystemClient] = None,
        action_log: Optional[ActionLogService] = None,
        max_votes_per_day: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        own_project_id: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.data_refresh = data_refresh or get_data_refresh_service()
        self.scorer = scorer or VoteScorer()
        self.evaluations = evaluations or get_evaluation_service()
        self.ecosystem = ecosystem or get_ecosystem_client()
        self.action_log = action_log or get_action_log_service()
        self.max_votes_per_day = max_votes_per_day if max_votes_per_day is not None else settings.max_votes_per_day
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.vote_delay_seconds
        self.own_project_id = own_project_id if own_project_id is not None else settings.own_project_id
        self._sleep = sleep

    async def candidates(self) -> List[Project]:
        """
        Projects that are neither ours, already ACTED, nor held by a live vote
        claim, most complete first.

        A successful vote whose subject never reached ACTED (the store failed
        in between) is marked ACTED here instead of being scored again.
        """
        snapshot = await self.data_refresh.ensure_snapshot()
        acted = await self.evaluations.acted_subject_ids()
        voted = await self.action_log.claimed_subject_ids(ActionType.VOTE, outcome=ActionOutcome.SUCCESS)
        for subject_id in voted - acted:
            logger.warning(f"Vote on {subject_id} succeeded but was never marked acted, repairing")
            await self.evaluations.mark_acted(subject_id)
        claimed = await self.action_log.claimed_subject_ids(ActionType.VOTE)

        own = str(self.own_project_id) if self.own_project_id is not None else None
        pool = [
            p for p in snapshot.projects
            if p.subject_id not in acted and p.subject_id not in claimed and (own is None or str(p.id) != own)
        ]
        return sorted(pool, key=lambda p: p.completeness, reverse=True)

    async def run_cycle(self) -> Dict[str, Any]:
        since = utc_now() - timedelta(hours=24)
        votes_today = await self.action_log.count_since(ActionType.VOTE, since)
        remaining = self.max_votes_per_day - votes_today
        if remaining <= 0:
            logger.info(f"Daily vote limit reached ({votes_today}/{self.max_votes_per_day})")
            return {"status": "limit_reached", "evaluated": 0, "voted": 0}

        projects = await self.candidates()
        if not projects:
            logger.info("No new projects to evaluate")
            return {"status": "no_projects", "evaluated": 0, "voted": 0}

        evaluated = voted = failed = 0
        for index, project in enumerate(projects):
            if voted >= remaining:
                break
            if index:
                await self._sleep(self.delay_seconds)

            result = await self.evaluate(project)
            evaluated += 1
            if not result.act:
                continue

            outcome = await self.cast_vote(project, result)
            if outcome == ActionOutcome.SUCCESS.value:
                voted += 1
            elif outcome == ActionOutcome.FAILED.value:
                failed += 1

        logger.info(f"Voting complete: {evaluated} evaluated, {voted} votes, {failed} failed")
        return {"status": "completed", "evaluated": evaluated, "voted": voted, "failed": failed}

    async def evaluate(self, project: Project) -> EvaluationResult:
        result = await self.scorer.evaluate(project)
        await self.evaluations.upsert(result, subject_name=project.name)
        logger.info(
            f"Project {project.id} {project.name!r}: {result.final_score:.2f} "
            f"(threshold {result.threshold}) -> {result.decision}"
        )
        return result

    async def cast_vote(self, project: Project, result: EvaluationResult) -> str:
        record = await self.action_log.claim_action(
            ActionType.VOTE,
            subject_id=project.subject_id,
            summary=f"Vote for {project.name} ({result.final_score:.1f}/10)",
            metadata={
                "project_id": str(project.id),
                "project_name": project.name,
                "objective_score": result.objective_score,
                "model_score": result.model_score,
                "final_score": result.final_score,
                "threshold": result.threshold,
                "breakdown": result.breakdown,
                "strategy_version": result.strategy_version,
            },
            reasoning=result.reasoning_text,
            confidence=result.confidence,
        )
        if record is None:
            logger.info(f"Vote on {project.subject_id} already claimed")
            return "DUPLICATE"

        try:
            await self.ecosystem.vote_for_project(project.id)
        except Exception as e:
            logger.error(f"Vote for project {project.id} failed: {e}", exc_info=True)
            await self.action_log.set_outcome(record.id, ActionOutcome.FAILED, error=str(e))
            return ActionOutcome.FAILED.value

        await self.action_log.set_outcome(record.id, ActionOutcome.SUCCESS, external_ref=str(project.id))
        await self.action_log.commit_to_ledger(record)
        await self.evaluations.mark_acted(project.subject_id, action_record_id=record.id)
        return ActionOutcome.SUCCESS.value


_voting_service: Optional[VotingService] = None


def get_voting_service() -> VotingService:
    global _voting_service
    if _voting_service is None:
        _voting_service = VotingService()
    return _voting_service
