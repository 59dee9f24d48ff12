"""Evaluation persistence - upsert keyed by subject id"""

import logging
from typing import Optional, List, Set

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pulseledger.common.base import utc_now
from pulseledger.common.database import DatabaseManager, db_manager
from pulseledger.domains.decision.models.evaluation import Evaluation
from pulseledger.domains.decision.schemas import EvaluationResult

logger = logging.getLogger(__name__)

STATUS_EVALUATED = "EVALUATED"
STATUS_ACTED = "ACTED"


class EvaluationService:

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    @staticmethod
    def _fields(result: EvaluationResult, subject_name: Optional[str]) -> dict:
        return {
            "subject_name": subject_name,
            "objective_score": result.objective_score,
            "model_score": result.model_score,
            "final_score": result.final_score,
            "threshold": result.threshold,
            "breakdown": result.breakdown,
            "objective_signals": result.objective_signals,
            "reasoning_text": result.reasoning_text,
            "decision": result.decision,
            "confidence": result.confidence,
            "strategy_version": result.strategy_version,
            "evaluated_at": result.evaluated_at,
        }

    async def upsert(self, result: EvaluationResult, subject_name: Optional[str] = None) -> Evaluation:
        """
        Insert or overwrite the evaluation for result.subject_id.

        An ACTED row is left untouched; the caller gets it back unchanged.
        """
        fields = self._fields(result, subject_name)
        try:
            async with self.db.get_session() as session:
                existing = (await session.execute(
                    select(Evaluation).where(Evaluation.subject_id == result.subject_id)
                )).scalar_one_or_none()

                if existing is None:
                    existing = Evaluation(subject_id=result.subject_id, status=STATUS_EVALUATED, **fields)
                    session.add(existing)
                elif existing.status == STATUS_ACTED:
                    logger.info(f"Evaluation for {result.subject_id} already ACTED, not overwritten")
                    return existing
                else:
                    for key, value in fields.items():
                        setattr(existing, key, value)
                    existing.updated_at = utc_now()
            return existing
        except IntegrityError:
            # lost an insert race; the row exists now, overwrite it
            async with self.db.get_session() as session:
                await session.execute(
                    update(Evaluation)
                    .where(Evaluation.subject_id == result.subject_id, Evaluation.status != STATUS_ACTED)
                    .values(updated_at=utc_now(), **fields)
                )
            return await self.get(result.subject_id)

    async def mark_acted(self, subject_id: str, action_record_id: Optional[str] = None) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(Evaluation)
                .where(Evaluation.subject_id == subject_id, Evaluation.status != STATUS_ACTED)
                .values(status=STATUS_ACTED, acted_at=utc_now(), action_record_id=action_record_id,
                        updated_at=utc_now())
            )
            return result.rowcount > 0

    async def get(self, subject_id: str) -> Optional[Evaluation]:
        async with self.db.get_session() as session:
            return (await session.execute(
                select(Evaluation).where(Evaluation.subject_id == subject_id)
            )).scalar_one_or_none()

    async def acted_subject_ids(self) -> Set[str]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Evaluation.subject_id).where(Evaluation.status == STATUS_ACTED)
            )
            return set(result.scalars().all())

    async def list_evaluations(self, limit: int = 50, decision: Optional[str] = None) -> List[Evaluation]:
        query = select(Evaluation)
        if decision:
            query = query.where(Evaluation.decision == decision)
        query = query.order_by(Evaluation.final_score.desc()).limit(limit)
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())


_evaluation_service: Optional[EvaluationService] = None


def get_evaluation_service() -> EvaluationService:
    global _evaluation_service
    if _evaluation_service is None:
        _evaluation_service = EvaluationService()
    return _evaluation_service
