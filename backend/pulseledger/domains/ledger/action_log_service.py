"""Action log service - append-only action records + best-effort ledger commitment"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Set

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from pulseledger.common.base import utc_now, as_utc
from pulseledger.common.config import settings
from pulseledger.common.database import DatabaseManager, db_manager
from pulseledger.domains.ledger.hasher import (
    build_ledger_payload,
    compute_content_hash,
    is_hash_prefix,
    truncate_summary,
)
from pulseledger.domains.ledger.ledger_client import LedgerClient, get_ledger_client
from pulseledger.domains.ledger.models.action_record import ActionRecord, ActionOutcome

logger = logging.getLogger(__name__)


class ActionStateError(ValueError):
    """Attempted a second transition of a one-shot field (outcome / ledger_tx_ref)"""
    pass


def _value(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


class ActionLogService:
    """
    Owns the action_records table.

    Records are never deleted and never edited, except outcome
    (PENDING -> SUCCESS|FAILED) and ledger_tx_ref (NULL -> signature), each at
    most once. Both transitions are conditional UPDATEs so concurrent callers
    cannot both win.
    """

    def __init__(self, db: Optional[DatabaseManager] = None, ledger: Optional[LedgerClient] = None):
        self.db = db or db_manager
        self._ledger = ledger

    @property
    def ledger(self) -> LedgerClient:
        if self._ledger is None:
            self._ledger = get_ledger_client()
        return self._ledger

    # ── create ──

    def _build(
        self,
        action_type,
        summary: str,
        metadata: Optional[Dict[str, Any]],
        reasoning: Optional[str],
        confidence: Optional[float],
        subject_id: Optional[str],
        outcome,
        error: Optional[str],
        external_ref: Optional[str],
        dedupe_key: Optional[str],
    ) -> ActionRecord:
        type_value = _value(action_type)
        summary = truncate_summary(summary)
        metadata = dict(metadata or {})
        created_at = utc_now()
        return ActionRecord(
            action_type=type_value,
            subject_id=subject_id,
            summary=summary,
            metadata_json=metadata,
            reasoning=reasoning,
            confidence=confidence,
            content_hash=compute_content_hash(type_value, summary, created_at, metadata),
            outcome=_value(outcome),
            error=error,
            external_ref=external_ref,
            dedupe_key=dedupe_key,
            created_at=created_at,
            updated_at=created_at,
        )

    async def record_action(
        self,
        action_type,
        summary: str,
        metadata: Optional[Dict[str, Any]] = None,
        reasoning: Optional[str] = None,
        confidence: Optional[float] = None,
        subject_id: Optional[str] = None,
        outcome=ActionOutcome.SUCCESS,
        error: Optional[str] = None,
        external_ref: Optional[str] = None,
    ) -> ActionRecord:
        """Append a record. The content hash is computed here, once."""
        record = self._build(action_type, summary, metadata, reasoning, confidence,
                             subject_id, outcome, error, external_ref, None)
        async with self.db.get_session() as session:
            session.add(record)
        logger.info(f"Action recorded: {record.action_type} [{record.outcome}] {record.content_hash[:16]}")
        return record

    async def claim_action(
        self,
        action_type,
        subject_id: str,
        summary: str,
        metadata: Optional[Dict[str, Any]] = None,
        reasoning: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> Optional[ActionRecord]:
        """
        Insert a PENDING record keyed by "<TYPE>:<subject_id>".

        Returns None when a live record for the same key already exists, which
        turns a retried or overlapping iteration into a no-op. The key is
        released when the record fails, so a failed action can be attempted again.
        """
        dedupe_key = f"{_value(action_type)}:{subject_id}"
        record = self._build(action_type, summary, metadata, reasoning, confidence,
                             subject_id, ActionOutcome.PENDING, None, None, dedupe_key)
        try:
            async with self.db.get_session() as session:
                session.add(record)
        except IntegrityError:
            logger.info(f"Action already claimed: {dedupe_key}")
            return None
        logger.info(f"Action claimed: {dedupe_key} {record.content_hash[:16]}")
        return record

    # ── one-shot transitions ──

    async def set_outcome(
        self,
        record_id: str,
        outcome,
        error: Optional[str] = None,
        external_ref: Optional[str] = None,
    ):
        outcome = _value(outcome)
        if outcome == ActionOutcome.PENDING.value:
            raise ActionStateError("Outcome can only move away from PENDING")

        values: Dict[str, Any] = {"outcome": outcome, "updated_at": utc_now()}
        if error is not None:
            values["error"] = error[:2000]
        if external_ref is not None:
            values["external_ref"] = external_ref
        if outcome == ActionOutcome.FAILED.value:
            values["dedupe_key"] = None

        async with self.db.get_session() as session:
            result = await session.execute(
                update(ActionRecord)
                .where(ActionRecord.id == record_id, ActionRecord.outcome == ActionOutcome.PENDING.value)
                .values(**values)
            )
            if result.rowcount == 0:
                raise ActionStateError(f"Action {record_id} outcome already set or record missing")
        logger.info(f"Action {record_id} outcome -> {outcome}")

    async def attach_ledger_ref(self, record_id: str, signature: str):
        async with self.db.get_session() as session:
            result = await session.execute(
                update(ActionRecord)
                .where(ActionRecord.id == record_id, ActionRecord.ledger_tx_ref.is_(None))
                .values(ledger_tx_ref=signature, updated_at=utc_now())
            )
            if result.rowcount == 0:
                raise ActionStateError(f"Action {record_id} already has a ledger reference or is missing")

    async def commit_to_ledger(self, record: ActionRecord) -> Optional[str]:
        """
        Write the record's commitment to the ledger and attach the signature.

        Best-effort: any failure is logged and returns None, leaving the
        record's outcome untouched and ledger_tx_ref NULL.
        """
        if not self.ledger.can_write:
            logger.debug(f"Ledger writes disabled, {record.action_type} {record.id} stays local")
            return None
        try:
            payload = build_ledger_payload(
                namespace=settings.ledger_namespace,
                action_type=record.action_type,
                summary=record.summary,
                content_hash=record.content_hash,
                timestamp=record.created_at,
                limit=settings.ledger_payload_limit,
                prefix_length=settings.ledger_hash_prefix_length,
            )
            signature = await self.ledger.write_memo(payload)
            await self.attach_ledger_ref(record.id, signature)
        except Exception as e:
            logger.warning(f"Ledger commit failed for {record.action_type} {record.id}: {e}", exc_info=True)
            return None

        record.ledger_tx_ref = signature
        logger.info(f"Action {record.id} committed to ledger: {self.ledger.explorer_url(signature)}")
        return signature

    # ── queries ──

    async def get(self, record_id: str) -> Optional[ActionRecord]:
        async with self.db.get_session() as session:
            return await session.get(ActionRecord, record_id)

    async def find_by_hash_prefix(self, prefix: str) -> Optional[ActionRecord]:
        """Exact prefix match; anything but a well-formed hex prefix finds nothing"""
        if not is_hash_prefix(prefix, settings.ledger_hash_prefix_length):
            return None
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ActionRecord)
                .where(func.substr(ActionRecord.content_hash, 1, len(prefix)) == prefix)
                .order_by(ActionRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_actions(
        self,
        limit: int = 50,
        action_type: Optional[str] = None,
        since: Optional[datetime] = None,
        outcome: Optional[str] = None,
    ) -> List[ActionRecord]:
        query = select(ActionRecord)
        if action_type:
            query = query.where(ActionRecord.action_type == _value(action_type))
        if since:
            query = query.where(ActionRecord.created_at >= since)
        if outcome:
            query = query.where(ActionRecord.outcome == _value(outcome))
        query = query.order_by(ActionRecord.created_at.desc()).limit(limit)
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def recent_summaries(self, action_type, since: datetime, outcome=ActionOutcome.SUCCESS) -> List[str]:
        records = await self.list_actions(limit=500, action_type=action_type, since=since, outcome=outcome)
        return [r.summary for r in records]

    async def last_action_at(self, action_type, outcome=ActionOutcome.SUCCESS) -> Optional[datetime]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.max(ActionRecord.created_at))
                .where(ActionRecord.action_type == _value(action_type),
                       ActionRecord.outcome == _value(outcome))
            )
            return as_utc(result.scalar_one_or_none())

    async def count_since(self, action_type, since: datetime, outcome=ActionOutcome.SUCCESS) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(ActionRecord.id))
                .where(ActionRecord.action_type == _value(action_type),
                       ActionRecord.outcome == _value(outcome),
                       ActionRecord.created_at >= since)
            )
            return int(result.scalar_one() or 0)

    async def claimed_subject_ids(self, action_type, outcome=None) -> Set[str]:
        """Subjects holding a live claim for action_type (pending or succeeded, never released)"""
        query = select(ActionRecord.subject_id).where(
            ActionRecord.action_type == _value(action_type),
            ActionRecord.dedupe_key.is_not(None),
        )
        if outcome:
            query = query.where(ActionRecord.outcome == _value(outcome))
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return {row[0] for row in result.all() if row[0]}

    async def counts_by_type(self, since: Optional[datetime] = None) -> Dict[str, int]:
        query = select(ActionRecord.action_type, func.count(ActionRecord.id)).group_by(ActionRecord.action_type)
        if since:
            query = query.where(ActionRecord.created_at >= since)
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return {row[0]: int(row[1]) for row in result.all()}

    async def outcome_counts(self, since: Optional[datetime] = None) -> Dict[str, int]:
        """{"SUCCESS": n, "FAILED": n, "PENDING": n, "COMMITTED": n}"""
        query = select(ActionRecord.outcome, func.count(ActionRecord.id)).group_by(ActionRecord.outcome)
        committed = select(func.count(ActionRecord.id)).where(ActionRecord.ledger_tx_ref.is_not(None))
        if since:
            query = query.where(ActionRecord.created_at >= since)
            committed = committed.where(ActionRecord.created_at >= since)
        async with self.db.get_session() as session:
            counts = {row[0]: int(row[1]) for row in (await session.execute(query)).all()}
            counts["COMMITTED"] = int((await session.execute(committed)).scalar_one() or 0)
        for key in ("SUCCESS", "FAILED", "PENDING"):
            counts.setdefault(key, 0)
        return counts


_action_log_service: Optional[ActionLogService] = None


def get_action_log_service() -> ActionLogService:
    global _action_log_service
    if _action_log_service is None:
        _action_log_service = ActionLogService()
    return _action_log_service
