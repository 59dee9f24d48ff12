"""
Proof service - rebuild verifiable proofs from ledger history

A proof joins an on-ledger memo (type, truncated summary, hash prefix) with
the local action record carrying the full reasoning. verified is True only
when the ledger side was actually found in a transaction our wallet paid for.
"""

import logging
from collections import Counter
from typing import Optional, List

from pulseledger.common.base import as_utc
from pulseledger.common.config import settings
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.hasher import LedgerPayload, compute_content_hash, parse_ledger_payload
from pulseledger.domains.ledger.ledger_client import LedgerClient, LedgerError, get_ledger_client
from pulseledger.domains.ledger.models.action_record import ActionRecord
from pulseledger.domains.ledger.schemas import Proof, ProofStats

logger = logging.getLogger(__name__)


class ProofService:

    def __init__(self, action_log: Optional[ActionLogService] = None, ledger: Optional[LedgerClient] = None):
        self.action_log = action_log or get_action_log_service()
        self.ledger = ledger or get_ledger_client()

    @property
    def prefix_length(self) -> int:
        return settings.ledger_hash_prefix_length

    def _parse(self, memo: Optional[str]) -> Optional[LedgerPayload]:
        return parse_ledger_payload(memo, settings.ledger_namespace, self.prefix_length)

    async def _signed_by_us(self, signature: str) -> Optional[LedgerPayload]:
        """
        Payload of a transaction our wallet paid for, None otherwise.

        Anyone can mention our address in a memo transaction; only the fee
        payer proves who wrote it.
        """
        wallet = self.ledger.wallet_address
        if not wallet:
            return None
        info = await self.ledger.get_transaction_info(signature)
        if not info or info.get("fee_payer") != wallet:
            logger.warning(f"Ledger tx {signature} was not paid by {wallet}, ignoring its memo")
            return None
        return self._parse(info.get("memo"))

    async def _scan(self, limit: int) -> List[tuple]:
        """(signature, payload) pairs for our namespace and wallet, newest first"""
        entries = []
        for item in await self.ledger.get_signatures(limit=limit):
            if item.get("err") or self._parse(item.get("memo")) is None:
                continue
            try:
                payload = await self._signed_by_us(item["signature"])
            except LedgerError as e:
                logger.warning(f"Could not load ledger tx {item['signature']}: {e}")
                continue
            if payload is not None:
                entries.append((item["signature"], payload))
        return entries

    def _proof(self, signature: Optional[str], payload: Optional[LedgerPayload],
               record: Optional[ActionRecord]) -> Proof:
        if payload is not None:
            prefix, declared_type, declared_summary = payload.hash_prefix, payload.action_type, payload.summary
            declared_at = payload.timestamp
        else:
            prefix = record.content_hash[:self.prefix_length]
            declared_type, declared_summary = record.action_type, record.summary
            declared_at = as_utc(record.created_at)

        return Proof(
            ledger_tx_signature=signature,
            content_hash_prefix=prefix,
            declared_type=declared_type,
            declared_summary=declared_summary,
            declared_at=declared_at,
            record_id=record.id if record else None,
            full_reasoning=record.reasoning if record else None,
            outcome=record.outcome if record else None,
            metadata=(record.metadata_json or {}) if record else {},
            explorer_url=self.ledger.explorer_url(signature) if signature else None,
            verified=bool(signature and payload is not None),
        )

    async def reconstruct(self, limit: Optional[int] = None, action_type: Optional[str] = None) -> List[Proof]:
        """Walk the wallet history and join every memo of ours back to its local record"""
        limit = limit or settings.ledger_history_limit
        proofs = []
        for signature, payload in await self._scan(limit):
            if action_type and payload.action_type != action_type:
                continue
            record = await self.action_log.find_by_hash_prefix(payload.hash_prefix)
            if record is None:
                logger.warning(f"Ledger memo {signature} has no local record for prefix {payload.hash_prefix}")
            proofs.append(self._proof(signature, payload, record))
        return proofs

    async def verify(self, record_id: str) -> Optional[Proof]:
        """
        Proof for one local record.

        With a stored signature, the memo is fetched from that transaction and
        its fee payer and hash prefix compared. Without one, recent history is
        scanned for the prefix. Not found on the ledger -> verified=False.
        """
        record = await self.action_log.get(record_id)
        if record is None:
            return None

        prefix = record.content_hash[:self.prefix_length]
        try:
            if record.ledger_tx_ref:
                payload = await self._signed_by_us(record.ledger_tx_ref)
                if payload is not None and payload.hash_prefix == prefix:
                    return self._proof(record.ledger_tx_ref, payload, record)
                logger.warning(f"Ledger tx {record.ledger_tx_ref} does not carry prefix {prefix}")
            else:
                for signature, payload in await self._scan(settings.ledger_history_limit):
                    if payload.hash_prefix == prefix:
                        return self._proof(signature, payload, record)
        except LedgerError as e:
            logger.warning(f"Ledger lookup failed while verifying {record_id}: {e}")

        return self._proof(None, None, record)

    def hash_matches(self, record: ActionRecord) -> bool:
        """Recompute the content hash from the stored fields"""
        recomputed = compute_content_hash(
            record.action_type, record.summary, record.created_at, record.metadata_json or {}
        )
        return recomputed == record.content_hash

    async def stats(self) -> ProofStats:
        records = await self.action_log.list_actions(limit=10000)
        by_type = Counter(r.action_type for r in records)
        by_day = Counter(as_utc(r.created_at).date().isoformat() for r in records)
        return ProofStats(
            total_records=len(records),
            committed_records=sum(1 for r in records if r.ledger_tx_ref),
            by_type=dict(by_type),
            by_day=dict(sorted(by_day.items())),
        )


_proof_service: Optional[ProofService] = None


def get_proof_service() -> ProofService:
    global _proof_service
    if _proof_service is None:
        _proof_service = ProofService()
    return _proof_service
