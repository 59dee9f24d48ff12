"""Tests for the action log: append-only records, idempotent claims, one-shot transitions."""

from datetime import timedelta

import pytest

from pulseledger.common.base import utc_now
from pulseledger.domains.ledger.action_log_service import ActionLogService, ActionStateError
from pulseledger.domains.ledger.hasher import parse_ledger_payload
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType
from pulseledger.domains.ledger.proof_service import ProofService

from conftest import FakeLedger


class TestRecordAction:

    @pytest.mark.asyncio
    async def test_record_persists_with_hash(self, action_log):
        record = await action_log.record_action(
            ActionType.DATA_COLLECTION, "Collected 3 projects", metadata={"projects": 3},
        )
        stored = await action_log.get(record.id)
        assert stored.action_type == "DATA_COLLECTION"
        assert stored.outcome == "SUCCESS"
        assert stored.content_hash == record.content_hash
        assert stored.ledger_tx_ref is None
        assert stored.metadata_json == {"projects": 3}

    @pytest.mark.asyncio
    async def test_hash_recomputes_after_store_round_trip(self, action_log, ledger):
        record = await action_log.record_action(
            ActionType.VOTE, "Vote", metadata={"nested": {"b": 2, "a": [1, 2]}, "score": 6.8},
        )
        stored = await action_log.get(record.id)
        assert ProofService(action_log=action_log, ledger=ledger).hash_matches(stored)

    @pytest.mark.asyncio
    async def test_summary_truncated_to_500(self, action_log):
        record = await action_log.record_action(ActionType.FORUM_POST, "s" * 800)
        assert len((await action_log.get(record.id)).summary) == 500


class TestClaimAction:

    @pytest.mark.asyncio
    async def test_second_claim_is_noop(self, action_log):
        first = await action_log.claim_action(ActionType.VOTE, "project:1", "Vote for 1")
        second = await action_log.claim_action(ActionType.VOTE, "project:1", "Vote for 1 again")
        assert first is not None
        assert first.outcome == "PENDING"
        assert second is None
        assert len(await action_log.list_actions(action_type=ActionType.VOTE)) == 1

    @pytest.mark.asyncio
    async def test_claims_are_per_type_and_subject(self, action_log):
        assert await action_log.claim_action(ActionType.VOTE, "project:1", "a") is not None
        assert await action_log.claim_action(ActionType.VOTE, "project:2", "b") is not None
        assert await action_log.claim_action(ActionType.FORUM_POST, "project:1", "c") is not None

    @pytest.mark.asyncio
    async def test_success_keeps_claim(self, action_log):
        record = await action_log.claim_action(ActionType.VOTE, "project:1", "a")
        await action_log.set_outcome(record.id, ActionOutcome.SUCCESS, external_ref="1")
        assert await action_log.claim_action(ActionType.VOTE, "project:1", "a") is None

    @pytest.mark.asyncio
    async def test_failure_releases_claim(self, action_log):
        record = await action_log.claim_action(ActionType.VOTE, "project:1", "a")
        await action_log.set_outcome(record.id, ActionOutcome.FAILED, error="boom")
        retry = await action_log.claim_action(ActionType.VOTE, "project:1", "a")
        assert retry is not None
        failed = await action_log.get(record.id)
        assert failed.outcome == "FAILED"
        assert failed.error == "boom"
        assert failed.dedupe_key is None


class TestOneShotTransitions:

    @pytest.mark.asyncio
    async def test_outcome_set_once(self, action_log):
        record = await action_log.claim_action(ActionType.VOTE, "project:1", "a")
        await action_log.set_outcome(record.id, ActionOutcome.SUCCESS)
        with pytest.raises(ActionStateError):
            await action_log.set_outcome(record.id, ActionOutcome.FAILED)
        assert (await action_log.get(record.id)).outcome == "SUCCESS"

    @pytest.mark.asyncio
    async def test_outcome_cannot_return_to_pending(self, action_log):
        record = await action_log.claim_action(ActionType.VOTE, "project:1", "a")
        with pytest.raises(ActionStateError):
            await action_log.set_outcome(record.id, ActionOutcome.PENDING)

    @pytest.mark.asyncio
    async def test_missing_record(self, action_log):
        with pytest.raises(ActionStateError):
            await action_log.set_outcome("does-not-exist", ActionOutcome.SUCCESS)

    @pytest.mark.asyncio
    async def test_ledger_ref_set_once(self, action_log):
        record = await action_log.record_action(ActionType.VOTE, "a")
        await action_log.attach_ledger_ref(record.id, "sigA")
        with pytest.raises(ActionStateError):
            await action_log.attach_ledger_ref(record.id, "sigB")
        assert (await action_log.get(record.id)).ledger_tx_ref == "sigA"


class TestCommitToLedger:

    @pytest.mark.asyncio
    async def test_commit_attaches_signature(self, action_log, ledger):
        record = await action_log.record_action(ActionType.VOTE, "Vote for Alpha", metadata={"p": 1})
        signature = await action_log.commit_to_ledger(record)

        assert signature == "sig0001"
        assert record.ledger_tx_ref == "sig0001"
        assert (await action_log.get(record.id)).ledger_tx_ref == "sig0001"

        payload = parse_ledger_payload(ledger.memos[signature], "pulseledger/v1")
        assert payload.action_type == "VOTE"
        assert payload.hash_prefix == record.content_hash[:16]

    @pytest.mark.asyncio
    async def test_write_failure_leaves_success_without_ref(self, db):
        action_log = ActionLogService(db=db, ledger=FakeLedger(fail=True))
        record = await action_log.record_action(ActionType.VOTE, "Vote")
        assert await action_log.commit_to_ledger(record) is None
        stored = await action_log.get(record.id)
        assert stored.outcome == "SUCCESS"
        assert stored.ledger_tx_ref is None

    @pytest.mark.asyncio
    async def test_writes_disabled_without_wallet(self, db):
        ledger = FakeLedger(can_write=False)
        action_log = ActionLogService(db=db, ledger=ledger)
        record = await action_log.record_action(ActionType.VOTE, "Vote")
        assert await action_log.commit_to_ledger(record) is None
        assert ledger.memos == {}


class TestQueries:

    @pytest.mark.asyncio
    async def test_counts_only_successes(self, action_log):
        since = utc_now() - timedelta(hours=1)
        await action_log.record_action(ActionType.VOTE, "a")
        await action_log.record_action(ActionType.VOTE, "b", outcome=ActionOutcome.FAILED, error="x")
        await action_log.record_action(ActionType.FORUM_POST, "c")

        assert await action_log.count_since(ActionType.VOTE, since) == 1
        assert await action_log.counts_by_type(since) == {"VOTE": 2, "FORUM_POST": 1}
        outcomes = await action_log.outcome_counts(since)
        assert outcomes["SUCCESS"] == 2
        assert outcomes["FAILED"] == 1
        assert outcomes["PENDING"] == 0
        assert outcomes["COMMITTED"] == 0

    @pytest.mark.asyncio
    async def test_count_since_excludes_older(self, action_log):
        await action_log.record_action(ActionType.VOTE, "a")
        assert await action_log.count_since(ActionType.VOTE, utc_now() + timedelta(seconds=1)) == 0

    @pytest.mark.asyncio
    async def test_last_action_at_and_summaries(self, action_log):
        assert await action_log.last_action_at(ActionType.FORUM_POST) is None
        await action_log.record_action(ActionType.FORUM_POST, "First title")
        await action_log.record_action(ActionType.FORUM_POST, "Second title")
        last = await action_log.last_action_at(ActionType.FORUM_POST)
        assert last.tzinfo is not None
        assert abs((utc_now() - last).total_seconds()) < 60
        summaries = await action_log.recent_summaries(ActionType.FORUM_POST, utc_now() - timedelta(hours=1))
        assert set(summaries) == {"First title", "Second title"}

    @pytest.mark.asyncio
    async def test_find_by_hash_prefix(self, action_log):
        record = await action_log.record_action(ActionType.VOTE, "a")
        found = await action_log.find_by_hash_prefix(record.content_hash[:16])
        assert found.id == record.id
        assert await action_log.find_by_hash_prefix("") is None
        assert await action_log.find_by_hash_prefix("zzzzzzzzzzzzzzzz") is None
