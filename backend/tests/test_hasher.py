"""Tests for action hashing and the on-ledger payload codec."""

import json
from datetime import datetime, timezone

import pytest

from pulseledger.domains.ledger.hasher import (
    PayloadTooLargeError,
    build_ledger_payload,
    compute_content_hash,
    hash_prefix,
    is_hash_prefix,
    normalize_timestamp,
    parse_ledger_payload,
    truncate_summary,
)

NS = "pulseledger/v1"
TS = datetime(2026, 2, 10, 12, 30, 45, 123456, tzinfo=timezone.utc)
HASH = compute_content_hash("VOTE", "Vote for Alpha", TS, {"project_id": "7"})


# ════════════════════════════════════════════════════════════════
# content hash
# ════════════════════════════════════════════════════════════════

class TestContentHash:

    def test_sha256_hex(self):
        assert len(HASH) == 64
        int(HASH, 16)

    def test_metadata_key_order_irrelevant(self):
        a = compute_content_hash("VOTE", "s", TS, {"a": 1, "b": [1, 2]})
        b = compute_content_hash("VOTE", "s", TS, {"b": [1, 2], "a": 1})
        assert a == b

    @pytest.mark.parametrize("field", ["type", "summary", "timestamp", "metadata"])
    def test_every_field_is_committed(self, field):
        args = {"action_type": "VOTE", "summary": "s", "timestamp": TS, "metadata": {"k": 1}}
        changed = dict(args)
        changed.update({
            "type": {"action_type": "FORUM_POST"},
            "summary": {"summary": "t"},
            "timestamp": {"timestamp": TS.replace(second=46)},
            "metadata": {"metadata": {"k": 2}},
        }[field])
        assert compute_content_hash(**args) != compute_content_hash(**changed)

    def test_naive_timestamp_treated_as_utc(self):
        naive = TS.replace(tzinfo=None)
        assert compute_content_hash("VOTE", "s", naive) == compute_content_hash("VOTE", "s", TS)

    def test_sub_millisecond_precision_dropped(self):
        assert normalize_timestamp(TS) == "2026-02-10T12:30:45.123+00:00"
        assert compute_content_hash("VOTE", "s", TS) == compute_content_hash(
            "VOTE", "s", TS.replace(microsecond=123999)
        )

    def test_prefix(self):
        assert hash_prefix(HASH) == HASH[:16]
        assert hash_prefix(HASH, 8) == HASH[:8]

    def test_truncate_summary(self):
        assert truncate_summary("a" * 600) == "a" * 500
        assert truncate_summary("short") == "short"
        assert truncate_summary(None) == ""


# ════════════════════════════════════════════════════════════════
# payload build / parse
# ════════════════════════════════════════════════════════════════

class TestLedgerPayload:

    def test_small_payload_carries_everything(self):
        raw = build_ledger_payload(NS, "VOTE", "Vote for Alpha", HASH, TS)
        data = json.loads(raw)
        assert data == {"ns": NS, "t": "VOTE", "s": "Vote for Alpha", "h": HASH[:16],
                        "ts": int(TS.timestamp() * 1000)}

    @pytest.mark.parametrize("summary", ["a" * 5000, "é" * 2000, '"\\' * 1500, "🚀" * 900])
    def test_long_summary_truncated_to_fit(self, summary):
        raw = build_ledger_payload(NS, "FORUM_POST", summary, HASH, TS, limit=900)
        assert len(raw) <= 900
        parsed = parse_ledger_payload(raw.decode("utf-8"), NS)
        assert parsed.hash_prefix == HASH[:16]
        assert summary.startswith(parsed.summary)
        assert len(parsed.summary) < len(summary)

    def test_truncation_is_maximal(self):
        summary = "b" * 2000
        raw = build_ledger_payload(NS, "VOTE", summary, HASH, TS, limit=300)
        parsed = parse_ledger_payload(raw.decode(), NS)
        one_more = build_ledger_payload(NS, "VOTE", summary[:len(parsed.summary) + 1], HASH, TS, limit=10_000)
        assert len(raw) <= 300
        assert len(one_more) > 300

    def test_hash_prefix_never_cut(self):
        raw = build_ledger_payload(NS, "VOTE", "z" * 1000, HASH, TS, limit=120, prefix_length=16)
        assert json.loads(raw)["h"] == HASH[:16]

    def test_raises_when_fixed_part_does_not_fit(self):
        with pytest.raises(PayloadTooLargeError):
            build_ledger_payload(NS, "VOTE", "anything", HASH, TS, limit=40)

    def test_payload_too_large_is_value_error(self):
        assert issubclass(PayloadTooLargeError, ValueError)


class TestParseLedgerPayload:

    def test_round_trip(self):
        raw = build_ledger_payload(NS, "DAILY_REPORT", "Report", HASH, TS).decode()
        parsed = parse_ledger_payload(raw, NS)
        assert parsed.action_type == "DAILY_REPORT"
        assert parsed.summary == "Report"
        assert parsed.hash_prefix == HASH[:16]
        assert parsed.timestamp == datetime(2026, 2, 10, 12, 30, 45, 123000, tzinfo=timezone.utc)

    def test_strips_rpc_length_prefix(self):
        raw = build_ledger_payload(NS, "VOTE", "v", HASH, TS).decode()
        assert parse_ledger_payload(f"[{len(raw)}] {raw}", NS).action_type == "VOTE"

    @pytest.mark.parametrize("memo", [
        None,
        "",
        "gm",
        "[12] hello world!",
        '{"ns": "someone-else/v1", "t": "VOTE", "h": "abc"}',
        '{"ns": "pulseledger/v1", "t": "VOTE"}',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": 42}',
        '{"ns": "pulseledger/v1", "t": "VO',
        '["pulseledger/v1"]',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": "%"}',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": "________________"}',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": "0"}',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": "0123456789ABCDEF"}',
        '{"ns": "pulseledger/v1", "t": "VOTE", "h": "0123456789abcdef0"}',
    ])
    def test_foreign_or_malformed_memo_ignored(self, memo):
        assert parse_ledger_payload(memo, NS) is None

    def test_bad_timestamp_defaults_to_zero(self):
        parsed = parse_ledger_payload('{"ns": "pulseledger/v1", "t": "VOTE", "h": "0123456789abcdef", "ts": "soon"}', NS)
        assert parsed.timestamp_ms == 0

    def test_prefix_length_is_configurable(self):
        raw = build_ledger_payload(NS, "VOTE", "v", HASH, TS, prefix_length=8).decode()
        assert parse_ledger_payload(raw, NS) is None
        assert parse_ledger_payload(raw, NS, prefix_length=8).hash_prefix == HASH[:8]


class TestIsHashPrefix:

    def test_accepts_lowercase_hex_of_exact_length(self):
        assert is_hash_prefix(HASH[:16]) is True
        assert is_hash_prefix(HASH[:8], length=8) is True

    @pytest.mark.parametrize("value", [None, 42, "", "%", "_" * 16, HASH[:16].upper(), HASH[:15], HASH[:17]])
    def test_rejects_everything_else(self, value):
        assert is_hash_prefix(value) is False
