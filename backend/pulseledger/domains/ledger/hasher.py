"""
Action hashing and on-ledger payload encoding.

The content hash commits to the normalised {type, summary, timestamp, metadata}
tuple of an action record. Only a short prefix of it goes on the ledger; the
full reasoning stays in the local store and is joined back by prefix.
"""

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pulseledger.common.base import as_utc

SUMMARY_MAX_CHARS = 500

_MEMO_LENGTH_PREFIX = re.compile(r"^\[\d+\]\s*")
_HEX_PREFIX = re.compile(r"[0-9a-f]+")


class PayloadTooLargeError(ValueError):
    """The fixed part of a ledger payload does not fit under the limit."""
    pass


def normalize_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, so the hash survives a store round trip"""
    return as_utc(value).isoformat(timespec="milliseconds")


def truncate_summary(summary: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    summary = summary or ""
    return summary if len(summary) <= limit else summary[:limit]


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_content_hash(
    action_type: str,
    summary: str,
    timestamp: datetime,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """SHA-256 hex digest over the canonical action tuple"""
    body = canonical_json({
        "type": action_type,
        "summary": summary,
        "timestamp": normalize_timestamp(timestamp),
        "metadata": metadata or {},
    })
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def hash_prefix(content_hash: str, length: int = 16) -> str:
    return content_hash[:length]


def is_hash_prefix(value: Any, length: int = 16) -> bool:
    """Exactly `length` lowercase hex characters, as build_ledger_payload writes"""
    return isinstance(value, str) and len(value) == length and _HEX_PREFIX.fullmatch(value) is not None


@dataclass(frozen=True)
class LedgerPayload:
    """Decoded on-ledger memo"""

    namespace: str
    action_type: str
    summary: str
    hash_prefix: str
    timestamp_ms: int

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc)


def _encode(namespace: str, action_type: str, summary: str, prefix: str, ts_ms: int) -> bytes:
    return json.dumps(
        {"ns": namespace, "t": action_type, "s": summary, "h": prefix, "ts": ts_ms},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def build_ledger_payload(
    namespace: str,
    action_type: str,
    summary: str,
    content_hash: str,
    timestamp: datetime,
    limit: int = 900,
    prefix_length: int = 16,
) -> bytes:
    """
    Compact memo payload that always fits under `limit` bytes.

    The summary is shortened until the payload fits; the hash prefix is
    never cut. Raises PayloadTooLargeError if even an empty summary does
    not fit.
    """
    prefix = hash_prefix(content_hash, prefix_length)
    ts_ms = int(as_utc(timestamp).timestamp() * 1000)

    encoded = _encode(namespace, action_type, summary, prefix, ts_ms)
    if len(encoded) <= limit:
        return encoded

    empty = _encode(namespace, action_type, "", prefix, ts_ms)
    if len(empty) > limit:
        raise PayloadTooLargeError(
            f"Ledger payload for {action_type} needs {len(empty)} bytes without summary, limit {limit}"
        )

    # binary search on character count; escaping makes byte size non-linear
    lo, hi = 0, len(summary)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if len(_encode(namespace, action_type, summary[:mid], prefix, ts_ms)) <= limit:
            lo = mid
        else:
            hi = mid - 1
    return _encode(namespace, action_type, summary[:lo], prefix, ts_ms)


def parse_ledger_payload(
    raw: Optional[str],
    namespace: str,
    prefix_length: int = 16,
) -> Optional[LedgerPayload]:
    """
    Parse a memo string written by build_ledger_payload.

    Returns None for anything that is not ours: other namespaces, free text,
    truncated JSON, or a hash prefix that is not exactly `prefix_length`
    lowercase hex characters. RPC history listings prepend "[<len>] " to
    memos; that is stripped first.
    """
    if not raw:
        return None
    text = _MEMO_LENGTH_PREFIX.sub("", raw.strip(), count=1)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict) or data.get("ns") != namespace:
        return None

    prefix = data.get("h")
    action_type = data.get("t")
    if not is_hash_prefix(prefix, prefix_length) or not isinstance(action_type, str):
        return None
    try:
        ts_ms = int(data.get("ts", 0))
    except (TypeError, ValueError):
        ts_ms = 0

    return LedgerPayload(
        namespace=namespace,
        action_type=action_type,
        summary=str(data.get("s") or ""),
        hash_prefix=prefix,
        timestamp_ms=ts_ms,
    )
