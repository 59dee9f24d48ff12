"""Ledger domain - Pydantic response models"""

from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class Proof(BaseModel):
    """
    Reconstructed view of an action. verified=True only when a matching
    ledger transaction was found; a local record without one is
    "executed but unverifiable".
    """

    ledger_tx_signature: Optional[str] = None
    content_hash_prefix: str
    declared_type: str
    declared_summary: str
    declared_at: Optional[datetime] = None
    record_id: Optional[str] = None
    full_reasoning: Optional[str] = None
    outcome: Optional[str] = None
    metadata: Dict[str, Any] = {}
    explorer_url: Optional[str] = None
    verified: bool = False


class ProofStats(BaseModel):
    total_records: int = 0
    committed_records: int = 0
    by_type: Dict[str, int] = {}
    by_day: Dict[str, int] = {}
