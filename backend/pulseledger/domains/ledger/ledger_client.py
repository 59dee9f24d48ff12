"""
Ledger client - Solana JSON-RPC over httpx, memo writes signed with solders

Reads: balance, signature history (with memos), transaction memo lookup,
network status. Writes: a single memo instruction per transaction, reported
as successful only after the cluster confirms it.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from pulseledger.common.config import settings

logger = logging.getLogger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
LAMPORTS_PER_SOL = 1_000_000_000
_CONFIRMED = ("confirmed", "finalized")


class LedgerError(Exception):
    """RPC transport or protocol failure"""
    pass


class LedgerWriteError(LedgerError):
    """A memo write was rejected, failed on chain, or never confirmed"""
    pass


def load_keypair(secret: str) -> Keypair:
    """Accept a base58 secret key or a JSON array of 64 ints (solana-keygen file format)"""
    secret = secret.strip()
    if secret.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(secret)))
    return Keypair.from_base58_string(secret)


class LedgerClient:
    """Thin async JSON-RPC client for the public ledger"""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        network: Optional[str] = None,
        wallet_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        confirm_timeout: Optional[float] = None,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self.network = network or settings.solana_network
        secret = wallet_secret if wallet_secret is not None else settings.wallet_private_key
        self._keypair: Optional[Keypair] = load_keypair(secret) if secret else None
        self._client = http_client
        self._owns_client = http_client is None
        self.confirm_timeout = (
            confirm_timeout if confirm_timeout is not None else settings.ledger_confirm_timeout_seconds
        )
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._request_id = 0

    # ── plumbing ──

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _rpc(self, method: str, params: Optional[list] = None) -> Any:
        self._request_id += 1
        client = await self._get_client()
        try:
            resp = await client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params or []},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"{method} transport error: {e}") from e
        except ValueError as e:
            raise LedgerError(f"{method} returned non-JSON body") from e

        if body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise LedgerError(f"{method} failed: {message}")
        return body.get("result")

    # ── wallet ──

    @property
    def can_write(self) -> bool:
        return self._keypair is not None

    @property
    def wallet_address(self) -> Optional[str]:
        return str(self._keypair.pubkey()) if self._keypair else None

    def _require_wallet(self) -> Keypair:
        if self._keypair is None:
            raise LedgerWriteError("No wallet configured, ledger writes disabled")
        return self._keypair

    def explorer_url(self, signature: str) -> str:
        if self.network in ("mainnet", "mainnet-beta"):
            return f"https://solscan.io/tx/{signature}"
        return f"https://solscan.io/tx/{signature}?cluster={self.network}"

    # ── reads ──

    async def get_balance(self, address: Optional[str] = None) -> float:
        """Balance in SOL"""
        address = address or self.wallet_address
        if not address:
            raise LedgerError("No address given and no wallet configured")
        result = await self._rpc("getBalance", [address, {"commitment": "confirmed"}])
        lamports = result.get("value", 0) if isinstance(result, dict) else int(result or 0)
        return lamports / LAMPORTS_PER_SOL

    async def get_signatures(self, limit: int = 100, address: Optional[str] = None,
                             before: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest-first transaction history; each entry carries the raw memo string if any"""
        address = address or self.wallet_address
        if not address:
            return []
        options: Dict[str, Any] = {"limit": limit, "commitment": "confirmed"}
        if before:
            options["before"] = before
        result = await self._rpc("getSignaturesForAddress", [address, options]) or []
        return [
            {
                "signature": item.get("signature"),
                "slot": item.get("slot"),
                "block_time": item.get("blockTime"),
                "memo": item.get("memo"),
                "err": item.get("err"),
            }
            for item in result
        ]

    async def get_transaction_info(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Memo text and fee payer of a transaction, None if the tx is unknown.

        The fee payer is the first account key; with jsonParsed encoding keys
        come back either as plain strings or as {"pubkey", "signer", ...}.
        """
        result = await self._rpc(
            "getTransaction",
            [signature, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0,
                         "commitment": "confirmed"}],
        )
        if not result:
            return None
        message = result.get("transaction", {}).get("message", {})

        fee_payer = None
        keys = message.get("accountKeys") or []
        if keys:
            first = keys[0]
            if isinstance(first, dict):
                fee_payer = first.get("pubkey") if first.get("signer", True) else None
            else:
                fee_payer = str(first)

        memo = None
        for ix in message.get("instructions", []):
            if ix.get("program") == "spl-memo" or ix.get("programId") == str(MEMO_PROGRAM_ID):
                parsed = ix.get("parsed")
                if isinstance(parsed, str):
                    memo = parsed
                    break
                data = ix.get("data")
                if isinstance(data, str):
                    memo = data
                    break
        return {"memo": memo, "fee_payer": fee_payer}

    async def get_transaction_memo(self, signature: str) -> Optional[str]:
        """Memo text carried by a transaction, None if the tx is unknown or has no memo"""
        info = await self.get_transaction_info(signature)
        return info["memo"] if info else None

    async def get_network_status(self) -> Dict[str, Any]:
        slot, height = await asyncio.gather(self._rpc("getSlot"), self._rpc("getBlockHeight"))
        status = {
            "network": self.network,
            "rpc_url": self.rpc_url,
            "slot": slot,
            "block_height": height,
            "wallet": self.wallet_address,
            "can_write": self.can_write,
        }
        if self.wallet_address:
            status["balance_sol"] = await self.get_balance()
        return status

    # ── writes ──

    def build_memo_transaction(self, payload: bytes, blockhash: str) -> bytes:
        keypair = self._require_wallet()
        instruction = Instruction(
            MEMO_PROGRAM_ID,
            payload,
            [AccountMeta(keypair.pubkey(), True, True)],
        )
        recent = Hash.from_string(blockhash)
        message = Message.new_with_blockhash([instruction], keypair.pubkey(), recent)
        tx = Transaction([keypair], message, recent)
        return bytes(tx)

    async def write_memo(self, payload: bytes) -> str:
        """Submit one memo transaction and wait for confirmation. Returns the signature."""
        self._require_wallet()
        latest = await self._rpc("getLatestBlockhash", [{"commitment": "finalized"}])
        blockhash = latest["value"]["blockhash"] if isinstance(latest, dict) else None
        if not blockhash:
            raise LedgerWriteError("getLatestBlockhash returned no blockhash")

        raw = self.build_memo_transaction(payload, blockhash)
        try:
            signature = await self._rpc(
                "sendTransaction",
                [base64.b64encode(raw).decode("ascii"),
                 {"encoding": "base64", "preflightCommitment": "confirmed"}],
            )
        except LedgerError as e:
            raise LedgerWriteError(str(e)) from e

        await self._await_confirmation(signature)
        logger.info(f"Memo confirmed: {signature} ({len(payload)} bytes)")
        return signature

    async def _await_confirmation(self, signature: str):
        polls = max(1, int(self.confirm_timeout / self.poll_interval))
        for _ in range(polls):
            result = await self._rpc(
                "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
            )
            value = (result or {}).get("value") or [None]
            status = value[0]
            if status:
                if status.get("err"):
                    raise LedgerWriteError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in _CONFIRMED:
                    return
            await self._sleep(self.poll_interval)
        raise LedgerWriteError(
            f"Transaction {signature} not confirmed within {self.confirm_timeout:.0f}s"
        )

    async def request_airdrop(self, sol: float = 1.0) -> str:
        """Devnet/testnet faucet"""
        if self.network in ("mainnet", "mainnet-beta"):
            raise LedgerError("Airdrop is not available on mainnet")
        keypair = self._require_wallet()
        signature = await self._rpc(
            "requestAirdrop", [str(keypair.pubkey()), int(sol * LAMPORTS_PER_SOL)]
        )
        await self._await_confirmation(signature)
        logger.info(f"Airdrop of {sol} SOL confirmed: {signature}")
        return signature


_ledger_client: Optional[LedgerClient] = None


def get_ledger_client() -> LedgerClient:
    global _ledger_client
    if _ledger_client is None:
        _ledger_client = LedgerClient()
    return _ledger_client
