"""Shared fixtures: in-memory store and in-process fakes for external collaborators."""

import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from pulseledger.common.database import DatabaseManager
from pulseledger.domains.ecosystem.schemas import ForumComment, ForumPost, LeaderboardEntry, Project
from pulseledger.domains.ledger.action_log_service import ActionLogService
from pulseledger.domains.ledger.ledger_client import LedgerWriteError
from pulseledger.domains.reasoning.client import ReasoningUnavailableError, extract_json
from pulseledger.domains.strategy.schemas import StrategyParameters
from pulseledger.domains.strategy.strategy_manager import StrategyManager


# ── Fakes ──

class FakeReasoning:
    """Replays canned responses; a dict response is served as JSON text."""

    def __init__(self, responses=None, available: bool = True, error: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.available = available
        self.error = error
        self.prompts: List[str] = []

    async def complete(self, prompt, system=None, max_tokens=None, temperature=0.7) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise ReasoningUnavailableError("no canned response left")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return json.dumps(response) if isinstance(response, dict) else response

    async def complete_json(self, prompt, system=None, max_tokens=None):
        return extract_json(await self.complete(prompt, system=system, max_tokens=max_tokens))


class FakeLedger:
    """Keeps written memos in memory, newest first, like getSignaturesForAddress."""

    WALLET = "PuLse1edgerWa11et111111111111111111111111111"

    def __init__(self, can_write: bool = True, fail: bool = False, network: str = "devnet"):
        self.can_write = can_write
        self.fail = fail
        self.network = network
        self.wallet_address = self.WALLET
        self.memos: Dict[str, Optional[str]] = {}
        self.errors: Dict[str, Any] = {}
        self.payers: Dict[str, str] = {}
        self.order: List[str] = []

    async def write_memo(self, payload: bytes) -> str:
        if self.fail:
            raise LedgerWriteError("simulated confirmation timeout")
        signature = f"sig{len(self.order) + 1:04d}"
        self.memos[signature] = payload.decode("utf-8")
        self.payers[signature] = self.wallet_address
        self.order.insert(0, signature)
        return signature

    def add_foreign(self, signature: str, memo: Optional[str], err=None, payer: Optional[str] = None):
        """A transaction that mentions our wallet; paid by us unless `payer` says otherwise"""
        self.memos[signature] = memo
        self.payers[signature] = payer or self.wallet_address
        if err:
            self.errors[signature] = err
        self.order.insert(0, signature)

    async def get_signatures(self, limit: int = 100, address=None, before=None):
        return [
            {"signature": s, "slot": 1, "block_time": None, "memo": f"[{len(self.memos[s] or '')}] {self.memos[s]}"
             if self.memos[s] else None, "err": self.errors.get(s)}
            for s in self.order[:limit]
        ]

    async def get_transaction_info(self, signature: str) -> Optional[Dict[str, Any]]:
        if signature not in self.memos:
            return None
        return {"memo": self.memos[signature], "fee_payer": self.payers.get(signature)}

    async def get_transaction_memo(self, signature: str) -> Optional[str]:
        return self.memos.get(signature)

    def explorer_url(self, signature: str) -> str:
        return f"https://solscan.io/tx/{signature}?cluster={self.network}"


class FakeEcosystem:

    def __init__(self, projects=None, posts=None, leaderboard=None):
        self.projects: List[Project] = list(projects or [])
        self.posts: List[ForumPost] = list(posts or [])
        self.leaderboard: List[LeaderboardEntry] = list(leaderboard or [])
        self.created_posts: List[Dict[str, Any]] = []
        self.votes: List[Any] = []
        self.post_error: Optional[Exception] = None
        self.vote_errors: Dict[Any, Exception] = {}
        self.read_error: Optional[Exception] = None
        self.my_posts: List[ForumPost] = []
        self.comments: Dict[Any, List[ForumComment]] = {}
        self.created_comments: List[Dict[str, Any]] = []
        self.comment_errors: List[Exception] = []

    async def get_all_projects(self, page_size: int = 100, max_pages: int = 10):
        if self.read_error:
            raise self.read_error
        return list(self.projects)

    async def get_forum_posts(self, sort: str = "new", limit: int = 50):
        return list(self.posts)[:limit]

    async def get_leaderboard(self, limit: int = 100):
        return list(self.leaderboard)[:limit]

    async def get_my_posts(self, sort: str = "new", limit: int = 5):
        return list(self.my_posts)[:limit]

    async def get_comments(self, post_id, sort: str = "new", limit: int = 10):
        return list(self.comments.get(post_id, []))[:limit]

    async def create_comment(self, post_id, body):
        if self.comment_errors:
            raise self.comment_errors.pop(0)
        comment = {"id": 5000 + len(self.created_comments), "post_id": post_id, "body": body}
        self.created_comments.append(comment)
        return comment

    async def create_post(self, title, body, tags=None):
        if self.post_error:
            raise self.post_error
        post = {"id": 1000 + len(self.created_posts), "title": title, "body": body, "tags": tags or []}
        self.created_posts.append(post)
        return post

    async def vote_for_project(self, project_id, value: int = 1):
        error = self.vote_errors.pop(project_id, None)
        if error:
            raise error
        self.votes.append(project_id)
        return {"success": True}


def make_project(project_id, name=None, demo=True, repo=True, video=True, description_len=600, votes=0):
    return Project(
        id=project_id,
        name=name or f"Project {project_id}",
        description="x" * description_len if description_len else None,
        demoUrl=f"https://demo.example/{project_id}" if demo else None,
        repoLink=f"https://github.com/example/{project_id}" if repo else None,
        presentationLink=f"https://video.example/{project_id}" if video else None,
        votes=votes,
    )


def make_post(post_id, title, tags=("defi",), agent_name="someone", upvotes=0, comments=0, body="",
              created_at=None):
    return ForumPost(id=post_id, title=title, body=body, tags=list(tags), agent_name=agent_name,
                     upvotes=upvotes, comment_count=comments, created_at=created_at)


def make_comment(comment_id, body, agent_name="visitor", post_id=None, deleted=False):
    return ForumComment(id=comment_id, post_id=post_id, body=body, agent_name=agent_name, is_deleted=deleted)


# ── Fixtures ──

@pytest_asyncio.fixture
async def db():
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:", echo=False)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def action_log(db, ledger):
    return ActionLogService(db=db, ledger=ledger)


@pytest.fixture
def strategy_manager(db):
    return StrategyManager(db=db, defaults=StrategyParameters())
