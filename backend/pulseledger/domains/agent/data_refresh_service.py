"""Data refresh - pull projects, forum posts and leaderboard in one pass"""

import asyncio
import logging
from typing import Any, Dict, Optional

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.ecosystem.client import EcosystemClient, get_ecosystem_client
from pulseledger.domains.ecosystem.schemas import EcosystemSnapshot
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionType

logger = logging.getLogger(__name__)


def is_own_author(agent_name: Optional[str], agent_id: Any = None) -> bool:
    """Authored by this agent, by configured name (case-insensitive) or id"""
    if agent_name and agent_name.lower() == settings.agent_name.lower():
        return True
    return bool(settings.agent_id) and agent_id is not None and str(agent_id) == str(settings.agent_id)


class DataRefreshService:
    """
    Holds the latest EcosystemSnapshot in memory. A failed fetch raises and
    leaves the previous snapshot in place; the loop retries on its next firing.
    """

    def __init__(
        self,
        ecosystem: Optional[EcosystemClient] = None,
        action_log: Optional[ActionLogService] = None,
    ):
        self.ecosystem = ecosystem or get_ecosystem_client()
        self.action_log = action_log or get_action_log_service()
        self.latest: Optional[EcosystemSnapshot] = None

    async def collect(self) -> EcosystemSnapshot:
        projects, posts, leaderboard = await asyncio.gather(
            self.ecosystem.get_all_projects(),
            self.ecosystem.get_forum_posts(sort="new", limit=50),
            self.ecosystem.get_leaderboard(),
        )
        snapshot = EcosystemSnapshot(
            projects=projects,
            posts=posts,
            leaderboard=leaderboard,
            fetched_at=utc_now().isoformat(),
        )
        self.latest = snapshot

        logger.info(
            f"Data collected: {len(projects)} projects, {len(posts)} posts, "
            f"{len(leaderboard)} leaderboard entries"
        )
        # too frequent to be worth a ledger write
        await self.action_log.record_action(
            ActionType.DATA_COLLECTION,
            summary=f"Collected {len(projects)} projects, {len(posts)} posts",
            metadata={
                "projects": len(projects),
                "posts": len(posts),
                "leaderboard": len(leaderboard),
            },
        )
        return snapshot

    async def ensure_snapshot(self) -> EcosystemSnapshot:
        if self.latest is None:
            return await self.collect()
        return self.latest

    def engagement(self) -> Dict[str, Any]:
        """Engagement on our own posts in the latest snapshot"""
        if self.latest is None:
            return {}
        own = [p for p in self.latest.posts if is_own_author(p.agent_name, p.agent_id)]
        if not own:
            return {"own_posts": 0, "avg_upvotes": 0, "avg_comments": 0, "max_upvotes": 0}
        return {
            "own_posts": len(own),
            "avg_upvotes": round(sum(p.upvotes for p in own) / len(own), 2),
            "avg_comments": round(sum(p.comment_count for p in own) / len(own), 2),
            "max_upvotes": max(p.upvotes for p in own),
        }


_data_refresh_service: Optional[DataRefreshService] = None


def get_data_refresh_service() -> DataRefreshService:
    global _data_refresh_service
    if _data_refresh_service is None:
        _data_refresh_service = DataRefreshService()
    return _data_refresh_service
