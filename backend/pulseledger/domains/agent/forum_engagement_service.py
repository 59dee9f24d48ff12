"""
Forum engagement - comment on other agents' recent posts

Eligible posts come from the latest data refresh: not ours, not commented on
before (a live FORUM_COMMENT claim on "post:<id>"), long enough to say
something about. They are ranked by engagement potential and the best few
get one generated comment each, claimed and committed like any other action.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pulseledger.common.base import as_utc, utc_now
from pulseledger.common.config import settings
from pulseledger.common.retry import RateLimitError
from pulseledger.domains.agent.data_refresh_service import (
    DataRefreshService,
    get_data_refresh_service,
    is_own_author,
)
from pulseledger.domains.ecosystem.client import EcosystemClient, get_ecosystem_client
from pulseledger.domains.ecosystem.schemas import ForumPost
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType
from pulseledger.domains.reasoning.client import ReasoningClient, ReasoningUnavailableError, get_reasoning_client

logger = logging.getLogger(__name__)

RELEVANT_TOPICS = re.compile(
    r"analytics|data|insight|dashboard|leaderboard|solana|on-chain|autonomous|voting|agent", re.IGNORECASE
)
INVITES_DISCUSSION = re.compile(r"what do you think|thoughts\??|feedback|opinions", re.IGNORECASE)
PROJECT_UPDATE = re.compile(r"update|shipped|deployed|built|launched|v\d|day \d", re.IGNORECASE)
MIN_COMMENT_CHARS = 30


def post_age_hours(post: ForumPost, now: datetime) -> Optional[float]:
    if not post.created_at:
        return None
    try:
        created = datetime.fromisoformat(post.created_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    return (now - as_utc(created)).total_seconds() / 3600


def engagement_score(post: ForumPost, now: datetime) -> int:
    """Higher for fresh, quiet, on-topic posts that invite a reply"""
    score = 0
    age = post_age_hours(post, now)
    if age is not None:
        if age < 2:
            score += 5
        elif age < 6:
            score += 3
        elif age < 24:
            score += 1

    if post.comment_count < 3:
        score += 3
    elif post.comment_count < 10:
        score += 1

    if RELEVANT_TOPICS.search(post.body or "") or RELEVANT_TOPICS.search(post.title):
        score += 3
    if "?" in post.title or INVITES_DISCUSSION.search(post.body or ""):
        score += 2
    if PROJECT_UPDATE.search(post.title):
        score += 2
    if post.agent_project:
        score += 2
    return score


def rank_posts(posts: List[ForumPost], now: Optional[datetime] = None) -> List[ForumPost]:
    now = now or utc_now()
    return sorted(posts, key=lambda p: engagement_score(p, now), reverse=True)


def is_self_promotional(text: str) -> bool:
    name = re.escape(settings.agent_name)
    return re.search(rf"vote.*for.*{name}|check.*out.*{name}|{name}.*project", text, re.IGNORECASE) is not None


class ForumEngagementService:

    def __init__(
        self,
        data_refresh: Optional[DataRefreshService] = None,
        ecosystem: Optional[EcosystemClient] = None,
        action_log: Optional[ActionLogService] = None,
        reasoning: Optional[ReasoningClient] = None,
        max_per_cycle: Optional[int] = None,
        max_per_day: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.data_refresh = data_refresh or get_data_refresh_service()
        self.ecosystem = ecosystem or get_ecosystem_client()
        self.action_log = action_log or get_action_log_service()
        self.reasoning = reasoning or get_reasoning_client()
        self.max_per_cycle = max_per_cycle if max_per_cycle is not None else settings.max_forum_comments_per_cycle
        self.max_per_day = max_per_day if max_per_day is not None else settings.max_forum_comments_per_day
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.forum_comment_delay_seconds
        self._sleep = sleep

    async def eligible(self) -> List[ForumPost]:
        snapshot = await self.data_refresh.ensure_snapshot()
        commented = await self.action_log.claimed_subject_ids(ActionType.FORUM_COMMENT)
        return [
            p for p in snapshot.posts[:settings.forum_scan_limit]
            if not is_own_author(p.agent_name, p.agent_id)
            and f"post:{p.id}" not in commented
            and len(p.body or "") >= settings.forum_min_post_length
        ]

    async def run_cycle(self) -> Dict[str, Any]:
        now = utc_now()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = await self.action_log.count_since(ActionType.FORUM_COMMENT, start_of_day)
        remaining = min(self.max_per_cycle, self.max_per_day - today)
        if remaining <= 0:
            logger.info(f"Daily comment limit reached ({today}/{self.max_per_day})")
            return {"status": "limit_reached", "eligible": 0, "engaged": 0}

        posts = await self.eligible()
        if not posts:
            logger.info("No eligible forum posts to comment on")
            return {"status": "no_eligible", "eligible": 0, "engaged": 0}

        engaged = failed = 0
        for index, post in enumerate(rank_posts(posts, now)[:remaining]):
            if index:
                await self._sleep(self.delay_seconds)
            try:
                outcome = await self.comment_on(post, engagement_score(post, now))
            except RateLimitError as e:
                logger.warning(f"Rate limited while commenting, stopping this cycle: {e}")
                failed += 1
                break
            if outcome == ActionOutcome.SUCCESS.value:
                engaged += 1
            elif outcome == ActionOutcome.FAILED.value:
                failed += 1

        logger.info(f"Forum engagement complete: {engaged} comments, {failed} failed")
        return {"status": "completed", "eligible": len(posts), "engaged": engaged, "failed": failed}

    async def generate_comment(self, post: ForumPost) -> Optional[str]:
        if not self.reasoning.available:
            logger.info("Reasoning unavailable, not commenting on forum posts")
            return None
        prompt = (
            f"You are {settings.agent_name}, an autonomous analytics agent in an AI agent hackathon. "
            "You are reading another agent's forum post and want to leave a thoughtful comment.\n\n"
            f"POST TITLE: \"{post.title}\"\n"
            f"POST AUTHOR: {post.agent_name or 'unknown'}\n"
            f"POST BODY:\n{(post.body or '')[:1500]}\n\n"
            "Write 2-4 sentences that reference concrete details from the post and add value: a sharp "
            "question, a relevant insight or a connection to the wider ecosystem. No generic openers, "
            "no mention of voting, no promotion of your own project. Plain text only."
        )
        try:
            text = (await self.reasoning.complete(prompt, max_tokens=300)).strip()
        except ReasoningUnavailableError as e:
            logger.warning(f"Comment generation failed for post {post.id}: {e}")
            return None
        if len(text) < MIN_COMMENT_CHARS:
            logger.warning(f"Generated comment for post {post.id} too short, skipping")
            return None
        if is_self_promotional(text):
            logger.warning(f"Generated comment for post {post.id} was self-promotional, skipping")
            return None
        return text

    async def comment_on(self, post: ForumPost, score: int) -> str:
        text = await self.generate_comment(post)
        if text is None:
            return "NO_COMMENT"

        author = post.agent_name or "unknown"
        record = await self.action_log.claim_action(
            ActionType.FORUM_COMMENT,
            subject_id=f"post:{post.id}",
            summary=f"Commented on \"{post.title[:120]}\" by {author}",
            metadata={
                "post_id": str(post.id),
                "author": author,
                "engagement_score": score,
                "comment_length": len(text),
            },
            reasoning=(
                "=== FORUM COMMENT ===\n"
                f"Post #{post.id} by {author}: {post.title}\n"
                f"Engagement score: {score} (comments {post.comment_count}, created {post.created_at or 'unknown'})\n"
                f"Comment: {text}"
            ),
        )
        if record is None:
            logger.info(f"Post {post.id} already commented on")
            return "DUPLICATE"

        try:
            created = await self.ecosystem.create_comment(post.id, text)
        except Exception as e:
            logger.error(f"Comment on post {post.id} failed: {e}", exc_info=True)
            await self.action_log.set_outcome(record.id, ActionOutcome.FAILED, error=str(e))
            if isinstance(e, RateLimitError):
                raise
            return ActionOutcome.FAILED.value

        created_id = created.get("id")
        await self.action_log.set_outcome(
            record.id, ActionOutcome.SUCCESS, external_ref=str(created_id) if created_id is not None else None
        )
        signature = await self.action_log.commit_to_ledger(record)
        logger.info(f"Commented on {post.title!r} by {author} (ledger {signature or 'none'})")
        return ActionOutcome.SUCCESS.value


_forum_engagement_service: Optional[ForumEngagementService] = None


def get_forum_engagement_service() -> ForumEngagementService:
    global _forum_engagement_service
    if _forum_engagement_service is None:
        _forum_engagement_service = ForumEngagementService()
    return _forum_engagement_service
