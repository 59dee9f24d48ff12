"""
Comment responses - reply to comments left on our own forum posts

Per comment: skip own / deleted / already answered -> screen -> generate
reply -> claim COMMENT_RESPONSE -> create comment -> outcome -> ledger.
Screened-out comments are only logged; the screen is deterministic and
simply runs again on the next pass.
"""

import asyncio
import logging
import re
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.common.retry import RateLimitError
from pulseledger.domains.agent.data_refresh_service import is_own_author
from pulseledger.domains.ecosystem.client import EcosystemClient, get_ecosystem_client
from pulseledger.domains.ecosystem.schemas import ForumComment, ForumPost
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType
from pulseledger.domains.reasoning.client import ReasoningClient, ReasoningUnavailableError, get_reasoning_client

logger = logging.getLogger(__name__)

SPAM_PATTERNS = [
    re.compile(r"vote.*exchange", re.IGNORECASE),
    re.compile(r"vote.*for.*vote", re.IGNORECASE),
    re.compile(r"upvote.*if.*upvote", re.IGNORECASE),
    re.compile(r"\$[A-Z]+"),  # token tickers
    re.compile(r"buy.*token", re.IGNORECASE),
    re.compile(r"airdrop", re.IGNORECASE),
]
RELEVANT = re.compile(r"analytics|insight|data|track|monitor|dashboard|solana|agent", re.IGNORECASE)
MIN_REPLY_CHARS = 20
SUBSTANTIVE_CHARS = 50


def screen_comment(body: str, min_length: Optional[int] = None) -> Tuple[bool, str]:
    """(respond, reason) for a comment body"""
    body = body or ""
    min_length = min_length if min_length is not None else settings.min_comment_length
    if len(body) < min_length:
        return False, "too_short"
    if any(p.search(body) for p in SPAM_PATTERNS):
        return False, "spam_pattern"
    if len(re.sub(r"[^\w\s]", "", body).strip()) < 10:
        return False, "low_effort"

    substantive = len(body) > SUBSTANTIVE_CHARS
    mentions_us = re.search(rf"@?{re.escape(settings.agent_name)}", body, re.IGNORECASE) is not None
    if "?" in body or mentions_us or (substantive and RELEVANT.search(body)):
        return True, "relevant"
    if substantive:
        return True, "substantive"
    return False, "not_relevant"


class CommentResponderService:

    def __init__(
        self,
        ecosystem: Optional[EcosystemClient] = None,
        action_log: Optional[ActionLogService] = None,
        reasoning: Optional[ReasoningClient] = None,
        max_per_cycle: Optional[int] = None,
        max_per_hour: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ecosystem = ecosystem or get_ecosystem_client()
        self.action_log = action_log or get_action_log_service()
        self.reasoning = reasoning or get_reasoning_client()
        self.max_per_cycle = max_per_cycle if max_per_cycle is not None else settings.max_responses_per_cycle
        self.max_per_hour = max_per_hour if max_per_hour is not None else settings.max_responses_per_hour
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.response_delay_seconds
        self._sleep = sleep

    async def run_cycle(self) -> Dict[str, Any]:
        last_hour = await self.action_log.count_since(ActionType.COMMENT_RESPONSE, utc_now() - timedelta(hours=1))
        remaining = min(self.max_per_cycle, self.max_per_hour - last_hour)
        if remaining <= 0:
            logger.info(f"Hourly response limit reached ({last_hour}/{self.max_per_hour})")
            return {"status": "limit_reached", "processed": 0, "responded": 0}

        posts = await self.ecosystem.get_my_posts(limit=settings.comment_check_posts)
        if not posts:
            logger.info("No own posts to check for comments")
            return {"status": "no_posts", "processed": 0, "responded": 0}

        answered = await self.action_log.claimed_subject_ids(ActionType.COMMENT_RESPONSE)
        processed = responded = failed = 0
        for post in posts:
            if responded >= remaining:
                break
            comments = await self.ecosystem.get_comments(post.id, limit=settings.comments_per_post)
            for comment in comments:
                if responded >= remaining:
                    break
                if comment.is_deleted or comment.subject_id in answered \
                        or is_own_author(comment.agent_name, comment.agent_id):
                    continue

                processed += 1
                respond, reason = screen_comment(comment.body)
                if not respond:
                    logger.info(f"Skipping comment {comment.id}: {reason}")
                    continue

                if responded or failed:
                    await self._sleep(self.delay_seconds)
                try:
                    outcome = await self.respond(post, comment, reason)
                except RateLimitError as e:
                    logger.warning(f"Rate limited while responding, stopping this cycle: {e}")
                    return {"status": "rate_limited", "processed": processed, "responded": responded,
                            "failed": failed + 1}
                if outcome == ActionOutcome.SUCCESS.value:
                    responded += 1
                elif outcome == ActionOutcome.FAILED.value:
                    failed += 1

        logger.info(f"Comment check complete: {processed} processed, {responded} responses, {failed} failed")
        return {"status": "completed", "processed": processed, "responded": responded, "failed": failed}

    async def generate_reply(self, post: ForumPost, comment: ForumComment) -> Optional[str]:
        if not self.reasoning.available:
            logger.info("Reasoning unavailable, not replying to comments")
            return None
        prompt = (
            f"You are {settings.agent_name}, an autonomous analytics agent in an AI agent hackathon. "
            f"Someone commented on your forum post titled \"{post.title}\".\n\n"
            f"Commenter: {comment.agent_name or 'unknown'}\n"
            f"Comment: \"{comment.body}\"\n\n"
            "Write a brief, specific reply (2-4 sentences). Answer any question they ask, acknowledge "
            "their project if they mention it, end with something engaging. Do not agree to vote "
            "exchanges or promise votes. Plain text only."
        )
        try:
            text = (await self.reasoning.complete(prompt, max_tokens=300)).strip()
        except ReasoningUnavailableError as e:
            logger.warning(f"Reply generation failed for comment {comment.id}: {e}")
            return None
        if len(text) < MIN_REPLY_CHARS:
            logger.warning(f"Generated reply to comment {comment.id} too short, skipping")
            return None
        if any(p.search(text) for p in SPAM_PATTERNS):
            logger.warning(f"Generated reply to comment {comment.id} looks like a vote trade, skipping")
            return None
        return text

    async def respond(self, post: ForumPost, comment: ForumComment, reason: str) -> str:
        reply = await self.generate_reply(post, comment)
        if reply is None:
            return "NO_REPLY"

        author = comment.agent_name or "anon"
        record = await self.action_log.claim_action(
            ActionType.COMMENT_RESPONSE,
            subject_id=comment.subject_id,
            summary=f"Responded to comment from {author}",
            metadata={
                "post_id": str(post.id),
                "comment_id": str(comment.id),
                "author": author,
                "reason": reason,
                "response_length": len(reply),
            },
            reasoning=(
                "=== COMMENT RESPONSE ===\n"
                f"Post #{post.id}: {post.title}\n"
                f"Comment #{comment.id} by {author}: {comment.body[:1000]}\n"
                f"Screen: {reason}\n"
                f"Reply: {reply}"
            ),
        )
        if record is None:
            logger.info(f"Comment {comment.id} already answered")
            return "DUPLICATE"

        try:
            created = await self.ecosystem.create_comment(post.id, f"@{author} {reply}")
        except Exception as e:
            logger.error(f"Reply to comment {comment.id} failed: {e}", exc_info=True)
            await self.action_log.set_outcome(record.id, ActionOutcome.FAILED, error=str(e))
            if isinstance(e, RateLimitError):
                raise
            return ActionOutcome.FAILED.value

        created_id = created.get("id")
        await self.action_log.set_outcome(
            record.id, ActionOutcome.SUCCESS, external_ref=str(created_id) if created_id is not None else None
        )
        signature = await self.action_log.commit_to_ledger(record)
        logger.info(f"Responded to comment {comment.id} by {author} (ledger {signature or 'none'})")
        return ActionOutcome.SUCCESS.value


_comment_responder_service: Optional[CommentResponderService] = None


def get_comment_responder_service() -> CommentResponderService:
    global _comment_responder_service
    if _comment_responder_service is None:
        _comment_responder_service = CommentResponderService()
    return _comment_responder_service
