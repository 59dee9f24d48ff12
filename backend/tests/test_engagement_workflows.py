"""Tests for forum engagement: replies on our own posts and comments on other agents' posts."""

from datetime import datetime, timedelta, timezone

import pytest

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.common.retry import RateLimitError
from pulseledger.domains.agent.comment_responder_service import CommentResponderService, screen_comment
from pulseledger.domains.agent.data_refresh_service import DataRefreshService
from pulseledger.domains.agent.forum_engagement_service import (
    ForumEngagementService,
    engagement_score,
    is_self_promotional,
    rank_posts,
)
from pulseledger.domains.ecosystem.client import EcosystemAPIError
from pulseledger.domains.ledger.models.action_record import ActionType

from conftest import FakeEcosystem, FakeReasoning, make_comment, make_post

REPLY = "Thanks for asking! Completeness counts demo, repo, video and a real description."
COMMENT = "How are you weighting recent activity in that ranking? Curious whether a decay term helps."
LONG_BODY = "We deployed a new analytics pipeline for agent activity this week. " * 2


def sleeper():
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return sleeps, fake_sleep


# ════════════════════════════════════════════════════════════════
# comment screening
# ════════════════════════════════════════════════════════════════

class TestScreenComment:

    @pytest.mark.parametrize("body,expected", [
        ("nice", (False, "too_short")),
        ("Want a vote exchange? I will vote for yours", (False, "spam_pattern")),
        ("Grab some $RICO before the listing closes", (False, "spam_pattern")),
        ("Free airdrop for everyone who replies here", (False, "spam_pattern")),
        ("🔥🔥🔥🔥🔥🔥🔥🔥🔥🔥🔥🔥 !!!!!!!!", (False, "low_effort")),
        ("How do you compute the completeness score?", (True, "relevant")),
        ("hey @pulseledger nice work there", (True, "relevant")),
        ("I have been building a dashboard that tracks agent activity across the forum", (True, "relevant")),
        ("The colour palette you picked for the landing page is really lovely honestly", (True, "substantive")),
        ("Cool stuff, keep going with this one", (False, "not_relevant")),
    ])
    def test_screen(self, body, expected):
        assert screen_comment(body) == expected


# ════════════════════════════════════════════════════════════════
# comment responses
# ════════════════════════════════════════════════════════════════

def commented_ecosystem(*comments):
    ecosystem = FakeEcosystem()
    ecosystem.my_posts = [make_post(10, "Ecosystem pulse: week 2", agent_name=settings.agent_name)]
    ecosystem.comments[10] = list(comments) or [
        make_comment(101, "How do you compute the completeness score?", "alice"),
        make_comment(102, "nice", "bob"),
        make_comment(103, "Replying to my own thread with a follow-up?", settings.agent_name),
        make_comment(104, "Was this removed for a reason, do you know?", "carol", deleted=True),
    ]
    return ecosystem


def responder(ecosystem, action_log, reasoning=None, **kwargs):
    sleeps, fake_sleep = sleeper()
    service = CommentResponderService(
        ecosystem=ecosystem,
        action_log=action_log,
        reasoning=reasoning or FakeReasoning([REPLY]),
        delay_seconds=5.0,
        sleep=fake_sleep,
        **kwargs,
    )
    return service, sleeps


class TestCommentResponder:

    @pytest.mark.asyncio
    async def test_replies_to_relevant_comment_and_commits(self, action_log):
        ecosystem = commented_ecosystem()
        service, _ = responder(ecosystem, action_log)
        result = await service.run_cycle()

        assert result == {"status": "completed", "processed": 2, "responded": 1, "failed": 0}
        assert ecosystem.created_comments == [{"id": 5000, "post_id": 10, "body": f"@alice {REPLY}"}]

        records = await action_log.list_actions(action_type=ActionType.COMMENT_RESPONSE)
        assert len(records) == 1
        record = records[0]
        assert record.outcome == "SUCCESS"
        assert record.subject_id == "comment:101"
        assert record.external_ref == "5000"
        assert record.ledger_tx_ref is not None
        assert record.metadata_json["author"] == "alice"
        assert record.metadata_json["response_length"] == len(REPLY)
        assert "=== COMMENT RESPONSE ===" in record.reasoning

    @pytest.mark.asyncio
    async def test_comment_answered_only_once(self, action_log):
        ecosystem = commented_ecosystem()
        service, _ = responder(ecosystem, action_log)
        await service.run_cycle()
        second = await service.run_cycle()

        assert second["responded"] == 0
        assert len(ecosystem.created_comments) == 1

    @pytest.mark.asyncio
    async def test_hourly_cap(self, action_log):
        ecosystem = commented_ecosystem(
            make_comment(101, "How do you compute the completeness score?", "alice"),
            make_comment(105, "Which data sources feed the leaderboard?", "dave"),
        )
        service, _ = responder(ecosystem, action_log, max_per_hour=1)

        assert (await service.run_cycle())["responded"] == 1
        assert (await service.run_cycle())["status"] == "limit_reached"
        assert len(ecosystem.created_comments) == 1

    @pytest.mark.asyncio
    async def test_delay_between_responses(self, action_log):
        ecosystem = commented_ecosystem(
            make_comment(101, "How do you compute the completeness score?", "alice"),
            make_comment(105, "Which data sources feed the leaderboard?", "dave"),
        )
        service, sleeps = responder(ecosystem, action_log)
        assert (await service.run_cycle())["responded"] == 2
        assert sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_failed_reply_recorded_and_retried(self, action_log):
        ecosystem = commented_ecosystem()
        ecosystem.comment_errors = [EcosystemAPIError("502")]
        service, _ = responder(ecosystem, action_log)

        assert (await service.run_cycle())["failed"] == 1
        retry = await service.run_cycle()
        assert retry["responded"] == 1
        outcomes = sorted(r.outcome for r in await action_log.list_actions(action_type=ActionType.COMMENT_RESPONSE))
        assert outcomes == ["FAILED", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_rate_limit_stops_cycle(self, action_log):
        ecosystem = commented_ecosystem(
            make_comment(101, "How do you compute the completeness score?", "alice"),
            make_comment(105, "Which data sources feed the leaderboard?", "dave"),
        )
        ecosystem.comment_errors = [RateLimitError("429")]
        service, _ = responder(ecosystem, action_log)

        result = await service.run_cycle()
        assert result["status"] == "rate_limited"
        assert ecosystem.created_comments == []
        assert len(await action_log.list_actions(action_type=ActionType.COMMENT_RESPONSE)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reasoning", [
        FakeReasoning(available=False),
        FakeReasoning(["ok thanks"]),
        FakeReasoning(["Sure, happy to do a vote exchange with your team anytime!"]),
    ])
    async def test_no_usable_reply_means_no_action(self, action_log, reasoning):
        ecosystem = commented_ecosystem()
        service, _ = responder(ecosystem, action_log, reasoning=reasoning)

        assert (await service.run_cycle())["responded"] == 0
        assert ecosystem.created_comments == []
        assert await action_log.list_actions(action_type=ActionType.COMMENT_RESPONSE) == []

    @pytest.mark.asyncio
    async def test_no_own_posts(self, action_log):
        service, _ = responder(FakeEcosystem(), action_log)
        assert (await service.run_cycle())["status"] == "no_posts"


# ════════════════════════════════════════════════════════════════
# forum engagement
# ════════════════════════════════════════════════════════════════

NOW = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)


class TestRanking:

    def test_engagement_score(self):
        fresh = make_post(1, "Day 3 update: what should we build next?", body=LONG_BODY,
                          created_at="2026-02-10T11:00:00Z")
        stale = make_post(2, "Weekly notes", body="y" * 80, comments=12, created_at="2026-02-09T06:00:00Z")
        undated = make_post(3, "Notes", body="Some thoughts on my agent", comments=5)

        assert engagement_score(fresh, NOW) == 5 + 3 + 3 + 2 + 2
        assert engagement_score(stale, NOW) == 0
        assert engagement_score(undated, NOW) == 1 + 3 + 2
        assert [p.id for p in rank_posts([stale, undated, fresh], NOW)] == [1, 3, 2]

    def test_unparseable_timestamp_scores_no_age(self):
        post = make_post(1, "Notes", body="y" * 80, comments=12, created_at="yesterday")
        assert engagement_score(post, NOW) == 0

    @pytest.mark.parametrize("text,expected", [
        ("Check out pulseledger for live dashboards", True),
        ("Please vote for PulseLedger if you liked this", True),
        ("Your voting model is neat, how do you handle ties?", False),
    ])
    def test_self_promotion(self, text, expected):
        assert is_self_promotional(text) is expected


def forum_ecosystem():
    recent = (utc_now() - timedelta(hours=1)).isoformat()
    return FakeEcosystem(posts=[
        make_post(4, "Weekly notes", body="y" * 80, comments=12),
        make_post(1, "Day 3 update: shipped the analytics API", body=LONG_BODY, created_at=recent),
        make_post(2, "Our own thread", agent_name=settings.agent_name, body=LONG_BODY),
        make_post(3, "Short one", body="too short"),
    ])


def engagement_service(ecosystem, action_log, reasoning=None, **kwargs):
    sleeps, fake_sleep = sleeper()
    service = ForumEngagementService(
        data_refresh=DataRefreshService(ecosystem=ecosystem, action_log=action_log),
        ecosystem=ecosystem,
        action_log=action_log,
        reasoning=reasoning or FakeReasoning([COMMENT]),
        delay_seconds=8.0,
        sleep=fake_sleep,
        **kwargs,
    )
    return service, sleeps


class TestForumEngagement:

    @pytest.mark.asyncio
    async def test_comments_on_ranked_eligible_posts(self, action_log):
        ecosystem = forum_ecosystem()
        service, sleeps = engagement_service(ecosystem, action_log)
        result = await service.run_cycle()

        assert result == {"status": "completed", "eligible": 2, "engaged": 2, "failed": 0}
        assert [c["post_id"] for c in ecosystem.created_comments] == [1, 4]
        assert ecosystem.created_comments[0]["body"] == COMMENT
        assert sleeps == [8.0]

        records = await action_log.list_actions(action_type=ActionType.FORUM_COMMENT)
        assert {r.subject_id for r in records} == {"post:1", "post:4"}
        assert all(r.outcome == "SUCCESS" and r.ledger_tx_ref for r in records)
        assert "=== FORUM COMMENT ===" in records[0].reasoning

    @pytest.mark.asyncio
    async def test_post_commented_only_once(self, action_log):
        ecosystem = forum_ecosystem()
        service, _ = engagement_service(ecosystem, action_log)
        await service.run_cycle()

        assert (await service.run_cycle())["status"] == "no_eligible"
        assert len(ecosystem.created_comments) == 2

    @pytest.mark.asyncio
    async def test_cycle_cap_takes_best_post(self, action_log):
        ecosystem = forum_ecosystem()
        service, _ = engagement_service(ecosystem, action_log, max_per_cycle=1)
        assert (await service.run_cycle())["engaged"] == 1
        assert [c["post_id"] for c in ecosystem.created_comments] == [1]

    @pytest.mark.asyncio
    async def test_daily_cap(self, action_log):
        ecosystem = forum_ecosystem()
        service, _ = engagement_service(ecosystem, action_log, max_per_day=1)
        assert (await service.run_cycle())["engaged"] == 1
        assert (await service.run_cycle())["status"] == "limit_reached"
        assert len(ecosystem.created_comments) == 1

    @pytest.mark.asyncio
    async def test_self_promotional_comment_dropped(self, action_log):
        ecosystem = forum_ecosystem()
        reasoning = FakeReasoning(["Great work here, and check out pulseledger for live dashboards!"])
        service, _ = engagement_service(ecosystem, action_log, reasoning=reasoning)

        assert (await service.run_cycle())["engaged"] == 0
        assert ecosystem.created_comments == []
        assert await action_log.list_actions(action_type=ActionType.FORUM_COMMENT) == []

    @pytest.mark.asyncio
    async def test_failed_comment_retried_next_cycle(self, action_log):
        ecosystem = forum_ecosystem()
        ecosystem.comment_errors = [EcosystemAPIError("500")]
        service, _ = engagement_service(ecosystem, action_log, max_per_cycle=1)

        assert (await service.run_cycle())["failed"] == 1
        assert (await service.run_cycle())["engaged"] == 1
        assert [c["post_id"] for c in ecosystem.created_comments] == [1]

    @pytest.mark.asyncio
    async def test_rate_limit_stops_cycle(self, action_log):
        ecosystem = forum_ecosystem()
        ecosystem.comment_errors = [RateLimitError("429")]
        service, sleeps = engagement_service(ecosystem, action_log)

        result = await service.run_cycle()
        assert result["engaged"] == 0
        assert result["failed"] == 1
        assert sleeps == []
        assert len(await action_log.list_actions(action_type=ActionType.FORUM_COMMENT)) == 1
