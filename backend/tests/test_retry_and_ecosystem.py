"""Tests for the rate-limit retry policy and the ecosystem API client."""

import json

import httpx
import pytest

from pulseledger.common.retry import RateLimitError, RetryPolicy
from pulseledger.domains.ecosystem.client import EcosystemAPIError, EcosystemClient

BASE = "https://eco.test/api"


def policy(max_retries=3, delay=30.0, backoff="fixed"):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(max_retries=max_retries, delay_seconds=delay, backoff=backoff, sleep=fake_sleep), sleeps


def failing(times, error_factory, result="ok"):
    calls = {"n": 0}

    async def func():
        calls["n"] += 1
        if calls["n"] <= times:
            raise error_factory()
        return result

    return func, calls


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_success_after_rate_limits(self):
        retry, sleeps = policy()
        func, calls = failing(2, RateLimitError)
        assert await retry.run(func) == "ok"
        assert calls["n"] == 3
        assert sleeps == [30.0, 30.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        retry, sleeps = policy(max_retries=3)
        func, calls = failing(10, lambda: RateLimitError("slow down"))
        with pytest.raises(RateLimitError, match="slow down"):
            await retry.run(func)
        assert calls["n"] == 4
        assert len(sleeps) == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        retry, sleeps = policy()
        func, calls = failing(1, lambda: ValueError("bad request"))
        with pytest.raises(ValueError):
            await retry.run(func)
        assert calls["n"] == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retry_after_extends_delay(self):
        retry, sleeps = policy(delay=5.0)
        func, _ = failing(1, lambda: RateLimitError(retry_after=42))
        await retry.run(func)
        assert sleeps == [42.0]

    def test_exponential_backoff_capped(self):
        retry, _ = policy(delay=30.0, backoff="exponential")
        assert [retry.delay_for(n) for n in (1, 2, 3, 4, 5)] == [30.0, 60.0, 120.0, 240.0, 300.0]

    def test_from_settings_overrides(self):
        assert RetryPolicy.from_settings(max_retries=1).max_retries == 1


def eco_client(handler, max_retries=3):
    retry, sleeps = policy(max_retries=max_retries, delay=1.0)
    client = EcosystemClient(
        base_url=BASE,
        api_key="key",
        agent_id="77",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_policy=retry,
    )
    return client, sleeps


class TestEcosystemReads:

    @pytest.mark.asyncio
    async def test_projects_normalised_from_api_names(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer key"
            assert request.headers["X-Agent-Id"] == "77"
            return httpx.Response(200, json={"projects": [{
                "id": 5, "name": "Alpha", "description": "d", "repoLink": "https://github.com/a",
                "technicalDemoLink": "https://a.app", "presentationLink": "https://v", "humanUpvotes": 4,
                "somethingNew": True,
            }]})

        client, _ = eco_client(handler)
        projects = await client.get_projects()
        assert projects[0].repo_link == "https://github.com/a"
        assert projects[0].demo_link == "https://a.app"
        assert projects[0].video_link == "https://v"
        assert projects[0].votes == 4
        assert projects[0].subject_id == "project:5"
        assert projects[0].completeness == 3

    @pytest.mark.asyncio
    async def test_all_projects_paginates(self):
        pages = []

        def handler(request):
            offset = int(request.url.params["offset"])
            pages.append(offset)
            count = 2 if offset < 4 else 1
            return httpx.Response(200, json={"projects": [{"id": offset + i} for i in range(count)]})

        client, _ = eco_client(handler)
        projects = await client.get_all_projects(page_size=2)
        assert pages == [0, 2, 4]
        assert [p.id for p in projects] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_posts_and_leaderboard(self):
        def handler(request):
            if request.url.path.endswith("/forum/posts"):
                assert request.url.params["sort"] == "new"
                return httpx.Response(200, json={"posts": [
                    {"id": 1, "title": "t", "tags": ["ai"], "agentName": "pulseledger", "score": 3, "commentCount": 2},
                ]})
            return httpx.Response(200, json={"leaderboard": [{"rank": 1, "projectId": 9, "projectName": "Z", "totalVotes": 8}]})

        client, _ = eco_client(handler)
        posts = await client.get_forum_posts()
        board = await client.get_leaderboard()
        assert posts[0].agent_name == "pulseledger"
        assert posts[0].upvotes == 3
        assert posts[0].comment_count == 2
        assert board[0].name == "Z"
        assert board[0].votes == 8

    @pytest.mark.asyncio
    async def test_read_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        client, _ = eco_client(handler)
        with pytest.raises(RateLimitError):
            await client.get_projects()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error(self):
        client, _ = eco_client(lambda request: httpx.Response(500, text="oops"))
        with pytest.raises(EcosystemAPIError) as exc:
            await client.get_leaderboard()
        assert exc.value.status_code == 500


class TestEcosystemWrites:

    @pytest.mark.asyncio
    async def test_post_retried_on_rate_limit(self):
        responses = iter([
            httpx.Response(429, headers={"retry-after": "3"}),
            httpx.Response(201, json={"post": {"id": 55, "title": "T"}}),
        ])
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return next(responses)

        client, sleeps = eco_client(handler)
        post = await client.create_post("T", "B", ["ai"])
        assert post == {"id": 55, "title": "T"}
        assert bodies[0] == {"title": "T", "body": "B", "tags": ["ai"]}
        assert len(bodies) == 2
        assert sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_vote_gives_up_after_four_attempts(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(429)

        client, sleeps = eco_client(handler, max_retries=3)
        with pytest.raises(RateLimitError):
            await client.vote_for_project(12)
        assert calls == ["/api/projects/12/vote"] * 4
        assert len(sleeps) == 3

    @pytest.mark.asyncio
    async def test_vote_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(409, json={"error": "already voted"})

        client, _ = eco_client(handler)
        with pytest.raises(EcosystemAPIError):
            await client.vote_for_project(12)
        assert len(calls) == 1
