"""
Ecosystem API client - reads candidate subjects, executes posts, comments and votes

Reads are single-shot: a failure surfaces to the calling loop, which retries
on its next firing. Writes go through the rate-limit RetryPolicy.
"""

import logging
from typing import Optional, List, Dict, Any

import httpx

from pulseledger.common.config import settings
from pulseledger.common.retry import RateLimitError, RetryPolicy
from pulseledger.domains.ecosystem.schemas import ForumComment, ForumPost, LeaderboardEntry, Project

logger = logging.getLogger(__name__)


class EcosystemAPIError(Exception):
    """Non rate-limit failure talking to the ecosystem API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class EcosystemClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        agent_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.base_url = (base_url or settings.ecosystem_api_base).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.agent_api_key
        self.agent_id = agent_id if agent_id is not None else settings.agent_id
        self._client = http_client
        self._owns_client = http_client is None
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.agent_id:
            headers["X-Agent-Id"] = str(self.agent_id)
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.ecosystem_timeout_seconds)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            resp = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise EcosystemAPIError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 429:
            logger.warning(f"Ecosystem API rate limit on {method} {path}")
            raise RateLimitError(f"{method} {path} rate limited", retry_after=_retry_after(resp))
        if resp.status_code >= 400:
            raise EcosystemAPIError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise EcosystemAPIError(f"{method} {path} returned non-JSON body") from e

    # ── reads ──

    async def get_projects(self, limit: int = 100, offset: int = 0, sort: Optional[str] = None) -> List[Project]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if sort:
            params["sort"] = sort
        data = await self._request("GET", "/projects", params=params)
        items = data.get("projects", []) if isinstance(data, dict) else data
        return [Project.model_validate(p) for p in items or []]

    async def get_all_projects(self, page_size: int = 100, max_pages: int = 10) -> List[Project]:
        projects: List[Project] = []
        for page in range(max_pages):
            batch = await self.get_projects(limit=page_size, offset=page * page_size)
            projects.extend(batch)
            if len(batch) < page_size:
                break
        return projects

    async def get_forum_posts(self, sort: str = "new", limit: int = 50) -> List[ForumPost]:
        data = await self._request("GET", "/forum/posts", params={"sort": sort, "limit": limit})
        items = data.get("posts", []) if isinstance(data, dict) else data
        return [ForumPost.model_validate(p) for p in items or []]

    async def get_my_posts(self, sort: str = "new", limit: int = 5) -> List[ForumPost]:
        data = await self._request("GET", "/forum/me/posts", params={"sort": sort, "limit": limit})
        items = data.get("posts", []) if isinstance(data, dict) else data
        return [ForumPost.model_validate(p) for p in items or []]

    async def get_comments(self, post_id, sort: str = "new", limit: int = 10) -> List[ForumComment]:
        data = await self._request("GET", f"/forum/posts/{post_id}/comments", params={"sort": sort, "limit": limit})
        items = data.get("comments", []) if isinstance(data, dict) else data
        return [ForumComment.model_validate(c) for c in items or []]

    async def get_leaderboard(self, limit: int = 100) -> List[LeaderboardEntry]:
        data = await self._request("GET", "/leaderboard", params={"limit": limit})
        if isinstance(data, dict):
            items = data.get("leaderboard") or data.get("projects") or data.get("entries") or []
        else:
            items = data or []
        return [LeaderboardEntry.model_validate(e) for e in items]

    # ── writes (rate-limit retried) ──

    async def create_post(self, title: str, body: str, tags: Optional[List[str]] = None) -> Dict[str, Any]:
        payload = {"title": title, "body": body, "tags": tags or []}
        result = await self.retry_policy.run(
            lambda: self._request("POST", "/forum/posts", json=payload),
            description="create_post",
        )
        logger.info(f"Created forum post: {title!r}")
        return result.get("post", result) if isinstance(result, dict) else {}

    async def create_comment(self, post_id, body: str) -> Dict[str, Any]:
        result = await self.retry_policy.run(
            lambda: self._request("POST", f"/forum/posts/{post_id}/comments", json={"body": body}),
            description=f"create_comment({post_id})",
        )
        logger.info(f"Commented on post {post_id}")
        return result.get("comment", result) if isinstance(result, dict) else {}

    async def vote_for_project(self, project_id, value: int = 1) -> Dict[str, Any]:
        result = await self.retry_policy.run(
            lambda: self._request("POST", f"/projects/{project_id}/vote", json={"value": value}),
            description=f"vote_for_project({project_id})",
        )
        logger.info(f"Voted on project {project_id}")
        return result if isinstance(result, dict) else {}


_ecosystem_client: Optional[EcosystemClient] = None


def get_ecosystem_client() -> EcosystemClient:
    global _ecosystem_client
    if _ecosystem_client is None:
        _ecosystem_client = EcosystemClient()
    return _ecosystem_client
