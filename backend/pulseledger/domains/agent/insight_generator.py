"""
Insight generation - turn an ecosystem snapshot into candidate posts

Titles and facts are computed deterministically from the snapshot; only the
prose body goes through the reasoning client, styled by the current tone.
The gate downstream decides what actually gets published.
"""

import logging
from collections import Counter
from dataclasses import replace
from datetime import date
from typing import List, Optional

from pulseledger.common.base import utc_now
from pulseledger.domains.decision.schemas import Insight
from pulseledger.domains.ecosystem.schemas import EcosystemSnapshot
from pulseledger.domains.reasoning.client import ReasoningClient, ReasoningUnavailableError, get_reasoning_client
from pulseledger.domains.strategy.schemas import Strategy

logger = logging.getLogger(__name__)

TONE_GUIDE = {
    "enthusiastic": "energetic and encouraging, celebrate what builders are doing",
    "analytical": "precise and data-driven, lead with numbers",
    "balanced": "friendly but factual",
}

# which candidate kinds lead for each focus
FOCUS_ORDER = {
    "trends": ("topics", "completeness", "leaders"),
    "predictions": ("leaders", "topics", "completeness"),
    "community": ("topics", "leaders", "completeness"),
    "technical": ("completeness", "leaders", "topics"),
}


def _pct(part: int, whole: int) -> int:
    return round(100 * part / whole) if whole else 0


class InsightGenerator:

    def __init__(self, reasoning: Optional[ReasoningClient] = None):
        self.reasoning = reasoning or get_reasoning_client()

    def candidates(self, snapshot: EcosystemSnapshot, today: Optional[date] = None) -> dict:
        """kind -> (Insight with template body) for every kind the snapshot supports"""
        today = today or utc_now().date()
        day = today.isoformat()
        found = {}

        projects = snapshot.projects
        if projects:
            total = len(projects)
            no_demo = sum(1 for p in projects if not p.demo_link)
            no_repo = sum(1 for p in projects if not p.repo_link)
            no_video = sum(1 for p in projects if not p.video_link)
            found["completeness"] = Insight(
                key=f"completeness:{day}",
                title=f"How to stand out: {_pct(no_demo, total)}% of projects still lack a live demo",
                body=(
                    f"Across {total} hackathon projects, {no_demo} have no live demo, {no_repo} have no "
                    f"public repository and {no_video} have no video walkthrough. Judges and voters "
                    f"look for working software first."
                ),
                tags=("progress-update", "ai"),
                data_points=total,
                solves_issue=no_demo > 0,
                actionable="Ship a live demo link and a public repo before the next voting window.",
                examples=tuple(p.name for p in projects if p.demo_link and p.repo_link)[:3],
                trending=no_demo * 2 > total,
                has_visualization=False,
            )

        posts = snapshot.posts
        if posts:
            tag_counts = Counter(t.lower() for p in posts for t in p.tags)
            top = tag_counts.most_common(3)
            if top:
                names = ", ".join(f"#{t} ({n})" for t, n in top)
                busiest = max(posts, key=lambda p: (p.comment_count, p.upvotes))
                found["topics"] = Insight(
                    key=f"topics:{day}:{top[0][0]}",
                    title=f"Forum trends guide: agent builders are talking about {top[0][0]}",
                    body=(
                        f"Of the {len(posts)} newest forum posts, the most used tags are {names}. "
                        f"The busiest thread is {busiest.title!r} with {busiest.comment_count} comments."
                    ),
                    tags=("progress-update", "ai"),
                    data_points=len(posts),
                    answers_question=True,
                    actionable=f"Teams working on {top[0][0]} should join the discussion and share progress.",
                    examples=(busiest.title,),
                    trending=True,
                    has_visualization=False,
                )

        board = [e for e in snapshot.leaderboard if e.name]
        if len(board) >= 3:
            leaders = sorted(board, key=lambda e: (e.rank or 10**6, -e.votes))[:5]
            by_name = {p.name: p for p in projects}
            with_demo = sum(1 for e in leaders if by_name.get(e.name) and by_name[e.name].demo_link)
            found["leaders"] = Insight(
                key=f"leaders:{day}:{leaders[0].name}",
                title=f"Leaderboard guide: what the top {len(leaders)} projects have in common",
                body=(
                    f"{leaders[0].name} leads with {leaders[0].votes} votes. "
                    f"{with_demo} of the top {len(leaders)} projects ship a live demo. "
                    f"Top entries: " + ", ".join(f"{e.name} ({e.votes})" for e in leaders) + "."
                ),
                tags=("leaderboard", "ai"),
                data_points=len(board),
                answers_question=True,
                actionable="Compare your project page against the top entries and close the gaps.",
                examples=tuple(e.name for e in leaders[:3]),
                trending=len(board) >= 10,
                has_visualization=True,
            )

        return found

    async def generate(self, snapshot: EcosystemSnapshot, strategy: Strategy,
                       today: Optional[date] = None) -> List[Insight]:
        found = self.candidates(snapshot, today)
        order = FOCUS_ORDER.get(strategy.parameters.insight_focus, FOCUS_ORDER["trends"])
        insights = [found[kind] for kind in order if kind in found]
        return [await self._styled(i, strategy) for i in insights]

    async def _styled(self, insight: Insight, strategy: Strategy) -> Insight:
        if not self.reasoning.available:
            return insight
        tone = strategy.parameters.posting_tone
        prompt = (
            f"Rewrite this forum post body in a {TONE_GUIDE.get(tone, tone)} voice. "
            f"Keep every number. Under 120 words. Plain text only.\n\n"
            f"Title: {insight.title}\n\n{insight.body}\n\nRecommendation: {insight.actionable}"
        )
        try:
            body = (await self.reasoning.complete(prompt, max_tokens=400)).strip()
        except ReasoningUnavailableError as e:
            logger.warning(f"Body generation failed, using template: {e}")
            return insight
        if not body:
            return insight
        return replace(insight, body=body)
