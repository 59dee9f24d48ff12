"""Periodic leaderboard snapshot + daily report record"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select

from pulseledger.common.base import utc_now
from pulseledger.common.database import DatabaseManager, db_manager
from pulseledger.domains.agent.data_refresh_service import DataRefreshService, get_data_refresh_service
from pulseledger.domains.agent.models.leaderboard_snapshot import LeaderboardSnapshot
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionType

logger = logging.getLogger(__name__)


class SnapshotService:

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        data_refresh: Optional[DataRefreshService] = None,
        action_log: Optional[ActionLogService] = None,
    ):
        self.db = db or db_manager
        self.data_refresh = data_refresh or get_data_refresh_service()
        self.action_log = action_log or get_action_log_service()

    async def capture(self) -> Dict[str, Any]:
        snapshot = await self.data_refresh.collect()
        now = utc_now()
        entries = [e.model_dump(mode="json") for e in snapshot.leaderboard]
        top = snapshot.leaderboard[0].name if snapshot.leaderboard else None
        engagement = self.data_refresh.engagement()

        activity = await self.action_log.counts_by_type(since=now - timedelta(hours=24))
        record = await self.action_log.record_action(
            ActionType.DAILY_REPORT,
            summary=(
                f"Report {now.date().isoformat()}: {len(snapshot.projects)} projects, "
                f"{len(snapshot.posts)} posts, leader {top or 'n/a'}"
            ),
            metadata={
                "projects": len(snapshot.projects),
                "posts": len(snapshot.posts),
                "top_project": top,
                "activity_24h": activity,
                "engagement": engagement,
            },
        )

        row = LeaderboardSnapshot(
            captured_at=now,
            project_count=len(snapshot.projects),
            post_count=len(snapshot.posts),
            top_project=top,
            entries=entries,
            engagement=engagement,
            action_record_id=record.id,
        )
        async with self.db.get_session() as session:
            session.add(row)

        signature = await self.action_log.commit_to_ledger(record)
        logger.info(f"Leaderboard snapshot stored ({len(entries)} entries), ledger {signature or 'none'}")
        return {"status": "completed", "snapshot_id": row.id, "record_id": record.id, "ledger_tx": signature}

    async def latest(self, limit: int = 10):
        async with self.db.get_session() as session:
            result = await session.execute(
                select(LeaderboardSnapshot).order_by(LeaderboardSnapshot.captured_at.desc()).limit(limit)
            )
            return list(result.scalars().all())


_snapshot_service: Optional[SnapshotService] = None


def get_snapshot_service() -> SnapshotService:
    global _snapshot_service
    if _snapshot_service is None:
        _snapshot_service = SnapshotService()
    return _snapshot_service
