"""Agent Scheduler - the autonomous control loops

Loops (UTC):
  data_refresh         every 5 min        pull projects / posts / leaderboard
  insight_cycle        hourly at :00      gate + publish insights
  voting_cycle         every 4 h          score projects, vote above threshold
  strategy_adaptation  every 6 h          observe -> recommend -> validate -> apply
  snapshot             09:00 and 21:00    leaderboard snapshot + daily report
  comment_responses    every 30 min       reply to comments on our own posts
  forum_engagement     every 3 h          comment on other agents' posts

Scheduled and manual firings share run_loop(). A loop that is still running
when it fires again skips that firing. An exception inside a loop becomes a
FAILED action record and never reaches APScheduler. shutdown() waits for
in-flight iterations before the caller closes clients and the store.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_PAUSED
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pulseledger.common.base import utc_now
from pulseledger.common.config import settings
from pulseledger.domains.ledger.action_log_service import ActionLogService, get_action_log_service
from pulseledger.domains.ledger.models.action_record import ActionOutcome, ActionType

logger = logging.getLogger(__name__)

PRIORITY_LOOP = "data_refresh"


@dataclass
class AgentLoop:
    name: str
    description: str
    trigger: BaseTrigger
    runner: Callable[[], Awaitable[Any]]
    failure_type: ActionType = ActionType.LOOP_FAILURE


def default_loops() -> list:
    from pulseledger.domains.agent.comment_responder_service import get_comment_responder_service
    from pulseledger.domains.agent.data_refresh_service import get_data_refresh_service
    from pulseledger.domains.agent.forum_engagement_service import get_forum_engagement_service
    from pulseledger.domains.agent.posting_service import get_posting_service
    from pulseledger.domains.agent.snapshot_service import get_snapshot_service
    from pulseledger.domains.agent.voting_service import get_voting_service
    from pulseledger.domains.strategy.adaptation_service import get_adaptation_service

    data_refresh = get_data_refresh_service()
    adaptation = get_adaptation_service()
    if adaptation.engagement_source is None:
        adaptation.engagement_source = data_refresh.engagement

    async def refresh():
        snapshot = await data_refresh.collect()
        return {"projects": len(snapshot.projects), "posts": len(snapshot.posts),
                "leaderboard": len(snapshot.leaderboard)}

    return [
        AgentLoop("data_refresh", f"Data refresh (every {settings.data_refresh_minutes} min)",
                  IntervalTrigger(minutes=settings.data_refresh_minutes),
                  refresh, ActionType.DATA_COLLECTION),
        AgentLoop("insight_cycle", f"Insight cycle (hourly at :{settings.insight_cycle_minute:02d})",
                  CronTrigger(minute=settings.insight_cycle_minute),
                  get_posting_service().run_cycle, ActionType.FORUM_POST),
        AgentLoop("voting_cycle", f"Voting cycle (every {settings.voting_cycle_hours} h)",
                  IntervalTrigger(hours=settings.voting_cycle_hours),
                  get_voting_service().run_cycle, ActionType.VOTE),
        AgentLoop("strategy_adaptation", f"Strategy adaptation (every {settings.adaptation_cycle_hours} h)",
                  IntervalTrigger(hours=settings.adaptation_cycle_hours),
                  adaptation.run_cycle, ActionType.STRATEGY_ADAPTATION),
        AgentLoop("snapshot", f"Leaderboard snapshot (UTC {settings.snapshot_hours}:00)",
                  CronTrigger(hour=settings.snapshot_hours, minute=0),
                  get_snapshot_service().capture, ActionType.DAILY_REPORT),
        AgentLoop("comment_responses", f"Comment responses (every {settings.comment_response_minutes} min)",
                  IntervalTrigger(minutes=settings.comment_response_minutes),
                  get_comment_responder_service().run_cycle, ActionType.COMMENT_RESPONSE),
        AgentLoop("forum_engagement", f"Forum engagement (every {settings.forum_engagement_hours} h)",
                  IntervalTrigger(hours=settings.forum_engagement_hours),
                  get_forum_engagement_service().run_cycle, ActionType.FORUM_COMMENT),
    ]


class AgentScheduler:
    """Owns the control loops, their overlap guard and the global run flag"""

    def __init__(
        self,
        loops: Optional[Iterable[AgentLoop]] = None,
        action_log: Optional[ActionLogService] = None,
        priority_loop: str = PRIORITY_LOOP,
    ):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._loops: Optional[Dict[str, AgentLoop]] = {l.name: l for l in loops} if loops is not None else None
        self._action_log = action_log
        self.priority_loop = priority_loop
        self._is_running = False
        self._run_flag = True
        self._running: Set[str] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._last_runs: Dict[str, datetime] = {}
        self._last_results: Dict[str, dict] = {}

    @property
    def loops(self) -> Dict[str, AgentLoop]:
        if self._loops is None:
            self._loops = {l.name: l for l in default_loops()}
        return self._loops

    @property
    def action_log(self) -> ActionLogService:
        if self._action_log is None:
            self._action_log = get_action_log_service()
        return self._action_log

    def initialize(self):
        if self.scheduler is not None:
            return

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300,
            }
        )

        for loop in self.loops.values():
            self.scheduler.add_job(
                self.run_loop,
                trigger=loop.trigger,
                args=[loop.name],
                id=f'agent_{loop.name}',
                name=loop.description,
                replace_existing=True,
            )

        logger.info(f"Agent scheduler initialized with {len(self.loops)} loops")

    async def start(self) -> dict:
        """Activate every loop, then run the priority loop once before returning"""
        if self.scheduler is None:
            self.initialize()

        self._run_flag = True
        if not self._is_running:
            if self.scheduler.state == STATE_PAUSED:
                self.scheduler.resume()
            else:
                self.scheduler.start()
            self._is_running = True
            logger.info("Agent scheduler started")

        return await self.run_loop(self.priority_loop)

    def stop(self):
        """No new iterations start; in-flight ones keep running until they finish"""
        self._run_flag = False
        if self.scheduler and self._is_running:
            # pause, not shutdown: APScheduler's shutdown cancels in-flight jobs
            self.scheduler.pause()
            self._is_running = False
            logger.info("Agent scheduler stopped")

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no loop iteration is in flight; False on timeout"""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Loops still running after {timeout}s: {sorted(self._running)}")
            return False

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop, drain in-flight iterations, then release APScheduler.

        Callers close clients and the store only after this returns. Returns
        False when the drain timed out.
        """
        self.stop()
        idle = await self.wait_idle(timeout)
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Agent scheduler shut down" if idle else "Agent scheduler shut down with loops in flight")
        return idle

    @property
    def is_running(self) -> bool:
        return self._is_running

    def is_loop_running(self, name: str) -> bool:
        return name in self._running

    # ── loop execution ──

    async def run_loop(self, name: str) -> dict:
        loop = self.loops.get(name)
        if loop is None:
            raise ValueError(f"Unknown loop: {name}")

        if not self._run_flag:
            logger.info(f"Loop {name} fired after stop, ignoring")
            return {"status": "stopped", "loop": name}

        # no await between the check and the add
        if name in self._running:
            logger.warning(f"Loop {name} still running, skipping this firing")
            return {"status": "skipped", "loop": name, "reason": "already_running"}
        self._running.add(name)
        self._idle.clear()

        started = utc_now()
        self._last_runs[name] = started
        try:
            logger.info(f"Loop {name} starting")
            result = await loop.runner()
            outcome = {"status": "success", "loop": name, "result": result}
            logger.info(f"Loop {name} completed in {(utc_now() - started).total_seconds():.1f}s")
        except Exception as e:
            logger.error(f"Loop {name} failed: {e}", exc_info=True)
            outcome = {"status": "failed", "loop": name, "error": str(e)}
            await self._record_failure(loop, e)
        finally:
            self._running.discard(name)
            if not self._running:
                self._idle.set()

        self._last_results[name] = {**outcome, "run_at": started.isoformat()}
        return outcome

    async def _record_failure(self, loop: AgentLoop, error: Exception):
        try:
            await self.action_log.record_action(
                loop.failure_type,
                summary=f"Loop {loop.name} failed: {type(error).__name__}",
                subject_id=f"loop:{loop.name}",
                metadata={"loop": loop.name, "error_type": type(error).__name__},
                outcome=ActionOutcome.FAILED,
                error=str(error)[:2000],
            )
        except Exception as record_error:
            logger.error(f"Could not record failure of loop {loop.name}: {record_error}", exc_info=True)

    async def trigger(self, name: str) -> dict:
        """Manual firing, same path as the scheduled one"""
        logger.info(f"Manual trigger: {name}")
        return await self.run_loop(name)

    def get_status(self) -> dict:
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = getattr(job, 'next_run_time', None)
                jobs.append({
                    'id': job.id,
                    'name': job.name,
                    'next_run': next_run.isoformat() if next_run else None,
                })

        return {
            'is_running': self._is_running,
            'run_flag': self._run_flag,
            'running_loops': sorted(self._running),
            'last_runs': {k: v.isoformat() for k, v in self._last_runs.items()},
            'last_results': self._last_results,
            'jobs': jobs,
        }


_agent_scheduler: Optional[AgentScheduler] = None


def get_agent_scheduler() -> AgentScheduler:
    global _agent_scheduler
    if _agent_scheduler is None:
        _agent_scheduler = AgentScheduler()
    return _agent_scheduler
