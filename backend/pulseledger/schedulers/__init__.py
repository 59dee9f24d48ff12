"""Schedulers package for background tasks"""

from .agent_scheduler import AgentLoop, AgentScheduler, get_agent_scheduler

__all__ = [
    'AgentLoop', 'AgentScheduler', 'get_agent_scheduler',
]
