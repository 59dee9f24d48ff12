from .leaderboard_snapshot import LeaderboardSnapshot

__all__ = [
    "LeaderboardSnapshot",
]
