"""
Configuration - loaded from environment variables / .env
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "pulseledger"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "./logs"
    log_backup_count: int = 30

    # Local store (SQLite by default, PostgreSQL via asyncpg optional)
    database_url: str = "sqlite+aiosqlite:///./pulseledger.db"

    # Ecosystem API (data source + action execution target)
    ecosystem_api_base: str = "https://agents.colosseum.com/api"
    agent_api_key: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: str = "pulseledger"
    own_project_id: Optional[int] = None
    ecosystem_timeout_seconds: float = 10.0

    # Reasoning capability
    anthropic_api_key: Optional[str] = None
    reasoning_model: str = "claude-sonnet-4-20250514"
    reasoning_max_tokens: int = 800

    # Public ledger (Solana JSON-RPC)
    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_network: str = "devnet"
    wallet_private_key: Optional[str] = None  # base58, writes disabled when unset
    ledger_namespace: str = "pulseledger/v1"
    ledger_payload_limit: int = 900
    ledger_hash_prefix_length: int = 16
    ledger_confirm_timeout_seconds: float = 30.0
    ledger_history_limit: int = 200

    # Rate-limit retry for write calls
    rate_limit_max_retries: int = 3
    rate_limit_delay_seconds: float = 30.0

    # Decision gate defaults
    gate_required_checks: int = 6
    novelty_window_hours: int = 48
    novelty_similarity_cutoff: float = 0.8
    min_action_interval_minutes: int = 60
    relevance_threshold: float = 0.7
    min_data_points: int = 5
    relevance_keywords: List[str] = ["agent", "solana", "project", "team", "build", "hackathon"]

    # Vote scoring defaults
    vote_objective_weight: float = 0.4
    vote_model_weight: float = 0.6
    vote_threshold: float = 5.5
    max_votes_per_day: int = 10
    vote_delay_seconds: float = 2.0

    # Comment responses on our own posts
    comment_check_posts: int = 5
    comments_per_post: int = 10
    max_responses_per_cycle: int = 3
    max_responses_per_hour: int = 3
    min_comment_length: int = 20
    response_delay_seconds: float = 5.0

    # Proactive comments on other agents' posts
    forum_scan_limit: int = 30
    forum_min_post_length: int = 50
    max_forum_comments_per_cycle: int = 3
    max_forum_comments_per_day: int = 12
    forum_comment_delay_seconds: float = 8.0

    # Strategy defaults
    default_posting_tone: str = "enthusiastic"
    default_insight_focus: str = "trends"
    default_max_daily_actions: int = 5
    default_optimal_hour: int = 9
    adaptation_window_hours: int = 24
    adaptation_history_limit: int = 20

    # Scheduler
    data_refresh_minutes: int = 5
    insight_cycle_minute: int = 0
    voting_cycle_hours: int = 4
    adaptation_cycle_hours: int = 6
    comment_response_minutes: int = 30
    forum_engagement_hours: int = 3
    snapshot_hours: str = "9,21"
    shutdown_grace_seconds: float = 120.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def database_type(self) -> str:
        """sqlite / postgresql, derived from the URL scheme"""
        return "sqlite" if self.database_url.startswith("sqlite") else "postgresql"

    @property
    def ledger_writes_enabled(self) -> bool:
        return bool(self.wallet_private_key)


# Global settings instance
settings = Settings()
