from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class RefreshKind(str, Enum):
    CHAIN_PROPOSALS = "chain_proposals"
    CHAIN_VOTES = "chain_votes"
    SNAPSHOT_PROPOSALS = "snapshot_proposals"
    SNAPSHOT_VOTES = "snapshot_votes"

    @property
    def is_chain(self) -> bool:
        return self in (RefreshKind.CHAIN_PROPOSALS, RefreshKind.CHAIN_VOTES)

    @property
    def is_votes(self) -> bool:
        return self in (RefreshKind.CHAIN_VOTES, RefreshKind.SNAPSHOT_VOTES)


@dataclass(frozen=True)
class SyncTuning:
    """Per-kind scheduling knobs, built once from settings."""

    kind: RefreshKind
    rate_min: int
    rate_max: int
    rate_initial: int
    success_pct: int
    failure_pct: int
    interval_seconds: int
    retry_seconds: int
    pool_size: int
    queue_maxsize: int
    voters_per_item: int = 0

    def clamp(self, rate: int) -> int:
        return max(self.rate_min, min(rate, self.rate_max))


@dataclass(frozen=True)
class SyncConfig:
    """Process-wide tunables handed to the scheduler, refresh service and dispatcher."""

    tunings: dict
    safety_lag: int = 10
    seconds_per_block: int = 12
    snapshot_page_size: int = 100
    snapshot_persist_threshold: int = 60 * 60
    stuck_source_threshold: int = 20
    producer_tick_seconds: float = 1.0
    request_timeout_seconds: float = 60.0

    def tuning(self, kind: RefreshKind) -> SyncTuning:
        return self.tunings[kind]


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    # Comma separated stdlib loggers kept at WARNING (chatty HTTP and SQL clients)
    QUIET_LOGGERS: str = "httpx,httpcore,sqlalchemy.engine"
    SLACK_WEBHOOK_URL: str | None = None

    # Upstreams
    RPC_URL: str = "http://localhost:8545"
    SNAPSHOT_GRAPHQL_URL: str = "https://hub.snapshot.org/graphql"
    SNAPSHOT_API_KEY: str | None = None
    REQUEST_TIMEOUT_SECONDS: float = 60.0

    # When set, the scheduler asks a remote refresh service instead of refreshing in-process
    REFRESH_EXECUTOR_URL: str | None = None

    # Background loops
    SCHEDULER_ENABLED: bool = True
    DISPATCHER_ENABLED: bool = True
    PRODUCER_TICK_SECONDS: float = 1.0
    DISPATCH_INTERVAL_SECONDS: int = 60

    # Chain scanning
    SAFETY_LAG: int = 10
    SECONDS_PER_BLOCK: int = 12

    # Snapshot
    SNAPSHOT_PAGE_SIZE: int = 100
    SNAPSHOT_PERSIST_THRESHOLD: int = 60 * 60

    STUCK_SOURCE_THRESHOLD: int = 20
    QUEUE_MAXSIZE: int = 100
    VOTERS_PER_ITEM: int = 50

    CHAIN_PROPOSALS_RATE_MIN: int = 1_000
    CHAIN_PROPOSALS_RATE_MAX: int = 1_000_000
    CHAIN_PROPOSALS_RATE_INITIAL: int = 10_000
    CHAIN_PROPOSALS_SUCCESS_PCT: int = 10
    CHAIN_PROPOSALS_FAILURE_PCT: int = 20
    CHAIN_PROPOSALS_INTERVAL_SECONDS: int = 60
    CHAIN_PROPOSALS_RETRY_SECONDS: int = 10
    CHAIN_PROPOSALS_POOL_SIZE: int = 5

    CHAIN_VOTES_RATE_MIN: int = 100
    CHAIN_VOTES_RATE_MAX: int = 1_000_000
    CHAIN_VOTES_RATE_INITIAL: int = 10_000
    CHAIN_VOTES_SUCCESS_PCT: int = 10
    CHAIN_VOTES_FAILURE_PCT: int = 25
    CHAIN_VOTES_INTERVAL_SECONDS: int = 5 * 60
    CHAIN_VOTES_RETRY_SECONDS: int = 30
    CHAIN_VOTES_POOL_SIZE: int = 5

    SNAPSHOT_PROPOSALS_RATE_MIN: int = 10
    SNAPSHOT_PROPOSALS_RATE_MAX: int = 100
    SNAPSHOT_PROPOSALS_RATE_INITIAL: int = 100
    SNAPSHOT_PROPOSALS_SUCCESS_PCT: int = 10
    SNAPSHOT_PROPOSALS_FAILURE_PCT: int = 25
    SNAPSHOT_PROPOSALS_INTERVAL_SECONDS: int = 60
    SNAPSHOT_PROPOSALS_RETRY_SECONDS: int = 10
    SNAPSHOT_PROPOSALS_POOL_SIZE: int = 5

    SNAPSHOT_VOTES_RATE_MIN: int = 10
    SNAPSHOT_VOTES_RATE_MAX: int = 1_000
    SNAPSHOT_VOTES_RATE_INITIAL: int = 100
    SNAPSHOT_VOTES_SUCCESS_PCT: int = 10
    SNAPSHOT_VOTES_FAILURE_PCT: int = 25
    SNAPSHOT_VOTES_INTERVAL_SECONDS: int = 5 * 60
    SNAPSHOT_VOTES_RETRY_SECONDS: int = 30
    SNAPSHOT_VOTES_POOL_SIZE: int = 5

    # Delivery channels
    DISCORD_MIN_INTERVAL: float = 0.1
    SLACK_MIN_INTERVAL: float = 0.1
    TELEGRAM_MIN_INTERVAL: float = 0.1
    EMAIL_MIN_INTERVAL: float = 0.0
    EMAIL_MAX_CONCURRENCY: int = 10
    TELEGRAM_BOT_TOKEN: str | None = None
    POSTMARK_TOKEN: str | None = None
    EMAIL_FROM: str = "info@senatelabs.xyz"
    EMAIL_BULLETIN_TEMPLATE: str = "daily-bulletin"
    EMAIL_QUORUM_TEMPLATE: str = "quorum-alert"
    PROPOSAL_URL_SHORTENER: str | None = None

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    def tuning(self, kind: RefreshKind) -> SyncTuning:
        prefix = kind.value.upper()
        return SyncTuning(
            kind=kind,
            rate_min=getattr(self, f"{prefix}_RATE_MIN"),
            rate_max=getattr(self, f"{prefix}_RATE_MAX"),
            rate_initial=getattr(self, f"{prefix}_RATE_INITIAL"),
            success_pct=getattr(self, f"{prefix}_SUCCESS_PCT"),
            failure_pct=getattr(self, f"{prefix}_FAILURE_PCT"),
            interval_seconds=getattr(self, f"{prefix}_INTERVAL_SECONDS"),
            retry_seconds=getattr(self, f"{prefix}_RETRY_SECONDS"),
            pool_size=getattr(self, f"{prefix}_POOL_SIZE"),
            queue_maxsize=self.QUEUE_MAXSIZE,
            voters_per_item=self.VOTERS_PER_ITEM if kind.is_votes else 0,
        )

    def sync_config(self) -> SyncConfig:
        return SyncConfig(
            tunings={kind: self.tuning(kind) for kind in RefreshKind},
            safety_lag=self.SAFETY_LAG,
            seconds_per_block=self.SECONDS_PER_BLOCK,
            snapshot_page_size=self.SNAPSHOT_PAGE_SIZE,
            snapshot_persist_threshold=self.SNAPSHOT_PERSIST_THRESHOLD,
            stuck_source_threshold=self.STUCK_SOURCE_THRESHOLD,
            producer_tick_seconds=self.PRODUCER_TICK_SECONDS,
            request_timeout_seconds=self.REQUEST_TIMEOUT_SECONDS,
        )


settings = Settings()
