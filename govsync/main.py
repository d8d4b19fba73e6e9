from pathlib import Path
from contextlib import asynccontextmanager
import asyncio
from typing import Dict, Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from govsync.api.routes import health, notifications, refresh, stats
from govsync.core.config import SyncConfig, settings
from govsync.core.db import SessionLocal
from govsync.core.logging import get_logger
from govsync.ingestion.registry import FetcherRegistry
from govsync.models.notification import Channel
from govsync.notifications.channels import (
    DeliveryChannel,
    DiscordChannel,
    EmailChannel,
    SlackChannel,
    TelegramChannel,
)
from govsync.notifications.dispatcher import NotificationDispatcher
from govsync.notifications.pacing import AsyncPacer
from govsync.services.executors import HttpExecutor, LocalExecutor
from govsync.services.feedback import RefreshFeedback
from govsync.services.queue_builder import QueueBuilder
from govsync.sync.queue import RefreshScheduler


log = get_logger("app")


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


def build_channels(config: SyncConfig) -> Dict[Channel, DeliveryChannel]:
    """Webhook channels are always available; Telegram and email only with their credentials.

    Jobs for a channel that is not registered stay pending until it is configured.
    """
    timeout = config.request_timeout_seconds
    channels: Dict[Channel, DeliveryChannel] = {
        Channel.DISCORD: DiscordChannel(pacer=AsyncPacer(settings.DISCORD_MIN_INTERVAL), timeout=timeout),
        Channel.SLACK: SlackChannel(pacer=AsyncPacer(settings.SLACK_MIN_INTERVAL), timeout=timeout),
    }

    if settings.TELEGRAM_BOT_TOKEN:
        channels[Channel.TELEGRAM] = TelegramChannel(
            settings.TELEGRAM_BOT_TOKEN,
            pacer=AsyncPacer(settings.TELEGRAM_MIN_INTERVAL),
            timeout=timeout,
        )
    else:
        log.warning("TELEGRAM_BOT_TOKEN not set; telegram notifications stay pending")

    if settings.POSTMARK_TOKEN:
        channels[Channel.EMAIL] = EmailChannel(
            settings.POSTMARK_TOKEN,
            settings.EMAIL_FROM,
            pacer=AsyncPacer(settings.EMAIL_MIN_INTERVAL),
            timeout=timeout,
        )
    else:
        log.warning("POSTMARK_TOKEN not set; email notifications stay pending")

    return channels


def build_dispatcher(config: SyncConfig) -> NotificationDispatcher:
    return NotificationDispatcher(
        SessionLocal,
        build_channels(config),
        url_shortener=settings.PROPOSAL_URL_SHORTENER,
        bulletin_template=settings.EMAIL_BULLETIN_TEMPLATE,
        quorum_template=settings.EMAIL_QUORUM_TEMPLATE,
        email_max_concurrency=settings.EMAIL_MAX_CONCURRENCY,
    )


def build_scheduler(config: SyncConfig, fetchers: FetcherRegistry):
    """Scheduler plus the executor it owns (closed on shutdown)."""
    if settings.REFRESH_EXECUTOR_URL:
        log.info(f"Refreshes delegated to {settings.REFRESH_EXECUTOR_URL}")
        executor = HttpExecutor(settings.REFRESH_EXECUTOR_URL, timeout=config.request_timeout_seconds)
    else:
        executor = LocalExecutor(SessionLocal, config, fetchers)

    scheduler = RefreshScheduler(
        config,
        source=QueueBuilder(SessionLocal, config),
        executor=executor,
        feedback=RefreshFeedback(SessionLocal, config),
    )
    return scheduler, executor


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    config = settings.sync_config()
    fetchers = FetcherRegistry.build(
        config,
        rpc_url=settings.RPC_URL,
        snapshot_url=settings.SNAPSHOT_GRAPHQL_URL,
        snapshot_api_key=settings.SNAPSHOT_API_KEY,
    )
    app.state.sync_config = config
    app.state.fetchers = fetchers

    scheduler: Optional[RefreshScheduler] = None
    executor = None
    if settings.SCHEDULER_ENABLED:
        log.info("Starting refresh scheduler...")
        scheduler, executor = build_scheduler(config, fetchers)
        scheduler.start()
    else:
        log.info("Refresh scheduler is disabled (SCHEDULER_ENABLED=false)")
    app.state.scheduler = scheduler

    dispatcher: Optional[NotificationDispatcher] = None
    dispatcher_task: Optional[asyncio.Task] = None
    if settings.DISPATCHER_ENABLED:
        log.info("Starting notification dispatcher...")
        dispatcher = build_dispatcher(config)
        dispatcher_task = asyncio.create_task(dispatcher.run_forever(settings.DISPATCH_INTERVAL_SECONDS))
    else:
        log.info("Notification dispatcher is disabled (DISPATCHER_ENABLED=false)")
    app.state.dispatcher_task = dispatcher_task

    yield

    # Shutdown
    log.info("Shutting down services...")

    if scheduler:
        await scheduler.stop()
    if isinstance(executor, HttpExecutor):
        await executor.aclose()

    if dispatcher_task:
        log.info("Cancelling notification dispatcher...")
        dispatcher_task.cancel()
        try:
            await dispatcher_task
        except asyncio.CancelledError:
            pass
    if dispatcher:
        await dispatcher.aclose()

    await fetchers.aclose()

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="Governance Sync",
    description="Incremental governance proposal sync and notification delivery",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


app.include_router(health.router)
app.include_router(notifications.router)
app.include_router(refresh.router)
app.include_router(stats.router)
