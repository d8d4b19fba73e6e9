"""Worker entrypoint - Standalone script for one-off refreshes and dispatch passes.

Usage:
    python -m govsync.worker_entrypoint chain_proposals <source_id>
    python -m govsync.worker_entrypoint snapshot_votes <source_id> <voter> [<voter> ...]
    python -m govsync.worker_entrypoint dispatch [discord|slack|telegram|email]
"""

import asyncio
import sys
from typing import List, Optional

from govsync.core.config import RefreshKind, settings
from govsync.core.db import SessionLocal
from govsync.core.logging import get_logger
from govsync.ingestion.registry import FetcherRegistry
from govsync.models.notification import Channel
from govsync.services.feedback import RefreshFeedback
from govsync.services.refresh_service import RefreshService
from govsync.sync.queue import RefreshOutcome, WorkItem

logger = get_logger("worker_entrypoint")


async def run_refresh(kind: RefreshKind, source_id: str, voters: List[str]) -> RefreshOutcome:
    """Run one refresh and feed its outcome back, as the scheduler would."""
    logger.info(f"Starting {kind.value} refresh for source: {source_id}")
    config = settings.sync_config()
    fetchers = FetcherRegistry.build(
        config,
        rpc_url=settings.RPC_URL,
        snapshot_url=settings.SNAPSHOT_GRAPHQL_URL,
        snapshot_api_key=settings.SNAPSHOT_API_KEY,
    )
    try:
        with SessionLocal() as db:
            outcome = await RefreshService(db, config, fetchers).run(source_id, kind, voters)
    finally:
        await fetchers.aclose()

    item = WorkItem(source_id=source_id, kind=kind, voters=tuple(v.lower() for v in voters))
    RefreshFeedback(SessionLocal, config).record(item, outcome)
    logger.info(f"Refresh completed for {source_id}: ok={outcome.ok}")
    return outcome


async def run_dispatch(channel: Optional[Channel]) -> dict:
    """Run a single dispatcher pass."""
    # Imported here so a refresh-only worker does not build channel clients
    from govsync.main import build_dispatcher

    dispatcher = build_dispatcher(settings.sync_config())
    try:
        return await dispatcher.dispatch_pass(channel)
    finally:
        await dispatcher.aclose()


def main():
    """Main entry point for the worker."""
    args = sys.argv[1:]
    if not args:
        logger.error("Usage: worker_entrypoint <kind> <source_id> [voters...] | dispatch [channel]")
        sys.exit(1)

    if args[0] == "dispatch":
        try:
            channel = Channel(args[1]) if len(args) > 1 else None
        except ValueError:
            logger.error(f"Invalid channel: {args[1]}. Must be one of: {', '.join(c.value for c in Channel)}")
            sys.exit(1)
        result = asyncio.run(run_dispatch(channel))
        logger.info(f"Dispatch pass completed: {result}")
        return result

    try:
        kind = RefreshKind(args[0])
    except ValueError:
        logger.error(f"Invalid kind: {args[0]}. Must be one of: {', '.join(k.value for k in RefreshKind)}")
        sys.exit(1)
    if len(args) < 2:
        logger.error(f"{kind.value} needs a source_id")
        sys.exit(1)

    outcome = asyncio.run(run_refresh(kind, args[1], args[2:]))

    # Exit with error code if the refresh failed
    if not outcome.ok:
        sys.exit(1)
    return outcome


if __name__ == "__main__":
    main()
