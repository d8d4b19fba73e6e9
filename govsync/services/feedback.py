"""Feeds refresh outcomes back into rate control and refresh status."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from govsync.core.checkpoints import CheckpointStore
from govsync.core.config import SyncConfig
from govsync.core.logging import get_logger
from govsync.core.time_utils import utcnow
from govsync.models.checkpoints import RefreshStatus
from govsync.sync.queue import RefreshOutcome, WorkItem
from govsync.sync.rate import RateController

log = get_logger("feedback")


class RefreshFeedback:
    """Applies one outcome: rate up or down, ``done`` or ``new``, failure streak.

    A source whose streak reaches the stuck threshold while already at the
    minimum rate is reported at ERROR, which reaches the Slack sink when one
    is configured.
    """

    def __init__(self, session_factory: Callable[[], Session], config: SyncConfig):
        self.session_factory = session_factory
        self.config = config

    def record(self, item: WorkItem, outcome: RefreshOutcome, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        tuning = self.config.tuning(item.kind)
        controller = RateController(tuning)

        with self.session_factory() as db:
            store = CheckpointStore(db, self.config)
            row = store.ensure(item.source_id, item.kind)
            old_rate = row.rate

            if item.kind.is_votes:
                results = outcome.voters or {v: outcome.ok for v in item.voters}
                succeeded = sum(1 for ok in results.values() if ok)
                failed = len(results) - succeeded
                if not results:
                    succeeded, failed = (1, 0) if outcome.ok else (0, 1)

                rate = controller.apply_batch(old_rate, succeeded, failed)
                ok = succeeded > 0
                for voter, voter_ok in results.items():
                    store.set(
                        item.source_id,
                        item.kind,
                        voter=voter,
                        status=RefreshStatus.DONE if voter_ok else RefreshStatus.NEW,
                        refreshed_at=now,
                    )
            else:
                ok = outcome.ok
                rate = controller.apply(old_rate, ok)

            row = store.set(
                item.source_id,
                item.kind,
                rate=rate,
                status=RefreshStatus.DONE if ok else RefreshStatus.NEW,
                refreshed_at=now,
            )
            row.consecutive_failures = 0 if ok else row.consecutive_failures + 1
            failures = row.consecutive_failures
            db.commit()

        log.debug(f"{item.kind.value} {item.source_id} ok={ok} rate={old_rate}->{rate}")

        threshold = self.config.stuck_source_threshold
        if failures and threshold and failures % threshold == 0 and rate == tuning.rate_min:
            log.error(
                f"Source {item.source_id} stuck on {item.kind.value}: "
                f"{failures} consecutive failures at minimum rate {rate}"
            )
