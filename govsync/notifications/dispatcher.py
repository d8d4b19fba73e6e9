"""Notification dispatcher: one delivery attempt per pending job per pass."""

from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from govsync.core.errors import DeliveryError
from govsync.core.logging import get_logger
from govsync.core.time_utils import ensure_utc, utcnow
from govsync.models.dao import Dao, DaoHandler
from govsync.models.notification import Channel, DispatchState, Notification, NotificationType, Subscription, User
from govsync.models.proposal import Proposal, ProposalState
from govsync.notifications import payloads
from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage
from govsync.notifications.ladder import PENDING_STATES, DispatchEvent, event_for, transition
from govsync.notifications.payloads import ProposalContext

log = get_logger("dispatcher")

# "ended" jobs that first rewrite the earlier "new proposal" message on the same channel
PREVIOUS_TYPE = {
    NotificationType.ENDED_PROPOSAL_DISCORD: NotificationType.NEW_PROPOSAL_DISCORD,
    NotificationType.ENDED_PROPOSAL_TELEGRAM: NotificationType.NEW_PROPOSAL_TELEGRAM,
}

BULLETIN_LOOKBACK = timedelta(days=1)
BULLETIN_ENDING_SOON = timedelta(days=3)


@dataclass
class _Attempt:
    job: Notification
    message: OutboundMessage
    previous: Optional[MessageRef] = None
    edit: Optional[OutboundMessage] = None


@dataclass
class _Skip:
    """Resolved without contacting the channel."""

    job: Notification
    event: DispatchEvent
    reason: str


_Result = Tuple[DispatchEvent, Optional[MessageRef], Optional[str]]


class NotificationDispatcher:
    """Drives pending notification jobs through the retry ladder.

    Each pass selects only non-terminal jobs, makes at most one attempt per
    job and commits each job's new state on its own. Pacing between calls is
    left to each channel's pacer; email jobs are sent concurrently, capped by
    a semaphore.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        channels: Dict[Channel, DeliveryChannel],
        url_shortener: Optional[str] = None,
        bulletin_template: str = "daily-bulletin",
        quorum_template: str = "quorum-alert",
        email_max_concurrency: int = 10,
        batch_size: int = 500,
    ):
        self.session_factory = session_factory
        self.channels = channels
        self.url_shortener = url_shortener
        self.bulletin_template = bulletin_template
        self.quorum_template = quorum_template
        self.email_max_concurrency = max(1, email_max_concurrency)
        self.batch_size = batch_size

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------
    async def dispatch_pass(self, channel: Optional[Channel] = None, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run one pass and return how many jobs ended in each state."""
        now = now or utcnow()
        counts: Counter = Counter()

        with self.session_factory() as db:
            grouped: Dict[Channel, List[Notification]] = defaultdict(list)
            for job in self._pending(db, channel):
                grouped[job.type.channel].append(job)

            for chan, jobs in grouped.items():
                delivery = self.channels.get(chan)
                if delivery is None:
                    log.warning(f"No {chan.value} channel configured; {len(jobs)} jobs left pending")
                    continue
                if chan is Channel.EMAIL:
                    await self._dispatch_concurrently(db, delivery, jobs, now, counts)
                else:
                    for job in jobs:
                        await self._dispatch_one(db, delivery, job, now, counts)

        if counts:
            log.info(f"Dispatch pass finished: {dict(counts)}")
        return dict(counts)

    async def run_forever(self, interval: float) -> None:
        log.info(f"Notification dispatcher started (interval: {interval}s)")
        while True:
            try:
                await self.dispatch_pass()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                log.info("Notification dispatcher cancelled")
                break
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Dispatch pass error: {exc}")
                await asyncio.sleep(interval)

    async def aclose(self) -> None:
        for delivery in self.channels.values():
            await delivery.aclose()

    def _pending(self, db: Session, channel: Optional[Channel]) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.dispatch_state.in_(PENDING_STATES))
            .order_by(Notification.created_at, Notification.id)
            .limit(self.batch_size)
        )
        if channel is not None:
            stmt = stmt.where(Notification.type.in_([t for t in NotificationType if t.channel is channel]))
        return list(db.scalars(stmt))

    async def _dispatch_one(
        self, db: Session, delivery: DeliveryChannel, job: Notification, now: datetime, counts: Counter
    ) -> None:
        prepared = await self._prepare(db, delivery, job, now)
        if isinstance(prepared, _Skip):
            self._apply(job, prepared.event, None, prepared.reason, counts)
        else:
            self._apply(job, *await self._send(delivery, prepared), counts)
        db.commit()

    async def _dispatch_concurrently(
        self, db: Session, delivery: DeliveryChannel, jobs: List[Notification], now: datetime, counts: Counter
    ) -> None:
        prepared = [await self._prepare(db, delivery, job, now) for job in jobs]
        for skip in (p for p in prepared if isinstance(p, _Skip)):
            self._apply(skip.job, skip.event, None, skip.reason, counts)
        db.commit()

        attempts = [p for p in prepared if isinstance(p, _Attempt)]
        semaphore = asyncio.Semaphore(self.email_max_concurrency)

        async def guarded(attempt: _Attempt) -> _Result:
            async with semaphore:
                return await self._send(delivery, attempt)

        results = await asyncio.gather(*(guarded(a) for a in attempts))
        for attempt, result in zip(attempts, results):
            self._apply(attempt.job, *result, counts)
            db.commit()

    # -------------------------------------------------------------------------
    # One job
    # -------------------------------------------------------------------------
    async def _prepare(
        self, db: Session, delivery: DeliveryChannel, job: Notification, now: datetime
    ) -> Union[_Attempt, _Skip]:
        user = db.get(User, job.user_id)
        target = delivery.target_for(user) if user is not None else None
        if not target:
            return _Skip(job, DispatchEvent.TARGET_GONE, f"user has no {delivery.channel.value} handle")

        if job.type.is_bulletin:
            body = self._bulletin(db, user, now)
            if body is None:
                return _Skip(job, DispatchEvent.TARGET_GONE, "nothing to report")
            return _Attempt(job, OutboundMessage(target, body))

        ctx = self._context(db, job.proposal_id)
        if ctx is None:
            if job.type in PREVIOUS_TYPE:
                await self._retract_previous(db, delivery, job, target)
            return _Skip(job, DispatchEvent.TARGET_GONE, "proposal no longer exists")

        if job.type is NotificationType.QUORUM_NOT_REACHED_EMAIL and payloads.quorum_reached(ctx.proposal):
            return _Skip(job, DispatchEvent.TARGET_GONE, "quorum already reached")

        body = self._body(job.type, ctx)
        previous = self._previous_ref(db, job, target) if job.type in PREVIOUS_TYPE else None
        if previous is None:
            return _Attempt(job, OutboundMessage(target, body))

        if job.type is NotificationType.ENDED_PROPOSAL_TELEGRAM:
            body = {**body, "reply_to_message_id": int(previous.message_id)}
            edit = payloads.telegram_body(job.type, ctx)
        else:
            edit = payloads.discord_ended_embed(ctx)
        return _Attempt(job, OutboundMessage(target, body), previous, OutboundMessage(target, edit))

    async def _send(self, delivery: DeliveryChannel, attempt: _Attempt) -> _Result:
        if attempt.previous is not None and attempt.edit is not None:
            try:
                await delivery.edit(attempt.previous, attempt.edit)
            except DeliveryError as exc:
                log.warning(f"Could not update earlier message for job {attempt.job.id}: {exc}")

        try:
            ref = await delivery.send(attempt.message)
        except DeliveryError as exc:
            return event_for(exc), None, str(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Unexpected error delivering job {attempt.job.id}: {exc}")
            return DispatchEvent.TRANSIENT_FAILURE, None, str(exc)
        return DispatchEvent.DELIVERED, ref, None

    def _apply(
        self,
        job: Notification,
        event: DispatchEvent,
        ref: Optional[MessageRef],
        error: Optional[str],
        counts: Counter,
    ) -> None:
        before = job.dispatch_state
        after = transition(before, event)
        job.dispatch_state = after
        job.error_message = error
        if ref is not None:
            job.channel_message_ref = ref.message_id
        counts[after.value] += 1

        if after is DispatchState.FAILED:
            log.error(f"Notification {job.id} ({job.type.value}) failed after {before.value}: {error}")
        elif event is DispatchEvent.REJECTED:
            log.error(f"Notification {job.id} ({job.type.value}) rejected by channel, deleted: {error}")
        elif after is DispatchState.DELETED:
            log.info(f"Notification {job.id} ({job.type.value}) deleted: {error}")
        elif event is DispatchEvent.TRANSIENT_FAILURE:
            log.warning(f"Notification {job.id} ({job.type.value}) {before.value} -> {after.value}: {error}")

    async def _retract_previous(self, db: Session, delivery: DeliveryChannel, job: Notification, target: str) -> None:
        previous = self._previous_ref(db, job, target)
        if previous is None:
            return
        try:
            await delivery.delete(previous)
        except DeliveryError as exc:
            log.warning(f"Could not delete earlier message for job {job.id}: {exc}")

    def _previous_ref(self, db: Session, job: Notification, target: str) -> Optional[MessageRef]:
        message_id = db.scalar(
            select(Notification.channel_message_ref).where(
                Notification.user_id == job.user_id,
                Notification.proposal_id == job.proposal_id,
                Notification.type == PREVIOUS_TYPE[job.type],
                Notification.dispatch_state == DispatchState.DISPATCHED,
                Notification.channel_message_ref.is_not(None),
            )
        )
        return MessageRef(target=target, message_id=message_id) if message_id else None

    # -------------------------------------------------------------------------
    # Bodies
    # -------------------------------------------------------------------------
    def _context(self, db: Session, proposal_id: Any) -> Optional[ProposalContext]:
        proposal = db.get(Proposal, proposal_id) if proposal_id is not None else None
        if proposal is None:
            return None
        dao = db.get(Dao, proposal.dao_id)
        handler = db.get(DaoHandler, proposal.dao_handler_id)
        if dao is None or handler is None:
            return None
        return ProposalContext(proposal, dao, handler.type, payloads.short_url(proposal, self.url_shortener))

    def _body(self, kind: NotificationType, ctx: ProposalContext) -> Dict[str, Any]:
        channel = kind.channel
        if channel is Channel.DISCORD:
            return payloads.discord_body(kind, ctx)
        if channel is Channel.SLACK:
            return payloads.slack_body(kind, ctx)
        if channel is Channel.TELEGRAM:
            return payloads.telegram_body(kind, ctx)
        return payloads.quorum_email_body(self.quorum_template, ctx)

    def _bulletin(self, db: Session, user: User, now: datetime) -> Optional[Dict[str, Any]]:
        """Ending-soon, new and recently ended proposals of the user's DAOs; None when empty."""
        dao_ids = select(Subscription.dao_id).where(Subscription.user_id == user.id)
        rows = db.execute(
            select(Proposal, Dao, DaoHandler.type)
            .join(Dao, Proposal.dao_id == Dao.id)
            .join(DaoHandler, Proposal.dao_handler_id == DaoHandler.id)
            .where(Proposal.dao_id.in_(dao_ids), Proposal.visible.is_(True))
            .order_by(Proposal.time_end)
        ).all()

        ending_soon: List[ProposalContext] = []
        new: List[ProposalContext] = []
        ended: List[ProposalContext] = []
        for proposal, dao, handler_type in rows:
            ctx = ProposalContext(proposal, dao, handler_type, payloads.short_url(proposal, self.url_shortener))
            time_end = ensure_utc(proposal.time_end)
            if now - BULLETIN_LOOKBACK <= time_end < now:
                ended.append(ctx)
            elif proposal.state is ProposalState.ACTIVE and now <= time_end <= now + BULLETIN_ENDING_SOON:
                ending_soon.append(ctx)
            elif ensure_utc(proposal.time_created) >= now - BULLETIN_LOOKBACK and time_end >= now:
                new.append(ctx)

        if not (ending_soon or new or ended):
            return None
        return payloads.bulletin_body(self.bulletin_template, now, ending_soon, new, ended)
