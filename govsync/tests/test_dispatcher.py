"""Notification dispatcher tests"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import NOW
from govsync.core.errors import DeliveryRejected, DeliveryTargetGone, DeliveryTransient
from govsync.models import (
    Channel,
    DispatchState,
    Notification,
    NotificationType,
    Proposal,
    ProposalState,
    Subscription,
    User,
)
from govsync.notifications.channels.base import DeliveryChannel, MessageRef
from govsync.notifications.dispatcher import NotificationDispatcher
from govsync.notifications.pacing import AsyncPacer


class FakeChannel(DeliveryChannel):
    """Records calls; ``script`` lists errors (or None for success) for successive sends"""

    def __init__(self, channel, target_attr, script=(), delay=0.0):
        self.channel = channel
        self.target_attr = target_attr
        self.script = list(script)
        self.delay = delay
        self.pacer = AsyncPacer(0.0)
        self.sent = []
        self.edited = []
        self.deleted = []
        self.active = 0
        self.max_active = 0

    def target_for(self, user):
        return getattr(user, self.target_attr) or None

    async def send(self, message):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            self.sent.append(message)
            error = self.script.pop(0) if self.script else None
            if error is not None:
                raise error
            return MessageRef(target=message.target, message_id=f"m{len(self.sent)}")
        finally:
            self.active -= 1

    async def edit(self, ref, message):
        self.edited.append((ref, message))

    async def delete(self, ref):
        self.deleted.append(ref)

    async def aclose(self):
        pass


@pytest.fixture
def proposal(seeded):
    row = Proposal(
        external_id="42",
        dao_id="ens",
        dao_handler_id="ens-chain",
        name="Fund the public goods",
        choices=["For", "Against", "Abstain"],
        scores=[70.0, 30.0, 0.0],
        scores_total=100.0,
        quorum=50.0,
        state=ProposalState.ACTIVE,
        block_created=300,
        time_created=NOW - timedelta(hours=6),
        time_start=NOW - timedelta(hours=6),
        time_end=NOW + timedelta(days=2),
        url="https://x.org/p/42",
        visible=True,
    )
    seeded.add(row)
    seeded.add(
        User(
            id="u1",
            email="voter@example.org",
            discord_webhook="https://discord.test/api/webhooks/1/abc",
            telegram_chat_id="777",
        )
    )
    seeded.add(User(id="u2"))
    seeded.commit()
    return row


def add_job(session_factory, kind, proposal_id=None, user_id="u1", state=DispatchState.NOT_DISPATCHED, ref=None):
    with session_factory() as db:
        job = Notification(
            user_id=user_id, proposal_id=proposal_id, type=kind, dispatch_state=state, channel_message_ref=ref
        )
        db.add(job)
        db.commit()
        return job.id


def state_of(session_factory, job_id):
    with session_factory() as db:
        return db.get(Notification, job_id)


def dispatcher_with(session_factory, **channels):
    return NotificationDispatcher(session_factory, {Channel(name): ch for name, ch in channels.items()})


class TestDispatchPass:
    """Test one-attempt-per-pass delivery through the ladder"""

    @pytest.mark.asyncio
    async def test_successful_send_is_dispatched(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook")

        counts = await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        job = state_of(session_factory, job_id)
        assert counts == {"dispatched": 1}
        assert job.dispatch_state is DispatchState.DISPATCHED
        assert job.channel_message_ref == "m1"
        assert discord.sent[0].target == "https://discord.test/api/webhooks/1/abc"
        assert discord.sent[0].body["embeds"][0]["title"] == "Fund the public goods"

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_the_ladder(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook", script=[DeliveryTransient("503")] * 10)
        dispatcher = dispatcher_with(session_factory, discord=discord)

        states = []
        for _ in range(5):
            await dispatcher.dispatch_pass(now=NOW)
            states.append(state_of(session_factory, job_id).dispatch_state)

        assert states == [
            DispatchState.FIRST_RETRY,
            DispatchState.SECOND_RETRY,
            DispatchState.THIRD_RETRY,
            DispatchState.FAILED,
            DispatchState.FAILED,
        ]
        # no attempt once the job is terminal
        assert len(discord.sent) == 4
        assert state_of(session_factory, job_id).error_message == "503"

    @pytest.mark.asyncio
    async def test_success_on_a_retry(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(
            Channel.DISCORD, "discord_webhook", script=[DeliveryTransient("429"), DeliveryTransient("502"), None]
        )
        dispatcher = dispatcher_with(session_factory, discord=discord)

        for _ in range(3):
            await dispatcher.dispatch_pass(now=NOW)

        job = state_of(session_factory, job_id)
        assert job.dispatch_state is DispatchState.DISPATCHED
        assert job.error_message is None

    @pytest.mark.asyncio
    async def test_rejection_deletes_without_retry(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook", script=[DeliveryRejected("400 bad embed")])

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED
        assert len(discord.sent) == 1

    @pytest.mark.asyncio
    async def test_gone_webhook_deletes(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook", script=[DeliveryTargetGone("404")])

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED

    @pytest.mark.asyncio
    async def test_missing_proposal_deletes_without_attempt(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, uuid.uuid4())
        discord = FakeChannel(Channel.DISCORD, "discord_webhook")

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED
        assert discord.sent == []

    @pytest.mark.asyncio
    async def test_user_without_handle_deletes_without_attempt(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id, user_id="u2")
        discord = FakeChannel(Channel.DISCORD, "discord_webhook")

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED
        assert discord.sent == []

    @pytest.mark.asyncio
    async def test_jobs_for_unconfigured_channel_stay_pending(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_SLACK, proposal.id)

        await dispatcher_with(session_factory).dispatch_pass(now=NOW)

        assert state_of(session_factory, job_id).dispatch_state is DispatchState.NOT_DISPATCHED

    @pytest.mark.asyncio
    async def test_channel_filter(self, proposal, session_factory):
        discord_job = add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, proposal.id)
        telegram_job = add_job(session_factory, NotificationType.NEW_PROPOSAL_TELEGRAM, proposal.id)
        dispatcher = dispatcher_with(
            session_factory,
            discord=FakeChannel(Channel.DISCORD, "discord_webhook"),
            telegram=FakeChannel(Channel.TELEGRAM, "telegram_chat_id"),
        )

        await dispatcher.dispatch_pass(channel=Channel.TELEGRAM, now=NOW)

        assert state_of(session_factory, discord_job).dispatch_state is DispatchState.NOT_DISPATCHED
        assert state_of(session_factory, telegram_job).dispatch_state is DispatchState.DISPATCHED


class TestEndedJobs:
    """Test rewriting and retracting the earlier "new proposal" message"""

    @pytest.mark.asyncio
    async def test_ended_job_edits_earlier_message_then_sends(self, proposal, session_factory):
        add_job(
            session_factory,
            NotificationType.NEW_PROPOSAL_DISCORD,
            proposal.id,
            state=DispatchState.DISPATCHED,
            ref="999",
        )
        job_id = add_job(session_factory, NotificationType.ENDED_PROPOSAL_DISCORD, proposal.id)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook")

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        ref, edit = discord.edited[0]
        assert ref.message_id == "999"
        assert edit.body["embeds"][0]["fields"][0]["value"] == "For 70%"
        assert "just ended" in discord.sent[0].body["content"]
        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DISPATCHED

    @pytest.mark.asyncio
    async def test_ended_telegram_replies_to_earlier_message(self, proposal, session_factory):
        add_job(
            session_factory,
            NotificationType.NEW_PROPOSAL_TELEGRAM,
            proposal.id,
            state=DispatchState.DISPATCHED,
            ref="55",
        )
        add_job(session_factory, NotificationType.ENDED_PROPOSAL_TELEGRAM, proposal.id)
        telegram = FakeChannel(Channel.TELEGRAM, "telegram_chat_id")

        await dispatcher_with(session_factory, telegram=telegram).dispatch_pass(now=NOW)

        assert telegram.sent[0].body["reply_to_message_id"] == 55
        assert telegram.edited[0][0].target == "777"

    @pytest.mark.asyncio
    async def test_ended_job_for_removed_proposal_retracts_earlier_message(self, proposal, session_factory):
        gone = uuid.uuid4()
        add_job(session_factory, NotificationType.NEW_PROPOSAL_DISCORD, gone, state=DispatchState.DISPATCHED, ref="999")
        job_id = add_job(session_factory, NotificationType.ENDED_PROPOSAL_DISCORD, gone)
        discord = FakeChannel(Channel.DISCORD, "discord_webhook")

        await dispatcher_with(session_factory, discord=discord).dispatch_pass(now=NOW)

        assert [ref.message_id for ref in discord.deleted] == ["999"]
        assert discord.sent == []
        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED


class TestEmailJobs:
    """Test bulletin and quorum emails"""

    @pytest.mark.asyncio
    async def test_bulletin_lists_subscribed_proposals(self, proposal, session_factory):
        with session_factory() as db:
            db.add(Subscription(user_id="u1", dao_id="ens"))
            db.commit()
        job_id = add_job(session_factory, NotificationType.BULLETIN_EMAIL)
        email = FakeChannel(Channel.EMAIL, "email")

        await dispatcher_with(session_factory, email=email).dispatch_pass(now=NOW)

        model = email.sent[0].body["TemplateModel"]
        assert [p["proposalName"] for p in model["endingSoonProposals"]] == ["Fund the public goods"]
        assert model["endedProposals"] == []
        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DISPATCHED

    @pytest.mark.asyncio
    async def test_empty_bulletin_is_dropped(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.BULLETIN_EMAIL)
        email = FakeChannel(Channel.EMAIL, "email")

        await dispatcher_with(session_factory, email=email).dispatch_pass(now=NOW)

        assert email.sent == []
        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED

    @pytest.mark.asyncio
    async def test_quorum_alert_skipped_once_quorum_is_reached(self, proposal, session_factory):
        job_id = add_job(session_factory, NotificationType.QUORUM_NOT_REACHED_EMAIL, proposal.id)
        email = FakeChannel(Channel.EMAIL, "email")

        await dispatcher_with(session_factory, email=email).dispatch_pass(now=NOW)

        assert email.sent == []
        assert state_of(session_factory, job_id).dispatch_state is DispatchState.DELETED

    @pytest.mark.asyncio
    async def test_email_fan_out_is_capped(self, proposal, session_factory):
        with session_factory() as db:
            for i in range(8):
                db.add(User(id=f"e{i}", email=f"e{i}@example.org"))
                db.add(Subscription(user_id=f"e{i}", dao_id="ens"))
            db.commit()
        for i in range(8):
            add_job(session_factory, NotificationType.BULLETIN_EMAIL, user_id=f"e{i}")

        email = FakeChannel(Channel.EMAIL, "email", delay=0.01)
        dispatcher = NotificationDispatcher(session_factory, {Channel.EMAIL: email}, email_max_concurrency=3)

        counts = await dispatcher.dispatch_pass(now=NOW)

        assert counts == {"dispatched": 8}
        assert email.max_active <= 3
        with session_factory() as db:
            states = db.scalars(select(Notification.dispatch_state)).all()
        assert set(states) == {DispatchState.DISPATCHED}


class TestChannelWiring:
    """Test which channels the service registers from its credentials"""

    @pytest.mark.asyncio
    async def test_channels_without_credentials_are_not_registered(self, monkeypatch, sync_config):
        from govsync.core.config import settings
        from govsync.main import build_channels

        monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)
        monkeypatch.setattr(settings, "POSTMARK_TOKEN", None)

        channels = build_channels(sync_config)
        try:
            assert set(channels) == {Channel.DISCORD, Channel.SLACK}
        finally:
            for channel in channels.values():
                await channel.aclose()

    @pytest.mark.asyncio
    async def test_all_channels_registered_with_credentials(self, monkeypatch, sync_config):
        from govsync.core.config import settings
        from govsync.main import build_channels

        monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setattr(settings, "POSTMARK_TOKEN", "pm-token")

        channels = build_channels(sync_config)
        try:
            assert set(channels) == set(Channel)
        finally:
            for channel in channels.values():
                await channel.aclose()

    @pytest.mark.asyncio
    async def test_missing_bot_token_keeps_telegram_jobs_pending(self, proposal, session_factory, monkeypatch, sync_config):
        from govsync.core.config import settings
        from govsync.main import build_channels

        monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)
        job_id = add_job(session_factory, NotificationType.NEW_PROPOSAL_TELEGRAM, proposal.id)

        dispatcher = NotificationDispatcher(session_factory, build_channels(sync_config))
        try:
            await dispatcher.dispatch_pass(now=NOW)
        finally:
            await dispatcher.aclose()

        job = state_of(session_factory, job_id)
        assert job.dispatch_state is DispatchState.NOT_DISPATCHED
        assert job.error_message is None
