"""Outcome feedback and due-work tests"""

from datetime import timedelta

from conftest import NOW
from govsync.core.checkpoints import CheckpointStore
from govsync.core.config import RefreshKind
from govsync.models import RefreshStatus, Voter
from govsync.services.feedback import RefreshFeedback
from govsync.services.queue_builder import QueueBuilder
from govsync.sync.queue import RefreshOutcome, WorkItem


def source_row(session_factory, sync_config, source_id, kind, voter=""):
    with session_factory() as db:
        return CheckpointStore(db, sync_config).get(source_id, kind, voter)


class TestRefreshFeedback:
    """Test rate and status bookkeeping after each attempt"""

    def test_ok_ramps_rate_and_marks_done(self, session_factory, sync_config):
        kind = RefreshKind.CHAIN_PROPOSALS
        tuning = sync_config.tuning(kind)
        item = WorkItem(source_id="ens-chain", kind=kind)

        RefreshFeedback(session_factory, sync_config).record(item, RefreshOutcome("ens-chain", ok=True), now=NOW)

        row = source_row(session_factory, sync_config, "ens-chain", kind)
        assert row.rate == tuning.rate_initial + tuning.rate_initial * tuning.success_pct // 100
        assert row.status is RefreshStatus.DONE
        assert row.consecutive_failures == 0

    def test_nok_backs_off_and_keeps_new(self, session_factory, sync_config):
        kind = RefreshKind.CHAIN_PROPOSALS
        tuning = sync_config.tuning(kind)
        item = WorkItem(source_id="ens-chain", kind=kind)
        feedback = RefreshFeedback(session_factory, sync_config)

        feedback.record(item, RefreshOutcome("ens-chain", ok=False), now=NOW)
        feedback.record(item, RefreshOutcome("ens-chain", ok=False), now=NOW)

        row = source_row(session_factory, sync_config, "ens-chain", kind)
        expected = tuning.rate_initial
        for _ in range(2):
            expected -= expected * tuning.failure_pct // 100
        assert row.rate == expected
        assert row.status is RefreshStatus.NEW
        assert row.consecutive_failures == 2

    def test_success_resets_failure_streak(self, session_factory, sync_config):
        kind = RefreshKind.SNAPSHOT_PROPOSALS
        item = WorkItem(source_id="ens-snapshot", kind=kind)
        feedback = RefreshFeedback(session_factory, sync_config)

        feedback.record(item, RefreshOutcome("ens-snapshot", ok=False), now=NOW)
        feedback.record(item, RefreshOutcome("ens-snapshot", ok=True), now=NOW)

        assert source_row(session_factory, sync_config, "ens-snapshot", kind).consecutive_failures == 0

    def test_vote_outcome_updates_each_voter(self, session_factory, sync_config):
        kind = RefreshKind.SNAPSHOT_VOTES
        tuning = sync_config.tuning(kind)
        item = WorkItem(source_id="ens-snapshot", kind=kind, voters=("0xaaa", "0xbbb"))
        outcome = RefreshOutcome("ens-snapshot", ok=True, voters={"0xaaa": True, "0xbbb": False})

        RefreshFeedback(session_factory, sync_config).record(item, outcome, now=NOW)

        assert source_row(session_factory, sync_config, "ens-snapshot", kind, "0xaaa").status is RefreshStatus.DONE
        assert source_row(session_factory, sync_config, "ens-snapshot", kind, "0xbbb").status is RefreshStatus.NEW
        row = source_row(session_factory, sync_config, "ens-snapshot", kind)
        up = tuning.rate_initial + tuning.rate_initial * tuning.success_pct // 100
        assert row.rate == up - up * tuning.failure_pct // 100
        assert row.status is RefreshStatus.DONE

    def test_rate_stays_at_minimum_under_sustained_failure(self, session_factory, sync_config):
        kind = RefreshKind.CHAIN_PROPOSALS
        item = WorkItem(source_id="ens-chain", kind=kind)
        feedback = RefreshFeedback(session_factory, sync_config)

        for _ in range(sync_config.stuck_source_threshold + 5):
            feedback.record(item, RefreshOutcome("ens-chain", ok=False), now=NOW)

        row = source_row(session_factory, sync_config, "ens-chain", kind)
        assert row.rate == sync_config.tuning(kind).rate_min
        with session_factory() as db:
            assert [r.source_id for r in CheckpointStore(db, sync_config).stuck()] == ["ens-chain"]


class TestQueueBuilder:
    """Test which sources and voters are handed to the scheduler"""

    def test_new_handlers_are_due_immediately(self, seeded, session_factory, sync_config):
        builder = QueueBuilder(session_factory, sync_config)
        assert [i.source_id for i in builder.due_items(RefreshKind.CHAIN_PROPOSALS, now=NOW)] == ["ens-chain"]
        assert [i.source_id for i in builder.due_items(RefreshKind.SNAPSHOT_PROPOSALS, now=NOW)] == ["ens-snapshot"]

        row = source_row(session_factory, sync_config, "ens-chain", RefreshKind.CHAIN_PROPOSALS)
        assert row.checkpoint == 100

    def test_enqueued_items_wait_for_retry_delay(self, seeded, session_factory, sync_config):
        kind = RefreshKind.CHAIN_PROPOSALS
        builder = QueueBuilder(session_factory, sync_config)
        items = builder.due_items(kind, now=NOW)
        builder.mark_enqueued(items, now=NOW)

        assert builder.due_items(kind, now=NOW + timedelta(seconds=1)) == []
        later = NOW + timedelta(seconds=sync_config.tuning(kind).retry_seconds + 1)
        assert [i.source_id for i in builder.due_items(kind, now=later)] == ["ens-chain"]

    def test_voters_are_batched_per_source(self, seeded, session_factory, sync_config):
        for address in ("0xaaa", "0xbbb", "0xccc"):
            seeded.add(Voter(address=address))
        seeded.commit()

        items = QueueBuilder(session_factory, sync_config).due_items(RefreshKind.SNAPSHOT_VOTES, now=NOW)

        assert len(items) == 1
        assert items[0].source_id == "ens-snapshot"
        assert sorted(items[0].voters) == ["0xaaa", "0xbbb", "0xccc"]
