"""Message body tests"""

import uuid
from datetime import timedelta

import pytest

from conftest import NOW
from govsync.models import Dao, HandlerType, NotificationType, Proposal, ProposalState
from govsync.notifications.payloads import (
    ProposalContext,
    bulletin_body,
    discord_body,
    discord_ended_embed,
    result_line,
    short_url,
    telegram_body,
)


def proposal(scores=(60.0, 30.0, 10.0), total=100.0, quorum=50.0, state=ProposalState.EXECUTED, name="Fund <grants>"):
    return Proposal(
        id=uuid.UUID("00000000-0000-0000-0000-00000abcdef1"),
        external_id="1",
        dao_id="ens",
        dao_handler_id="ens-chain",
        name=name,
        choices=["For", "Against", "Abstain"],
        scores=list(scores),
        scores_total=total,
        quorum=quorum,
        state=state,
        time_created=NOW - timedelta(days=3),
        time_start=NOW - timedelta(days=3),
        time_end=NOW - timedelta(hours=1),
        url="https://x.org/p/1",
        visible=True,
    )


def context(p, handler_type=HandlerType.ENS_CHAIN):
    return ProposalContext(proposal=p, dao=Dao(id="ens", name="ENS"), handler_type=handler_type, url=p.url)


class TestResultLine:
    """Test the one-line result summary"""

    def test_winning_choice_and_share(self):
        assert result_line(proposal()) == "For 60%"

    def test_share_is_rounded(self):
        assert result_line(proposal(scores=(2.0, 1.0, 0.0), total=3.0, quorum=0.0)) == "For 67%"

    def test_no_quorum(self):
        assert result_line(proposal(total=100.0, quorum=100.0)) == "No quorum"

    def test_nothing_to_report(self):
        assert result_line(proposal(scores=())) == "Could not fetch results"
        assert result_line(proposal(scores=(1.0,))) == "Could not fetch results"


class TestBodies:
    """Test per-channel message bodies"""

    def test_short_url(self):
        p = proposal()
        assert short_url(p, None) == "https://x.org/p/1"
        assert short_url(p, "https://sen.to/") == "https://sen.to/abcdef1"

    def test_origin(self):
        assert context(proposal()).origin == "on-chain"
        assert context(proposal(), HandlerType.SNAPSHOT).origin == "off-chain"

    def test_discord_new_is_an_embed(self):
        body = discord_body(NotificationType.NEW_PROPOSAL_DISCORD, context(proposal()))
        embed = body["embeds"][0]
        assert embed["title"] == "Fund <grants>"
        assert embed["url"] == "https://x.org/p/1"

    def test_discord_ended_mentions_result(self):
        body = discord_body(NotificationType.ENDED_PROPOSAL_DISCORD, context(proposal()))
        assert "just ended" in body["content"]
        assert body["content"].endswith("For 60%")
        assert discord_ended_embed(context(proposal()))["embeds"][0]["fields"][0]["value"] == "For 60%"

    def test_telegram_escapes_html(self):
        body = telegram_body(NotificationType.NEW_PROPOSAL_TELEGRAM, context(proposal()))
        assert "Fund &lt;grants&gt;" in body["text"]
        assert body["parse_mode"] == "HTML"

    @pytest.mark.parametrize("state, has_result", [(ProposalState.ACTIVE, False), (ProposalState.DEFEATED, True)])
    def test_bulletin_items(self, state, has_result):
        ctx = context(proposal(state=state))
        body = bulletin_body("daily-bulletin", NOW, ending_soon=[], new=[ctx], ended=[])
        model = body["TemplateModel"]
        assert body["TemplateAlias"] == "daily-bulletin"
        assert model["todaysDate"] == "Monday, October 19, 2026"
        assert model["endingSoonProposals"] == []
        assert ("result" in model["newProposals"][0]) is has_result
