"""Message bodies for each notification type and channel."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from govsync.core.time_utils import ensure_utc
from govsync.models.dao import Dao, HandlerType
from govsync.models.notification import NotificationType
from govsync.models.proposal import Proposal, ProposalState

BOT_NAME = "Governance Secretary"
EMBED_COLOUR = 0x23272A


@dataclass
class ProposalContext:
    proposal: Proposal
    dao: Dao
    handler_type: HandlerType
    url: str

    @property
    def origin(self) -> str:
        return "off-chain" if self.handler_type is HandlerType.SNAPSHOT else "on-chain"


def short_url(proposal: Proposal, shortener: Optional[str]) -> str:
    if not shortener:
        return proposal.url
    return f"{shortener}{str(proposal.id)[-7:]}"


def result_line(proposal: Proposal) -> str:
    """Winning choice and share, or why there is none."""
    scores = [float(s) for s in (proposal.scores or [])]
    choices = list(proposal.choices or [])
    if not scores or not choices or len(scores) != len(choices):
        return "Could not fetch results"
    if proposal.scores_total <= proposal.quorum or proposal.scores_total <= 0:
        return "No quorum"

    index = max(range(len(scores)), key=scores.__getitem__)
    share = round(scores[index] / proposal.scores_total * 100)
    return f"{choices[index]} {share}%"


def quorum_reached(proposal: Proposal) -> bool:
    return proposal.scores_total > proposal.quorum


def _ends(proposal: Proposal) -> str:
    return ensure_utc(proposal.time_end).strftime("%B %d, %H:%M UTC")


# -----------------------------------------------------------------------------
# Discord
# -----------------------------------------------------------------------------
def discord_body(kind: NotificationType, ctx: ProposalContext) -> Dict[str, Any]:
    p, dao = ctx.proposal, ctx.dao
    if kind is NotificationType.NEW_PROPOSAL_DISCORD:
        return {
            "username": BOT_NAME,
            "embeds": [
                {
                    "title": p.name,
                    "url": ctx.url,
                    "description": f"**{dao.name}** {ctx.origin} proposal ends on {_ends(p)}",
                    "color": EMBED_COLOUR,
                }
            ],
        }
    if kind in (NotificationType.FIRST_REMINDER_DISCORD, NotificationType.SECOND_REMINDER_DISCORD):
        return {
            "username": BOT_NAME,
            "content": f"**{dao.name}** {ctx.origin} proposal **{p.name}** ends on {_ends(p)}. {ctx.url}",
        }
    return {
        "username": BOT_NAME,
        "content": f"**{dao.name}** {ctx.origin} proposal **{p.name}** just ended. {ctx.url} {result_line(p)}",
    }


def discord_ended_embed(ctx: ProposalContext) -> Dict[str, Any]:
    """Replaces the earlier "new proposal" embed once voting is over."""
    p, dao = ctx.proposal, ctx.dao
    return {
        "embeds": [
            {
                "title": p.name,
                "url": ctx.url,
                "description": f"**{dao.name}** {ctx.origin} proposal ended on {_ends(p)}",
                "fields": [{"name": "Result", "value": result_line(p), "inline": False}],
                "color": EMBED_COLOUR,
            }
        ]
    }


# -----------------------------------------------------------------------------
# Slack
# -----------------------------------------------------------------------------
def slack_body(kind: NotificationType, ctx: ProposalContext) -> Dict[str, Any]:
    p, dao = ctx.proposal, ctx.dao
    if kind is NotificationType.NEW_PROPOSAL_SLACK:
        text = f"*{dao.name}* {ctx.origin} proposal <{ctx.url}|{p.name}> ends on {_ends(p)}"
    else:
        text = f"*{dao.name}* {ctx.origin} proposal <{ctx.url}|{p.name}> just ended. {result_line(p)}"
    return {"text": text}


# -----------------------------------------------------------------------------
# Telegram
# -----------------------------------------------------------------------------
def telegram_body(kind: NotificationType, ctx: ProposalContext) -> Dict[str, Any]:
    p, dao = ctx.proposal, ctx.dao
    name = html.escape(p.name)
    link = f'<a href="{html.escape(ctx.url)}">{name}</a>'
    if kind is NotificationType.NEW_PROPOSAL_TELEGRAM:
        text = f"<b>{html.escape(dao.name)}</b> {ctx.origin} proposal {link} ends on {_ends(p)}"
    elif kind is NotificationType.FIRST_REMINDER_TELEGRAM:
        text = f"{link} ends in less than 24 hours. Cast your vote on {html.escape(dao.name)}."
    elif kind is NotificationType.SECOND_REMINDER_TELEGRAM:
        text = f"{link} ends in less than 6 hours. Last call for {html.escape(dao.name)}."
    else:
        text = f"<b>{html.escape(dao.name)}</b> {ctx.origin} proposal {link} just ended. {html.escape(result_line(p))}"
    return {"text": text, "parse_mode": "HTML", "disable_web_page_preview": True}


# -----------------------------------------------------------------------------
# Email
# -----------------------------------------------------------------------------
def quorum_email_body(template: str, ctx: ProposalContext) -> Dict[str, Any]:
    p = ctx.proposal
    return {
        "TemplateAlias": template,
        "TemplateModel": {
            "daoName": ctx.dao.name,
            "proposalName": p.name,
            "url": ctx.url,
            "endDate": _ends(p),
            "scoresTotal": p.scores_total,
            "quorum": p.quorum,
        },
    }


def bulletin_item(ctx: ProposalContext) -> Dict[str, Any]:
    p = ctx.proposal
    item: Dict[str, Any] = {
        "daoName": ctx.dao.name,
        "daoLogoUrl": ctx.dao.picture or "",
        "proposalName": p.name,
        "url": ctx.url,
        "origin": ctx.origin,
        "endDate": _ends(p),
    }
    if p.state not in (ProposalState.ACTIVE, ProposalState.PENDING):
        item["hiddenResult"] = p.state is ProposalState.HIDDEN
        item["noQuorum"] = not quorum_reached(p)
        item["result"] = result_line(p)
    return item


def bulletin_body(
    template: str,
    today: datetime,
    ending_soon: List[ProposalContext],
    new: List[ProposalContext],
    ended: List[ProposalContext],
) -> Dict[str, Any]:
    return {
        "TemplateAlias": template,
        "TemplateModel": {
            "todaysDate": today.strftime("%A, %B %d, %Y"),
            "endingSoonProposals": [bulletin_item(c) for c in ending_soon],
            "newProposals": [bulletin_item(c) for c in new],
            "endedProposals": [bulletin_item(c) for c in ended],
        },
    }
