"""On-chain fetchers for the Governor contract families.

All three families emit the same ``ProposalCreated`` event; they differ in
how tallies, quorum and votes are read:

- OpenZeppelin Governor (ENS, Hop): ``proposalVotes(id)``, ``quorum(block)``,
  ``VoteCast`` with an indexed voter.
- GovernorBravo (Compound, Uniswap): ``proposals(id)`` struct with abstain
  votes, ``quorumVotes()``, same ``VoteCast`` as OpenZeppelin.
- GovernorAlpha (Gitcoin): ``proposals(id)`` without abstain, boolean
  ``VoteCast`` with a non-indexed voter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from govsync.core.errors import DecodeError
from govsync.core.logging import get_logger
from govsync.ingestion.base import ChainFetcher, FetchScope
from govsync.models.dao import DaoHandler
from govsync.models.proposal import ProposalState
from govsync.schemas.records import ProposalRecord, VoteRecord, VoteTally
from govsync.sync.window import ScanWindow

log = get_logger("ingestion.governor")

# keccak256("ProposalCreated(uint256,address,address[],uint256[],string[],bytes[],uint256,uint256,string)")
PROPOSAL_CREATED_TOPIC = "0x7d84a6263ae0d98d3329bd7b46bb4e8d6f98cd35a7adb45c274c8b7fd5ebd5e0"
# keccak256("VoteCast(address,uint256,uint8,uint256,string)")
VOTE_CAST_TOPIC = "0xb8e138887d0aa13bab447e82de9d5c1777041ecd21ca36ba824ff1ae6f0ed4ce"
# keccak256("VoteCast(address,uint256,bool,uint256)")
ALPHA_VOTE_CAST_TOPIC = "0x877856338e13f63d0c36822ff0ef736b80934cd90574a3a5bc9262c39d217c46"

SEL_PROPOSAL_VOTES = "0x544ffc9c"  # proposalVotes(uint256)
SEL_STATE = "0x3e4f49e6"  # state(uint256)
SEL_QUORUM = "0xf8ce560a"  # quorum(uint256)
SEL_PROPOSALS = "0x013cf08b"  # proposals(uint256)
SEL_QUORUM_VOTES = "0x24bc1a64"  # quorumVotes()

TOKEN_DECIMALS = 10**18

# Index order of the on-chain ProposalState enum, shared by every family
CHAIN_STATES = [
    ProposalState.PENDING,
    ProposalState.ACTIVE,
    ProposalState.CANCELED,
    ProposalState.DEFEATED,
    ProposalState.SUCCEEDED,
    ProposalState.QUEUED,
    ProposalState.EXPIRED,
    ProposalState.EXECUTED,
]

SUPPORT_CHOICES = ["For", "Against", "Abstain"]
# VoteCast.support: 0 against, 1 for, 2 abstain
SUPPORT_TO_CHOICE = {0: 2, 1: 1, 2: 3}


# -----------------------------------------------------------------------------
# ABI helpers
# -----------------------------------------------------------------------------
def split_words(data: str) -> List[int]:
    raw = data[2:] if data.startswith("0x") else data
    if len(raw) % 64:
        raise DecodeError(f"ABI payload is not word aligned ({len(raw)} hex chars)")
    return [int(raw[i : i + 64], 16) for i in range(0, len(raw), 64)]


def decode_string(data: str, offset: int) -> str:
    raw = data[2:] if data.startswith("0x") else data
    start = offset * 2
    try:
        length = int(raw[start : start + 64], 16)
        body = bytes.fromhex(raw[start + 64 : start + 64 + length * 2])
    except ValueError as exc:
        raise DecodeError(f"bad ABI string at offset {offset}") from exc
    return body.decode("utf-8", errors="replace")


def encode_uint(selector: str, value: int) -> str:
    return f"{selector}{value:064x}"


def topic_address(address: str) -> str:
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def word_address(word: int) -> str:
    return "0x" + f"{word:064x}"[-40:]


def title_from_description(description: str) -> str:
    for line in description.splitlines():
        line = line.strip().lstrip("#").strip()
        if line:
            return line[:500]
    return "Untitled proposal"


# -----------------------------------------------------------------------------
# Fetchers
# -----------------------------------------------------------------------------
class GovernorFetcher(ChainFetcher):
    """OpenZeppelin Governor."""

    name = "governor"
    vote_topic = VOTE_CAST_TOPIC
    indexed_voter = True

    async def fetch_proposals(self, handler: DaoHandler, scope: FetchScope) -> List[ProposalRecord]:
        window = self._window(scope)
        address = self.contract_address(handler)
        logs = await self.rpc.get_logs(window.start, window.end, address=address, topics=[PROPOSAL_CREATED_TOPIC])

        records: List[ProposalRecord] = []
        for entry in logs:
            records.append(await self._to_record(handler, address, entry))

        log.info(f"handler={handler.id} window={window.start}-{window.end} proposals={len(records)}")
        return records

    async def fetch_votes(self, handler: DaoHandler, voters: Sequence[str], scope: FetchScope) -> List[VoteRecord]:
        window = self._window(scope)
        address = self.contract_address(handler)
        wanted = {v.lower() for v in voters}

        topics: List[Any] = [self.vote_topic]
        if self.indexed_voter and wanted:
            topics.append([topic_address(v) for v in sorted(wanted)])

        logs = await self.rpc.get_logs(window.start, window.end, address=address, topics=topics)

        votes: List[VoteRecord] = []
        for entry in logs:
            vote = await self._to_vote(handler, entry)
            if vote.voter_address in wanted:
                votes.append(vote)
        return votes

    async def tally(self, handler: DaoHandler, proposal_id: int, at_block: Optional[int] = None) -> VoteTally:
        address = self.contract_address(handler)
        words = split_words(await self.rpc.eth_call(address, encode_uint(SEL_PROPOSAL_VOTES, proposal_id)))
        if len(words) < 3:
            raise DecodeError(f"proposalVotes({proposal_id}) returned {len(words)} words")
        against, for_votes, abstain = words[0], words[1], words[2]

        quorum = 0
        if at_block is not None:
            quorum_words = split_words(await self.rpc.eth_call(address, encode_uint(SEL_QUORUM, at_block)))
            quorum = quorum_words[0] if quorum_words else 0

        return VoteTally(
            for_votes=for_votes / TOKEN_DECIMALS,
            against_votes=against / TOKEN_DECIMALS,
            abstain_votes=abstain / TOKEN_DECIMALS,
            quorum=quorum / TOKEN_DECIMALS,
        )

    async def state(self, handler: DaoHandler, proposal_id: int) -> ProposalState:
        address = self.contract_address(handler)
        words = split_words(await self.rpc.eth_call(address, encode_uint(SEL_STATE, proposal_id)))
        if not words or words[0] >= len(CHAIN_STATES):
            return ProposalState.UNKNOWN
        return CHAIN_STATES[words[0]]

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------
    @staticmethod
    def _window(scope: FetchScope) -> ScanWindow:
        if not isinstance(scope, ScanWindow):
            raise TypeError(f"chain fetchers scan block windows, got {scope!r}")
        return scope

    async def _to_record(self, handler: DaoHandler, address: str, entry: Dict[str, Any]) -> ProposalRecord:
        data = entry.get("data") or "0x"
        words = split_words(data)
        if len(words) < 9:
            raise DecodeError(f"ProposalCreated log has {len(words)} words")

        proposal_id = words[0]
        start_block = words[6]
        end_block = words[7]
        description = decode_string(data, words[8])

        block_created = int(entry["blockNumber"], 16)
        time_created = await self.resolve_timestamp(block_created)
        if time_created is None:
            raise DecodeError(f"log references unknown block {block_created}")

        time_start = await self.estimator.estimate(start_block, block_created, time_created)
        time_end = await self.estimator.estimate(end_block, block_created, time_created)

        # quorum is read at the creation block; the start block is usually not mined yet
        tally = await self.tally(handler, proposal_id, at_block=block_created)
        state = await self.state(handler, proposal_id)
        external_id = str(proposal_id)

        return ProposalRecord(
            external_id=external_id,
            dao_id=handler.dao_id,
            dao_handler_id=handler.id,
            name=title_from_description(description),
            choices=SUPPORT_CHOICES,
            scores=tally.scores,
            scores_total=tally.total,
            quorum=tally.quorum,
            state=state,
            block_created=block_created,
            time_created=time_created,
            time_start=time_start,
            time_end=time_end,
            url=self.proposal_url(handler, external_id),
        )

    async def _to_vote(self, handler: DaoHandler, entry: Dict[str, Any]) -> VoteRecord:
        data = entry.get("data") or "0x"
        words = split_words(data)
        topics = entry.get("topics") or []
        if len(topics) < 2 or len(words) < 4:
            raise DecodeError("VoteCast log is missing fields")

        voter = word_address(int(topics[1], 16))
        proposal_id, support, weight = words[0], words[1], words[2]
        reason = decode_string(data, words[3]) or None

        block = int(entry["blockNumber"], 16)
        return VoteRecord(
            voter_address=voter,
            dao_id=handler.dao_id,
            dao_handler_id=handler.id,
            proposal_external_id=str(proposal_id),
            choice=SUPPORT_TO_CHOICE.get(support, support),
            voting_power=weight / TOKEN_DECIMALS,
            reason=reason,
            block_created=block,
            time_created=await self.resolve_timestamp(block),
        )


class BravoFetcher(GovernorFetcher):
    """GovernorBravo: tallies live in the ``proposals`` struct, quorum is a constant."""

    name = "governor_bravo"
    has_abstain = True

    async def tally(self, handler: DaoHandler, proposal_id: int, at_block: Optional[int] = None) -> VoteTally:
        address = self.contract_address(handler)
        words = split_words(await self.rpc.eth_call(address, encode_uint(SEL_PROPOSALS, proposal_id)))
        # id, proposer, eta, startBlock, endBlock, forVotes, againstVotes, [abstainVotes,] canceled, executed
        if len(words) < 7:
            raise DecodeError(f"proposals({proposal_id}) returned {len(words)} words")
        for_votes, against = words[5], words[6]
        abstain = words[7] if self.has_abstain and len(words) > 7 else 0

        quorum_words = split_words(await self.rpc.eth_call(address, SEL_QUORUM_VOTES))
        quorum = quorum_words[0] if quorum_words else 0

        return VoteTally(
            for_votes=for_votes / TOKEN_DECIMALS,
            against_votes=against / TOKEN_DECIMALS,
            abstain_votes=abstain / TOKEN_DECIMALS,
            quorum=quorum / TOKEN_DECIMALS,
        )


class AlphaFetcher(BravoFetcher):
    """GovernorAlpha: no abstain, voter is not indexed so votes are filtered client side."""

    name = "governor_alpha"
    has_abstain = False
    vote_topic = ALPHA_VOTE_CAST_TOPIC
    indexed_voter = False

    async def _to_vote(self, handler: DaoHandler, entry: Dict[str, Any]) -> VoteRecord:
        words = split_words(entry.get("data") or "0x")
        if len(words) < 4:
            raise DecodeError("VoteCast log is missing fields")

        voter = word_address(words[0])
        proposal_id, support, weight = words[1], words[2], words[3]

        block = int(entry["blockNumber"], 16)
        return VoteRecord(
            voter_address=voter,
            dao_id=handler.dao_id,
            dao_handler_id=handler.id,
            proposal_external_id=str(proposal_id),
            choice=1 if support else 2,
            voting_power=weight / TOKEN_DECIMALS,
            block_created=block,
            time_created=await self.resolve_timestamp(block),
        )
