"""Normalized fetch results shared by all source fetchers"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from govsync.core.time_utils import to_unix
from govsync.models.proposal import ProposalState


class ProposalRecord(BaseModel):
    """One proposal as seen by a fetcher, ready to upsert by (external_id, dao_id)"""

    external_id: str
    dao_id: str
    dao_handler_id: str
    name: str
    choices: List[str] = Field(default_factory=list)
    scores: List[float] = Field(default_factory=list)
    scores_total: float = 0.0
    quorum: float = 0.0
    state: ProposalState = ProposalState.UNKNOWN
    block_created: Optional[int] = None
    time_created: datetime
    time_start: datetime
    time_end: datetime
    url: str
    # Off-chain only: closed with final scores
    finalized: bool = False
    # Off-chain only: False when flagged by the hub
    visible: bool = True

    @property
    def created(self) -> int:
        return to_unix(self.time_created)

    def is_open(self, now: datetime) -> bool:
        return self.time_end > now


class VoteRecord(BaseModel):
    voter_address: str
    dao_id: str
    dao_handler_id: str
    proposal_external_id: str
    choice: Any = None
    voting_power: float = 0.0
    reason: Optional[str] = None
    block_created: Optional[int] = None
    time_created: Optional[datetime] = None


class VoteTally(BaseModel):
    """Live tally of a chain proposal, in token units"""

    for_votes: float = 0.0
    against_votes: float = 0.0
    abstain_votes: float = 0.0
    quorum: float = 0.0

    @property
    def scores(self) -> List[float]:
        return [self.for_votes, self.against_votes, self.abstain_votes]

    @property
    def total(self) -> float:
        return self.for_votes + self.against_votes + self.abstain_votes
