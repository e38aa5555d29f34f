"""Pydantic schemas for proposals, votes and pending decisions."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from ..models import ProposalStatus, VoteValue
from .base import GrappleBaseModel, ProfileRef


# =============================================================================
# PROPOSALS
# =============================================================================


class ProposalCreate(GrappleBaseModel):
    """Schema for creating a proposal."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    vote_window_ends_at: datetime
    # Range is checked by the service so the error kind is InvalidThreshold
    threshold: int | None = Field(
        default=None,
        description="YES votes needed to create the event room (default from settings)",
    )
    is_anonymous: bool = False
    estimated_cost: Decimal | None = Field(default=None, ge=0)


class ProposalUpdate(GrappleBaseModel):
    """Editable proposal fields (creator only, while open)."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    vote_window_ends_at: datetime | None = None


class ProposalResponse(GrappleBaseModel):
    """A stored proposal."""

    id: UUID
    group_id: UUID
    # None when the proposal is anonymous and the viewer is not its creator
    created_by: UUID | None = None
    title: str
    description: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    vote_window_ends_at: datetime
    threshold: int
    status: ProposalStatus
    is_anonymous: bool = False
    estimated_cost: Decimal | None = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# VOTES
# =============================================================================


class VoteCounts(GrappleBaseModel):
    """Aggregate of the vote ledger for one proposal."""

    yes_count: int = 0
    maybe_count: int = 0
    no_count: int = 0
    total_votes: int = 0


class CastVoteRequest(GrappleBaseModel):
    value: VoteValue


class CastVoteResult(GrappleBaseModel):
    """Post-vote state, including any materialization the vote caused."""

    vote: VoteValue
    yes_count: int
    maybe_count: int
    no_count: int
    threshold_met: bool
    event_room_id: UUID | None = None


class ProposalWithVotes(GrappleBaseModel):
    """A proposal with its counts and the caller's own vote."""

    proposal: ProposalResponse
    vote_counts: VoteCounts
    my_vote: VoteValue | None = None
    event_room_id: UUID | None = None
    created_by_profile: ProfileRef | None = None


class PendingDecision(GrappleBaseModel):
    """An open proposal the user has not voted on yet."""

    proposal: ProposalResponse
    group_name: str
    vote_counts: VoteCounts
    my_vote: None = None
    created_by_profile: ProfileRef | None = None
