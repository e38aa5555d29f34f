"""API routes for proposals and votes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..core import CurrentUserDep, SessionDep
from ..models import ProposalStatus
from ..schemas import (
    CastVoteRequest,
    CastVoteResult,
    ProposalCreate,
    ProposalResponse,
    ProposalUpdate,
    ProposalWithVotes,
)
from ..services import ProposalService, VoteLedger

router = APIRouter(tags=["proposals"])


def get_proposal_service(session: SessionDep) -> ProposalService:
    return ProposalService(session)


def get_vote_ledger(session: SessionDep) -> VoteLedger:
    return VoteLedger(session)


ProposalServiceDep = Annotated[ProposalService, Depends(get_proposal_service)]
VoteLedgerDep = Annotated[VoteLedger, Depends(get_vote_ledger)]


# =============================================================================
# PROPOSALS
# =============================================================================


@router.post(
    "/groups/{group_id}/proposals",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a proposal",
    description="Put an activity to a vote in one of your groups. "
    "Threshold defaults to the server setting when omitted.",
)
async def create_proposal(
    group_id: UUID,
    data: ProposalCreate,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    return await service.create_proposal(group_id, current_user.id, data)


@router.get(
    "/groups/{group_id}/proposals",
    response_model=list[ProposalWithVotes],
    summary="List group proposals",
)
async def list_group_proposals(
    group_id: UUID,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
    status_filter: ProposalStatus | None = Query(None, alias="status"),
):
    """Newest first, with vote counts and your own vote."""
    return await service.list_group_proposals(group_id, current_user.id, status=status_filter)


@router.get("/proposals/{proposal_id}", response_model=ProposalWithVotes)
async def get_proposal(
    proposal_id: UUID,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    """Get a proposal with its vote counts."""
    return await service.get_proposal_with_votes(proposal_id, current_user.id)


@router.patch("/proposals/{proposal_id}", response_model=ProposalResponse)
async def update_proposal(
    proposal_id: UUID,
    data: ProposalUpdate,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    """Edit an open proposal (creator only)."""
    return await service.update_proposal(proposal_id, current_user.id, data)


@router.delete("/proposals/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_proposal(
    proposal_id: UUID,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    """Delete an open proposal and its votes (creator only)."""
    await service.delete_proposal(proposal_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# VOTES
# =============================================================================


@router.post(
    "/proposals/{proposal_id}/votes",
    response_model=CastVoteResult,
    summary="Cast or replace your vote",
    description="Reaching the threshold creates the event room in the same "
    "transaction; its id is returned as event_room_id.",
)
async def cast_vote(
    proposal_id: UUID,
    data: CastVoteRequest,
    current_user: CurrentUserDep,
    ledger: VoteLedgerDep,
):
    return await ledger.cast_vote(proposal_id, current_user.id, data.value)


@router.delete("/proposals/{proposal_id}/votes", status_code=status.HTTP_204_NO_CONTENT)
async def remove_vote(
    proposal_id: UUID,
    current_user: CurrentUserDep,
    ledger: VoteLedgerDep,
):
    """Retract your vote while voting is open."""
    await ledger.remove_vote(proposal_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
