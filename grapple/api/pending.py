"""API routes for the current user's pending decisions."""

from fastapi import APIRouter

from ..core import CurrentUserDep, SessionDep
from ..schemas import PendingDecision
from ..services import PendingDecisionsAggregator

router = APIRouter(prefix="/me", tags=["me"])


@router.get(
    "/pending-decisions",
    response_model=list[PendingDecision],
    summary="Proposals awaiting your vote",
    description="Open proposals in your groups that you have not voted on, oldest first.",
)
async def get_pending_decisions(current_user: CurrentUserDep, session: SessionDep):
    return await PendingDecisionsAggregator(session).get_pending_decisions(current_user.id)
