"""Proposal service: create, edit, delete and read proposals with their votes."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.changes import ChangeOp, stage_change
from ..core.config import get_settings
from ..errors import (
    InvalidProposal,
    InvalidSchedule,
    InvalidThreshold,
    NotProposalCreator,
    ProposalNotEditable,
    ProposalNotFound,
)
from ..models import EventRoom, Proposal, ProposalStatus, User, Vote, ensure_utc, utcnow
from ..schemas import (
    ProfileRef,
    ProposalCreate,
    ProposalResponse,
    ProposalUpdate,
    ProposalWithVotes,
)
from .materialization import MaterializationEngine
from .membership import MembershipDirectory
from .vote_ledger import VoteLedger

logger = logging.getLogger(__name__)


def proposal_response(proposal: Proposal, viewer_id: UUID | None) -> ProposalResponse:
    """Serialize a proposal, hiding the creator of anonymous ones from others."""
    response = ProposalResponse.model_validate(proposal)
    if proposal.is_anonymous and proposal.created_by != viewer_id:
        response.created_by = None
    return response


class ProposalService:
    """Service for managing proposals."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.members = MembershipDirectory(session)
        self.ledger = VoteLedger(session)
        self.engine = MaterializationEngine(session)

    # =========================================================================
    # PROPOSAL CRUD
    # =========================================================================

    async def create_proposal(
        self,
        group_id: UUID,
        user_id: UUID,
        data: ProposalCreate,
        now: datetime | None = None,
    ) -> ProposalResponse:
        """Create an open proposal in a group the user belongs to."""
        now = now or utcnow()

        threshold = data.threshold if data.threshold is not None else self.settings.default_threshold
        if threshold < 1:
            raise InvalidThreshold(f"Threshold must be at least 1, got {threshold}")
        if ensure_utc(data.vote_window_ends_at) <= now:
            raise InvalidProposal("vote_window_ends_at must be in the future")
        self._check_schedule(data.starts_at, data.ends_at)

        await self.members.require_member(group_id, user_id)

        proposal = Proposal(
            group_id=group_id,
            created_by=user_id,
            title=data.title,
            description=data.description,
            starts_at=data.starts_at,
            ends_at=data.ends_at,
            vote_window_ends_at=data.vote_window_ends_at,
            threshold=threshold,
            status=ProposalStatus.OPEN,
            is_anonymous=data.is_anonymous,
            estimated_cost=data.estimated_cost,
            created_at=now,
            updated_at=now,
        )
        self.session.add(proposal)
        await self.session.flush()

        stage_change(
            self.session,
            "proposals",
            ChangeOp.INSERT,
            {"id": proposal.id, "group_id": group_id, "status": proposal.status},
        )
        logger.info(f"Proposal {proposal.id} created in group {group_id} (threshold {threshold})")
        return ProposalResponse.model_validate(proposal)

    async def update_proposal(
        self,
        proposal_id: UUID,
        user_id: UUID,
        data: ProposalUpdate,
        now: datetime | None = None,
    ) -> ProposalResponse:
        """Edit an open proposal. Only its creator may do this."""
        now = now or utcnow()
        proposal = await self._get_locked(proposal_id)

        if proposal.created_by != user_id:
            raise NotProposalCreator(f"Only the creator can edit proposal {proposal_id}")
        # A passed window means closed, even if no read has recorded it yet
        await self.engine.close_if_expired(proposal, now)
        if proposal.status != ProposalStatus.OPEN:
            raise ProposalNotEditable(
                f"Proposal {proposal_id} is {proposal.status.value} and can no longer be edited"
            )

        changes = data.model_dump(exclude_unset=True)
        if "title" in changes and not changes["title"]:
            raise InvalidProposal("title cannot be empty")
        if changes.get("vote_window_ends_at") is not None:
            if ensure_utc(changes["vote_window_ends_at"]) <= now:
                raise InvalidProposal("vote_window_ends_at must be in the future")
        elif "vote_window_ends_at" in changes:
            raise InvalidProposal("vote_window_ends_at cannot be cleared")

        self._check_schedule(
            changes.get("starts_at", proposal.starts_at),
            changes.get("ends_at", proposal.ends_at),
        )

        for field, value in changes.items():
            setattr(proposal, field, value)
        proposal.updated_at = now
        await self.session.flush()

        stage_change(
            self.session,
            "proposals",
            ChangeOp.UPDATE,
            {"id": proposal.id, "group_id": proposal.group_id, "status": proposal.status},
        )
        return ProposalResponse.model_validate(proposal)

    async def delete_proposal(
        self,
        proposal_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> None:
        """Delete an open proposal and its votes. Creator only."""
        proposal = await self._get_locked(proposal_id)

        if proposal.created_by != user_id:
            raise NotProposalCreator(f"Only the creator can delete proposal {proposal_id}")
        await self.engine.close_if_expired(proposal, now or utcnow())
        if proposal.status != ProposalStatus.OPEN:
            # A triggered proposal owns an event room; closed ones are history
            raise ProposalNotEditable(f"Proposal {proposal_id} is {proposal.status.value}")

        await self.session.execute(delete(Vote).where(Vote.proposal_id == proposal_id))
        await self.session.execute(
            delete(Proposal).where(
                Proposal.id == proposal_id,
                Proposal.status == ProposalStatus.OPEN,
            )
        )
        stage_change(
            self.session,
            "proposals",
            ChangeOp.DELETE,
            {"id": proposal_id, "group_id": proposal.group_id},
        )
        logger.info(f"Proposal {proposal_id} deleted by {user_id}")

    # =========================================================================
    # READS
    # =========================================================================

    async def get_proposal_with_votes(
        self,
        proposal_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> ProposalWithVotes:
        result = await self.session.execute(select(Proposal).where(Proposal.id == proposal_id))
        proposal = result.scalar_one_or_none()
        if not proposal:
            raise ProposalNotFound(f"Proposal {proposal_id} not found")
        await self.members.require_member(proposal.group_id, user_id)

        views = await self._with_votes([proposal], user_id, now or utcnow())
        return views[0]

    async def list_group_proposals(
        self,
        group_id: UUID,
        user_id: UUID,
        status: ProposalStatus | None = None,
        now: datetime | None = None,
    ) -> list[ProposalWithVotes]:
        """Proposals of a group, newest first.

        Expired open proposals are closed on the way out, so a status filter
        of ``open`` never returns a proposal whose window has passed.
        """
        now = now or utcnow()
        await self.members.require_member(group_id, user_id)

        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.group_id == group_id)
            .order_by(Proposal.created_at.desc(), Proposal.id)
        )
        views = await self._with_votes(list(result.scalars().all()), user_id, now)
        if status is not None:
            views = [v for v in views if v.proposal.status == status]
        return views

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _get_locked(self, proposal_id: UUID) -> Proposal:
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.id == proposal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        proposal = result.scalar_one_or_none()
        if not proposal:
            raise ProposalNotFound(f"Proposal {proposal_id} not found")
        return proposal

    @staticmethod
    def _check_schedule(starts_at: datetime | None, ends_at: datetime | None) -> None:
        if starts_at and ends_at and ensure_utc(ends_at) < ensure_utc(starts_at):
            raise InvalidSchedule("ends_at must not be before starts_at")

    async def _with_votes(
        self,
        proposals: list[Proposal],
        user_id: UUID,
        now: datetime,
    ) -> list[ProposalWithVotes]:
        if not proposals:
            return []

        for proposal in proposals:
            await self.engine.close_if_expired(proposal, now)

        ids = [p.id for p in proposals]
        counts = await self.ledger.get_vote_counts_for(ids)
        my_votes = await self.ledger.get_user_votes(user_id, ids)

        result = await self.session.execute(
            select(EventRoom.proposal_id, EventRoom.id).where(EventRoom.proposal_id.in_(ids))
        )
        rooms = {pid: rid for pid, rid in result.all()}

        creator_ids = {p.created_by for p in proposals if not p.is_anonymous}
        creators: dict[UUID, User] = {}
        if creator_ids:
            result = await self.session.execute(select(User).where(User.id.in_(creator_ids)))
            creators = {u.id: u for u in result.scalars().all()}

        views = []
        for proposal in proposals:
            creator = None if proposal.is_anonymous else creators.get(proposal.created_by)
            views.append(
                ProposalWithVotes(
                    proposal=proposal_response(proposal, user_id),
                    vote_counts=counts[proposal.id],
                    my_vote=my_votes.get(proposal.id),
                    event_room_id=rooms.get(proposal.id),
                    created_by_profile=(
                        ProfileRef.model_validate(creator) if creator else None
                    ),
                )
            )
        return views
