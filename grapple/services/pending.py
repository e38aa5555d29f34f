"""
Pending Decisions Aggregator.

For a user, the pending set is every proposal that is
- in a group the user belongs to,
- open, with its vote window still running,
- and not yet voted on by the user (any value counts as voted).

It is computed in one query so that membership, status, window and the
user's votes are all read from the same snapshot.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..models import Group, GroupMember, Proposal, ProposalStatus, User, Vote, utcnow
from ..schemas import PendingDecision, ProfileRef
from .proposals import proposal_response
from .vote_ledger import counts_from_row, vote_counts_subquery


class PendingDecisionsAggregator:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_pending_decisions(
        self,
        user_id: UUID,
        now: datetime | None = None,
    ) -> list[PendingDecision]:
        """Oldest first, ties broken by proposal id."""
        now = now or utcnow()
        counts = vote_counts_subquery()
        creator = aliased(User)
        own_vote = exists().where(
            Vote.proposal_id == Proposal.id,
            Vote.user_id == user_id,
        )

        query = (
            select(
                Proposal,
                Group.name,
                creator,
                counts.c.yes_count,
                counts.c.maybe_count,
                counts.c.no_count,
                counts.c.total_votes,
            )
            .select_from(Proposal)
            .join(
                GroupMember,
                (GroupMember.group_id == Proposal.group_id) & (GroupMember.user_id == user_id),
            )
            .join(Group, Group.id == Proposal.group_id)
            .join(creator, creator.id == Proposal.created_by)
            .outerjoin(counts, counts.c.proposal_id == Proposal.id)
            .where(
                Proposal.status == ProposalStatus.OPEN,
                Proposal.vote_window_ends_at > now,
                ~own_vote,
            )
            .order_by(Proposal.created_at, Proposal.id)
        )
        result = await self.session.execute(query)

        return [
            PendingDecision(
                proposal=proposal_response(proposal, user_id),
                group_name=group_name,
                vote_counts=counts_from_row(yes, maybe, no, total),
                created_by_profile=(
                    None if proposal.is_anonymous else ProfileRef.model_validate(user)
                ),
            )
            for proposal, group_name, user, yes, maybe, no, total in result.all()
        ]
