"""
Vote Ledger: one row per (proposal, voter), replaced on every cast.

``cast_vote`` is the write path of the whole pipeline. Within one
transaction it:
1. Notes the status it sees, then locks the proposal row (FOR UPDATE where
   supported)
2. Checks status, vote window and group membership
3. Upserts the vote (ON CONFLICT on the primary key)
4. Recounts and hands the proposal to the materialization engine
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.changes import ChangeOp, stage_change
from ..core.database import dialect_insert
from ..errors import ProposalNotFound, VotingClosed
from ..models import Proposal, ProposalStatus, Vote, VoteValue, ensure_utc, utcnow
from ..schemas import CastVoteResult, VoteCounts
from .materialization import MaterializationEngine
from .membership import MembershipDirectory

logger = logging.getLogger(__name__)


def vote_counts_subquery():
    """Per-proposal vote aggregates, grouped from the ledger."""
    return (
        select(
            Vote.proposal_id.label("proposal_id"),
            func.sum(case((Vote.value == VoteValue.YES, 1), else_=0)).label("yes_count"),
            func.sum(case((Vote.value == VoteValue.MAYBE, 1), else_=0)).label("maybe_count"),
            func.sum(case((Vote.value == VoteValue.NO, 1), else_=0)).label("no_count"),
            func.count().label("total_votes"),
        )
        .group_by(Vote.proposal_id)
        .subquery("vote_counts")
    )


def counts_from_row(yes, maybe, no, total) -> VoteCounts:
    """Build VoteCounts from (possibly NULL, outer-joined) aggregate columns."""
    return VoteCounts(
        yes_count=int(yes or 0),
        maybe_count=int(maybe or 0),
        no_count=int(no or 0),
        total_votes=int(total or 0),
    )


class VoteLedger:
    """Casts, removes and counts votes."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._engine = MaterializationEngine(session)
        self._members = MembershipDirectory(session)

    async def cast_vote(
        self,
        proposal_id: UUID,
        user_id: UUID,
        value: VoteValue,
        now: datetime | None = None,
    ) -> CastVoteResult:
        """
        Cast or replace the user's vote.

        The returned counts and ``event_room_id`` describe the state after
        this vote, including a materialization it caused or raced with.
        """
        now = now or utcnow()
        value = VoteValue(value)

        observed = await self._observed_status(proposal_id)
        proposal = await self._lock_proposal(proposal_id)
        self._require_voting_open(proposal, now, observed)
        await self._members.require_member(proposal.group_id, user_id)

        previous = await self._current_vote(proposal_id, user_id)

        stmt = dialect_insert(self._session, Vote).values(
            proposal_id=proposal_id,
            user_id=user_id,
            value=value,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["proposal_id", "user_id"],
            set_={
                "value": stmt.excluded["value"],
                "updated_at": stmt.excluded["updated_at"],
            },
        )
        await self._session.execute(stmt)

        stage_change(
            self._session,
            "votes",
            ChangeOp.UPDATE if previous is not None else ChangeOp.INSERT,
            {
                "proposal_id": proposal_id,
                "user_id": user_id,
                "group_id": proposal.group_id,
                "value": value,
            },
        )

        counts = await self.get_vote_counts(proposal_id)
        outcome = await self._engine.evaluate(
            proposal,
            counts.yes_count,
            voter_id=user_id,
            vote=value,
            now=now,
        )

        logger.debug(
            f"Vote {value.value} by {user_id} on {proposal_id}: "
            f"{counts.yes_count}/{proposal.threshold} YES"
        )

        return CastVoteResult(
            vote=value,
            yes_count=counts.yes_count,
            maybe_count=counts.maybe_count,
            no_count=counts.no_count,
            threshold_met=outcome.threshold_met,
            event_room_id=outcome.event_room_id,
        )

    async def remove_vote(
        self,
        proposal_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> bool:
        """
        Retract the user's vote while voting is still open.

        Returns False if there was no vote. Never reverses a materialization:
        once triggered, the proposal no longer accepts vote changes.
        """
        now = now or utcnow()
        proposal = await self._lock_proposal(proposal_id)
        self._require_voting_open(proposal, now)

        result = await self._session.execute(
            delete(Vote).where(Vote.proposal_id == proposal_id, Vote.user_id == user_id)
        )
        if result.rowcount == 0:
            return False

        stage_change(
            self._session,
            "votes",
            ChangeOp.DELETE,
            {"proposal_id": proposal_id, "user_id": user_id, "group_id": proposal.group_id},
        )
        return True

    async def get_vote_counts(self, proposal_id: UUID) -> VoteCounts:
        counts = await self.get_vote_counts_for([proposal_id])
        return counts[proposal_id]

    async def get_vote_counts_for(self, proposal_ids: Sequence[UUID]) -> dict[UUID, VoteCounts]:
        """Counts for several proposals; proposals without votes get zeros."""
        result = await self._session.execute(
            select(
                Vote.proposal_id,
                func.sum(case((Vote.value == VoteValue.YES, 1), else_=0)),
                func.sum(case((Vote.value == VoteValue.MAYBE, 1), else_=0)),
                func.sum(case((Vote.value == VoteValue.NO, 1), else_=0)),
                func.count(),
            )
            .where(Vote.proposal_id.in_(proposal_ids))
            .group_by(Vote.proposal_id)
        )
        counts = {pid: VoteCounts() for pid in proposal_ids}
        for pid, yes, maybe, no, total in result.all():
            counts[pid] = counts_from_row(yes, maybe, no, total)
        return counts

    async def get_user_votes(
        self,
        user_id: UUID,
        proposal_ids: Sequence[UUID],
    ) -> dict[UUID, VoteValue]:
        result = await self._session.execute(
            select(Vote.proposal_id, Vote.value).where(
                Vote.user_id == user_id,
                Vote.proposal_id.in_(proposal_ids),
            )
        )
        return {pid: value for pid, value in result.all()}

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _lock_proposal(self, proposal_id: UUID) -> Proposal:
        """Load the proposal under a row lock so votes on it are linearized."""
        result = await self._session.execute(
            select(Proposal)
            .where(Proposal.id == proposal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        proposal = result.scalar_one_or_none()
        if not proposal:
            raise ProposalNotFound(f"Proposal {proposal_id} not found")
        return proposal

    async def _observed_status(self, proposal_id: UUID) -> ProposalStatus | None:
        """Status as committed when the vote arrived, before waiting on the row lock."""
        result = await self._session.execute(
            select(Proposal.status).where(Proposal.id == proposal_id)
        )
        return result.scalar_one_or_none()

    def _require_voting_open(
        self,
        proposal: Proposal,
        now: datetime,
        observed: ProposalStatus | None = None,
    ) -> None:
        """
        Reject votes on closed or triggered proposals and past the window.

        A vote that saw the proposal open on arrival and then found it
        triggered once it held the lock was racing the triggering vote. It
        is accepted like a vote that lost the compare-and-set: it is recorded,
        reports the winner's room and admits a YES voter to it. Where the
        backend has no row lock (SQLite) the same vote reaches the
        compare-and-set and loses it, with the same result. A vote that
        arrives after the trigger has committed gets ``VotingClosed``.
        """
        racing_trigger = (
            observed == ProposalStatus.OPEN and proposal.status == ProposalStatus.TRIGGERED
        )
        if proposal.status != ProposalStatus.OPEN and not racing_trigger:
            raise VotingClosed(
                f"Proposal {proposal.id} is {proposal.status.value}; voting is closed"
            )
        if now >= ensure_utc(proposal.vote_window_ends_at):
            raise VotingClosed(f"Vote window for proposal {proposal.id} has ended")

    async def _current_vote(self, proposal_id: UUID, user_id: UUID) -> VoteValue | None:
        result = await self._session.execute(
            select(Vote.value).where(
                Vote.proposal_id == proposal_id,
                Vote.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()
