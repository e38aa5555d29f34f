"""
Materialization Engine: the proposal state machine.

    open --(yes_count >= threshold)--> triggered   (creates the event room)
    open --(vote window passed)------> closed      (evaluated lazily on read)

Both targets are terminal. Every transition is a compare-and-set on
``proposals.status`` (``UPDATE ... WHERE status = 'open'``), which is the only
arbiter of who performed it. A writer that loses the race reads back what the
winner wrote instead of creating anything.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.changes import ChangeOp, stage_change
from ..models import (
    EventRoom,
    Proposal,
    ProposalStatus,
    Vote,
    VoteValue,
    ensure_utc,
    utcnow,
)
from .event_rooms import admit_participant

logger = logging.getLogger(__name__)


@dataclass
class MaterializationOutcome:
    """What evaluating a proposal after a vote produced."""

    status: ProposalStatus
    event_room_id: UUID | None
    created_room: bool  # True only for the writer that won the transition

    @property
    def threshold_met(self) -> bool:
        return self.status == ProposalStatus.TRIGGERED


class MaterializationEngine:
    """Turns proposals into event rooms, exactly once."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def evaluate(
        self,
        proposal: Proposal,
        yes_count: int,
        voter_id: UUID | None = None,
        vote: VoteValue | None = None,
        now: datetime | None = None,
    ) -> MaterializationOutcome:
        """
        Re-evaluate a proposal after its vote counts changed.

        Must run in the same transaction as the vote write. If the threshold
        is met and this call wins the ``open -> triggered`` compare-and-set,
        the room and its participants (every YES voter) are created here.
        A concurrent voter that loses the race gets the winner's room id, and
        is admitted to the room if their own vote is YES.
        """
        now = now or utcnow()

        if proposal.status == ProposalStatus.TRIGGERED:
            return await self._existing_outcome(proposal, voter_id, vote, now)

        if proposal.status != ProposalStatus.OPEN or yes_count < proposal.threshold:
            return MaterializationOutcome(
                status=proposal.status, event_room_id=None, created_room=False
            )

        won = await self._compare_and_set(
            proposal.id, ProposalStatus.OPEN, ProposalStatus.TRIGGERED, now
        )
        await self._session.refresh(proposal)

        if not won:
            logger.info(f"Proposal {proposal.id} already transitioned by a concurrent vote")
            return await self._existing_outcome(proposal, voter_id, vote, now)

        room = EventRoom(
            proposal_id=proposal.id,
            group_id=proposal.group_id,
            created_by=proposal.created_by,
            title=proposal.title,
            description=proposal.description,
            starts_at=proposal.starts_at,
            ends_at=proposal.ends_at,
            created_at=now,
        )
        self._session.add(room)
        await self._session.flush()

        stage_change(
            self._session,
            "proposals",
            ChangeOp.UPDATE,
            {"id": proposal.id, "group_id": proposal.group_id, "status": proposal.status},
        )
        stage_change(
            self._session,
            "event_rooms",
            ChangeOp.INSERT,
            {"id": room.id, "proposal_id": proposal.id, "group_id": proposal.group_id},
        )

        result = await self._session.execute(
            select(Vote.user_id)
            .where(Vote.proposal_id == proposal.id, Vote.value == VoteValue.YES)
            .order_by(Vote.updated_at)
        )
        yes_voters = result.scalars().all()
        for user_id in yes_voters:
            await admit_participant(self._session, room.id, user_id, now)

        logger.info(
            f"Proposal {proposal.id} triggered with {len(yes_voters)} YES votes "
            f"(threshold {proposal.threshold}); event room {room.id} created"
        )

        return MaterializationOutcome(
            status=ProposalStatus.TRIGGERED,
            event_room_id=room.id,
            created_room=True,
        )

    async def close_if_expired(
        self,
        proposal: Proposal,
        now: datetime | None = None,
    ) -> bool:
        """
        Lazily close an open proposal whose vote window has passed.

        Returns True if this call performed the ``open -> closed`` transition.
        """
        now = now or utcnow()
        if proposal.status != ProposalStatus.OPEN:
            return False
        if now < ensure_utc(proposal.vote_window_ends_at):
            return False

        closed = await self._compare_and_set(
            proposal.id, ProposalStatus.OPEN, ProposalStatus.CLOSED, now
        )
        await self._session.refresh(proposal)

        if closed:
            stage_change(
                self._session,
                "proposals",
                ChangeOp.UPDATE,
                {"id": proposal.id, "group_id": proposal.group_id, "status": proposal.status},
            )
            logger.info(f"Proposal {proposal.id} closed: vote window ended below threshold")
        return closed

    async def event_room_id_for(self, proposal_id: UUID) -> UUID | None:
        result = await self._session.execute(
            select(EventRoom.id).where(EventRoom.proposal_id == proposal_id)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _compare_and_set(
        self,
        proposal_id: UUID,
        expected: ProposalStatus,
        new: ProposalStatus,
        now: datetime,
    ) -> bool:
        """Atomically move ``expected -> new``. True if this call did it."""
        result = await self._session.execute(
            update(Proposal)
            .where(Proposal.id == proposal_id, Proposal.status == expected)
            .values(status=new, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _existing_outcome(
        self,
        proposal: Proposal,
        voter_id: UUID | None,
        vote: VoteValue | None,
        now: datetime,
    ) -> MaterializationOutcome:
        room_id = await self.event_room_id_for(proposal.id)
        if room_id is not None and voter_id is not None and vote == VoteValue.YES:
            await admit_participant(self._session, room_id, voter_id, now)
        return MaterializationOutcome(
            status=proposal.status, event_room_id=room_id, created_room=False
        )
