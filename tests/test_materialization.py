"""
Tests for the Materialization Engine.

These tests verify:
1. Crossing the threshold creates exactly one event room
2. Every YES voter (and nobody else) becomes a participant
3. A writer that loses the open -> triggered race creates nothing
   (including votes cast at the same time)
4. Proposals past their vote window close lazily, without a room
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from grapple.core.changes import ChangeFilter, ChangeOp
from grapple.core.database import unit_of_work
from grapple.errors import VotingClosed
from grapple.models import (
    EventRoom,
    EventRoomParticipant,
    Proposal,
    ProposalStatus,
    VoteValue,
    utcnow,
)
from grapple.services import MaterializationEngine, ProposalService, VoteLedger


async def _rooms_for(session_factory, proposal_id) -> list[EventRoom]:
    async with session_factory() as s:
        result = await s.execute(select(EventRoom).where(EventRoom.proposal_id == proposal_id))
        return list(result.scalars().all())


async def _participants(session_factory, room_id) -> set:
    async with session_factory() as s:
        result = await s.execute(
            select(EventRoomParticipant.user_id).where(
                EventRoomParticipant.event_room_id == room_id
            )
        )
        return set(result.scalars().all())


async def _vote(session_factory, proposal_id, user_id, value, feed=None, now=None):
    async with unit_of_work(session_factory, feed) as s:
        return await VoteLedger(s).cast_vote(proposal_id, user_id, value, now=now)


# =============================================================================
# TEST: TRIGGER
# =============================================================================


class TestTrigger:
    async def test_two_yes_votes_with_threshold_two(self, session_factory, crew, make_proposal):
        """Both YES voters end up in the single room."""
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)

        first = await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)
        second = await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES)

        assert first.threshold_met is False
        assert first.event_room_id is None
        assert second.threshold_met is True
        assert second.event_room_id is not None

        rooms = await _rooms_for(session_factory, proposal.id)
        assert len(rooms) == 1
        assert rooms[0].id == second.event_room_id
        assert await _participants(session_factory, rooms[0].id) == {crew.alice.id, crew.bob.id}

    async def test_room_copies_proposal_details(self, session_factory, crew, make_proposal):
        now = utcnow()
        proposal = await make_proposal(
            crew.group_id,
            crew.alice.id,
            title="Bouldering",
            threshold=1,
            description="Bring chalk",
            starts_at=now + timedelta(days=2),
            ends_at=now + timedelta(days=2, hours=3),
            now=now,
        )

        result = await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES)

        [room] = await _rooms_for(session_factory, proposal.id)
        assert room.id == result.event_room_id
        assert room.title == "Bouldering"
        assert room.description == "Bring chalk"
        assert room.group_id == crew.group_id
        assert room.created_by == crew.alice.id
        assert room.starts_at == proposal.starts_at
        assert room.ends_at == proposal.ends_at

    async def test_maybe_and_no_voters_are_not_participants(
        self, session_factory, crew, make_proposal
    ):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)

        await _vote(session_factory, proposal.id, crew.carol.id, VoteValue.MAYBE)
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)
        result = await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES)

        participants = await _participants(session_factory, result.event_room_id)
        assert crew.carol.id not in participants
        assert participants == {crew.alice.id, crew.bob.id}

    async def test_maybe_votes_do_not_count_toward_threshold(
        self, session_factory, crew, make_proposal
    ):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)

        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)
        result = await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.MAYBE)

        assert result.threshold_met is False
        assert await _rooms_for(session_factory, proposal.id) == []

    async def test_trigger_publishes_changes_after_commit(
        self, session_factory, crew, make_proposal, feed
    ):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=1)
        seen = []
        for table in ("proposals", "event_rooms", "event_room_participants"):
            feed.on_change(ChangeFilter.build(table), seen.append)

        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES, feed=feed)

        assert [(e.table, e.op) for e in seen] == [
            ("proposals", ChangeOp.UPDATE),
            ("event_rooms", ChangeOp.INSERT),
            ("event_room_participants", ChangeOp.INSERT),
        ]
        assert seen[0].record["status"] == ProposalStatus.TRIGGERED


# =============================================================================
# TEST: RACES
# =============================================================================


class TestConcurrentTrigger:
    """The status compare-and-set decides who materializes."""

    async def test_stale_writer_loses_and_reuses_winner_room(
        self, session_factory, crew, make_proposal
    ):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)

        # Writer A reads the proposal while it is still open...
        async with session_factory() as stale_session:
            result = await stale_session.execute(
                select(Proposal).where(Proposal.id == proposal.id)
            )
            stale = result.scalar_one()
            await stale_session.commit()
            assert stale.status == ProposalStatus.OPEN

            # ...writer B triggers it in the meantime...
            await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)
            winner = await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES)

            # ...then A evaluates its stale view with the threshold met.
            outcome = await MaterializationEngine(stale_session).evaluate(
                stale, yes_count=2, voter_id=crew.carol.id, vote=VoteValue.YES
            )
            await stale_session.commit()

        assert outcome.created_room is False
        assert outcome.threshold_met is True
        assert outcome.event_room_id == winner.event_room_id
        assert len(await _rooms_for(session_factory, proposal.id)) == 1
        assert crew.carol.id in await _participants(session_factory, winner.event_room_id)

    async def test_many_yes_votes_create_one_room(self, session_factory, crew, make_proposal):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=1)

        results = [await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)]
        for user in (crew.bob, crew.carol):
            async with unit_of_work(session_factory) as s:
                engine = MaterializationEngine(s)
                result = await s.execute(select(Proposal).where(Proposal.id == proposal.id))
                outcome = await engine.evaluate(
                    result.scalar_one(), yes_count=1, voter_id=user.id, vote=VoteValue.YES
                )
                assert outcome.created_room is False
                results.append(outcome)

        assert len({r.event_room_id for r in results}) == 1
        assert len(await _rooms_for(session_factory, proposal.id)) == 1

    @pytest.mark.parametrize("voter_count", [2, 3])
    async def test_simultaneous_yes_votes(
        self, session_factory, crew, make_proposal, voter_count
    ):
        """Votes cast at the same time, each in its own transaction."""
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)
        voters = [crew.alice, crew.bob, crew.carol][:voter_count]

        results = await asyncio.gather(
            *(_vote(session_factory, proposal.id, u.id, VoteValue.YES) for u in voters)
        )

        [room] = await _rooms_for(session_factory, proposal.id)
        assert await _participants(session_factory, room.id) == {u.id for u in voters}
        assert any(r.threshold_met for r in results)
        assert {r.event_room_id for r in results if r.threshold_met} == {room.id}

    async def test_vote_that_waited_on_the_trigger_joins_the_room(
        self, session_factory, crew, make_proposal
    ):
        """Carol's vote arrives while open and gets the lock only after Bob's trigger."""
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=2)
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)
        trigger = {}

        class WaitsForTrigger(VoteLedger):
            async def _lock_proposal(self, proposal_id):
                trigger["result"] = await _vote(
                    session_factory, proposal_id, crew.bob.id, VoteValue.YES
                )
                return await super()._lock_proposal(proposal_id)

        async with unit_of_work(session_factory) as s:
            late = await WaitsForTrigger(s).cast_vote(proposal.id, crew.carol.id, VoteValue.YES)

        room_id = trigger["result"].event_room_id
        assert late.threshold_met is True
        assert late.event_room_id == room_id
        assert late.yes_count == 3
        assert len(await _rooms_for(session_factory, proposal.id)) == 1
        assert await _participants(session_factory, room_id) == {
            crew.alice.id,
            crew.bob.id,
            crew.carol.id,
        }

    async def test_vote_after_committed_trigger_is_closed(
        self, session_factory, crew, make_proposal
    ):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=1)
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)

        with pytest.raises(VotingClosed):
            await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES)


# =============================================================================
# TEST: CLOSE
# =============================================================================


class TestClose:
    async def test_window_passes_below_threshold(self, session_factory, crew, make_proposal):
        """Threshold 3, two YES votes, window ends: closed and no room."""
        now = utcnow()
        proposal = await make_proposal(
            crew.group_id, crew.alice.id, threshold=3, window=timedelta(hours=2), now=now
        )
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES, now=now)
        await _vote(session_factory, proposal.id, crew.bob.id, VoteValue.YES, now=now)

        async with unit_of_work(session_factory) as s:
            view = await ProposalService(s).get_proposal_with_votes(
                proposal.id, crew.carol.id, now=now + timedelta(hours=2)
            )

        assert view.proposal.status == ProposalStatus.CLOSED
        assert view.vote_counts.yes_count == 2
        assert view.event_room_id is None
        assert await _rooms_for(session_factory, proposal.id) == []

    async def test_close_is_not_applied_before_window_end(
        self, session_factory, crew, make_proposal
    ):
        now = utcnow()
        proposal = await make_proposal(
            crew.group_id, crew.alice.id, window=timedelta(hours=2), now=now
        )

        async with unit_of_work(session_factory) as s:
            result = await s.execute(select(Proposal).where(Proposal.id == proposal.id))
            closed = await MaterializationEngine(s).close_if_expired(
                result.scalar_one(), now=now + timedelta(hours=2) - timedelta(seconds=1)
            )

        assert closed is False

    async def test_triggered_proposal_never_closes(self, session_factory, crew, make_proposal):
        now = utcnow()
        proposal = await make_proposal(
            crew.group_id, crew.alice.id, threshold=1, window=timedelta(hours=1), now=now
        )
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES, now=now)

        async with unit_of_work(session_factory) as s:
            result = await s.execute(select(Proposal).where(Proposal.id == proposal.id))
            stored = result.scalar_one()
            closed = await MaterializationEngine(s).close_if_expired(
                stored, now=now + timedelta(days=1)
            )

        assert closed is False
        assert stored.status == ProposalStatus.TRIGGERED

    async def test_rooms_count_stays_one_per_proposal(self, session_factory, crew, make_proposal):
        proposal = await make_proposal(crew.group_id, crew.alice.id, threshold=1)
        await _vote(session_factory, proposal.id, crew.alice.id, VoteValue.YES)

        async with session_factory() as s:
            result = await s.execute(
                select(func.count()).select_from(EventRoom).where(
                    EventRoom.proposal_id == proposal.id
                )
            )
            assert result.scalar_one() == 1
