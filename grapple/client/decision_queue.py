"""
Client Decision Queue: pending decisions presented one at a time.

One queue is constructed per user session and passed to whatever presents
decisions. Its state is owned by that session alone:

- ``pending``: the latest snapshot from the backend, always replaced whole
- ``dismissed``: proposals the user skipped this session (never persisted)

Refreshes happen on session start, after every successful vote, and whenever
a relevant change notification arrives.
"""

import logging
from collections.abc import AsyncIterable, Callable, Iterable
from typing import Protocol
from uuid import UUID

from ..core.changes import ChangeEvent, ChangeFeed, ChangeFilter, ChangeOp
from ..errors import GrappleError, ProposalNotFound
from ..models import VoteValue
from ..schemas import CastVoteResult, PendingDecision

logger = logging.getLogger(__name__)


class DecisionBackend(Protocol):
    """What the queue needs from the server side (HTTP or in-process)."""

    async def get_pending_decisions(self) -> list[PendingDecision]: ...

    async def cast_vote(self, proposal_id: UUID, value: VoteValue) -> CastVoteResult: ...


def refresh_filters(group_ids: Iterable[UUID]) -> list[ChangeFilter]:
    """Changes that can alter a member's pending set."""
    group_ids = list(group_ids)
    return [
        ChangeFilter.build(
            "proposals",
            ops=[ChangeOp.INSERT, ChangeOp.UPDATE, ChangeOp.DELETE],
            column="group_id",
            values=group_ids,
        ),
        ChangeFilter.build(
            "votes",
            ops=[ChangeOp.INSERT, ChangeOp.UPDATE],
            column="group_id",
            values=group_ids,
        ),
    ]


class DecisionQueue:
    def __init__(self, backend: DecisionBackend):
        self._backend = backend
        self.pending: list[PendingDecision] = []
        self.dismissed: set[UUID] = set()
        self._locked: PendingDecision | None = None
        self._unsubscribes: list[Callable[[], None]] = []

    async def refresh(self) -> list[PendingDecision]:
        """Replace ``pending`` with a fresh snapshot (last write wins)."""
        snapshot = await self._backend.get_pending_decisions()
        self.pending = list(snapshot)
        return self.pending

    def current(self) -> PendingDecision | None:
        """The decision to show now, or None when nothing is left."""
        if self._locked is not None:
            return self._locked
        for decision in self.pending:
            if decision.proposal.id not in self.dismissed:
                return decision
        return None

    def dismiss(self) -> PendingDecision | None:
        """Skip the current decision for the rest of the session.

        Releases a lock. Returns the decision that was dismissed.
        """
        decision = self.current()
        self._locked = None
        if decision is not None:
            self.dismissed.add(decision.proposal.id)
        return decision

    def lock(self) -> PendingDecision | None:
        """Pin the current decision until the next ``dismiss()``.

        Used while the outcome of a vote is being shown, so that refreshes
        do not swap the decision out from under the user.
        """
        self._locked = self.current()
        return self._locked

    @property
    def is_locked(self) -> bool:
        return self._locked is not None

    async def vote(self, value: VoteValue) -> CastVoteResult:
        """Vote on the current decision, then refresh and advance.

        A failed vote changes nothing here and re-raises. If the vote went
        through but the refresh after it fails, the decision is dismissed
        so the queue still advances.
        """
        decision = self.current()
        if decision is None:
            raise ProposalNotFound("No pending decision to vote on")

        proposal_id = decision.proposal.id
        result = await self._backend.cast_vote(proposal_id, VoteValue(value))

        try:
            await self.refresh()
        except GrappleError as e:
            logger.warning(f"Refresh after vote on {proposal_id} failed: {e}")
            self.dismissed.add(proposal_id)
        return result

    # =========================================================================
    # CHANGE NOTIFICATIONS
    # =========================================================================

    async def start(self, feed: ChangeFeed, group_ids: Iterable[UUID]) -> None:
        """Begin a session against an in-process feed: subscribe, then load."""
        self.close()
        for change_filter in refresh_filters(group_ids):
            self._unsubscribes.append(feed.on_change(change_filter, self._on_change))
        await self.refresh()

    async def follow(
        self,
        changes: AsyncIterable[ChangeEvent],
        group_ids: Iterable[UUID],
    ) -> None:
        """Refresh on every relevant event of a remote change stream.

        Runs until the stream ends. Failed refreshes are logged and the
        stream is kept; the next notification refreshes again.
        """
        filters = refresh_filters(group_ids)
        async for event in changes:
            if not any(f.matches(event) for f in filters):
                continue
            try:
                await self.refresh()
            except GrappleError as e:
                logger.warning(f"Refresh on {event.table} {event.op.value} failed: {e}")

    def close(self) -> None:
        """Drop feed subscriptions. State is kept."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(f"Refreshing pending decisions on {event.table} {event.op.value}")
        await self.refresh()
