"""In-process backend: drives the services directly, one unit of work per call."""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.changes import ChangeFeed
from ..core.database import unit_of_work
from ..models import VoteValue
from ..schemas import CastVoteResult, PendingDecision
from ..services import MembershipDirectory, PendingDecisionsAggregator, VoteLedger


class LocalBackend:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_id: UUID,
        feed: ChangeFeed | None = None,
    ):
        self._session_factory = session_factory
        self._feed = feed
        self.user_id = user_id

    async def get_pending_decisions(self) -> list[PendingDecision]:
        async with unit_of_work(self._session_factory, self._feed) as session:
            return await PendingDecisionsAggregator(session).get_pending_decisions(self.user_id)

    async def cast_vote(self, proposal_id: UUID, value: VoteValue) -> CastVoteResult:
        async with unit_of_work(self._session_factory, self._feed) as session:
            return await VoteLedger(session).cast_vote(proposal_id, self.user_id, value)

    async def group_ids(self) -> list[UUID]:
        async with unit_of_work(self._session_factory, self._feed) as session:
            return await MembershipDirectory(session).group_ids_for_user(self.user_id)
