"""Group membership lookups (the identity collaborator's read side)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotGroupMember
from ..models import Group, GroupMember


class MembershipDirectory:
    """Answers "is this user in this group" for the coordination services."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def is_group_member(self, group_id: UUID, user_id: UUID) -> bool:
        result = await self._session.execute(
            select(GroupMember.id).where(
                GroupMember.group_id == group_id,
                GroupMember.user_id == user_id,
            )
        )
        return result.first() is not None

    async def require_member(self, group_id: UUID, user_id: UUID) -> None:
        if not await self.is_group_member(group_id, user_id):
            raise NotGroupMember(f"User {user_id} is not a member of group {group_id}")

    async def group_ids_for_user(self, user_id: UUID) -> list[UUID]:
        result = await self._session.execute(
            select(GroupMember.group_id)
            .where(GroupMember.user_id == user_id)
            .order_by(GroupMember.joined_at)
        )
        return list(result.scalars().all())

    async def group_name(self, group_id: UUID | None) -> str | None:
        if group_id is None:
            return None
        result = await self._session.execute(
            select(Group.name).where(Group.id == group_id)
        )
        return result.scalar_one_or_none()
