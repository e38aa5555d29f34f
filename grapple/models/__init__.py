"""SQLAlchemy ORM Models for Grapple."""

from .base import Base, TimestampMixin, UUIDMixin, ensure_utc, utcnow
from .models import (
    # Enums
    ProposalStatus,
    VoteValue,
    # Identity
    Group,
    GroupMember,
    User,
    # Proposals
    Proposal,
    Vote,
    # Event rooms
    EventMessage,
    EventRoom,
    EventRoomParticipant,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    "ensure_utc",
    # Enums
    "ProposalStatus",
    "VoteValue",
    # Identity
    "User",
    "Group",
    "GroupMember",
    # Proposals
    "Proposal",
    "Vote",
    # Event rooms
    "EventRoom",
    "EventRoomParticipant",
    "EventMessage",
]
