"""Grapple API Schemas.

Schemas are organized by domain:
- base: common base model, error body, references
- proposals: proposals, votes, pending decisions
- event_rooms: event rooms, participants, messages
"""

from .base import (
    ErrorDetail,
    ErrorResponse,
    GrappleBaseModel,
    GroupRef,
    ProfileRef,
)
from .event_rooms import (
    DirectEventCreate,
    EventMessageCreate,
    EventMessageResponse,
    EventRoomDetails,
    EventRoomMessages,
    EventRoomResponse,
    JoinResult,
    ParticipantResponse,
    PublicEventDetails,
    TimeRemainingResponse,
)
from .proposals import (
    CastVoteRequest,
    CastVoteResult,
    PendingDecision,
    ProposalCreate,
    ProposalResponse,
    ProposalUpdate,
    ProposalWithVotes,
    VoteCounts,
)

__all__ = [
    # Base
    "GrappleBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    "ProfileRef",
    "GroupRef",
    # Proposals
    "ProposalCreate",
    "ProposalUpdate",
    "ProposalResponse",
    "ProposalWithVotes",
    "VoteCounts",
    "CastVoteRequest",
    "CastVoteResult",
    "PendingDecision",
    # Event rooms
    "DirectEventCreate",
    "EventRoomResponse",
    "EventRoomDetails",
    "EventRoomMessages",
    "EventMessageCreate",
    "EventMessageResponse",
    "ParticipantResponse",
    "TimeRemainingResponse",
    "JoinResult",
    "PublicEventDetails",
]
