"""Business logic services for Grapple."""

from .event_rooms import EventRoomService, admit_participant
from .expiry_policy import (
    DEFAULT_CONFIG,
    ExpiryConfig,
    TimeRemaining,
    expires_at,
    is_expired,
    time_remaining,
)
from .materialization import MaterializationEngine, MaterializationOutcome
from .membership import MembershipDirectory
from .pending import PendingDecisionsAggregator
from .proposals import ProposalService, proposal_response
from .vote_ledger import VoteLedger, counts_from_row, vote_counts_subquery

__all__ = [
    # Proposals & votes
    "ProposalService",
    "proposal_response",
    "VoteLedger",
    "vote_counts_subquery",
    "counts_from_row",
    "MaterializationEngine",
    "MaterializationOutcome",
    "PendingDecisionsAggregator",
    # Event rooms
    "EventRoomService",
    "admit_participant",
    "ExpiryConfig",
    "DEFAULT_CONFIG",
    "TimeRemaining",
    "expires_at",
    "is_expired",
    "time_remaining",
    # Identity
    "MembershipDirectory",
]
