"""Error kinds raised by the coordination core.

Every error carries a stable ``code`` (used in API error bodies and mapped
back to the same class by the HTTP client) and the HTTP status it maps to.
"""


class GrappleError(Exception):
    """Base exception for coordination operations."""

    code = "grapple_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class NotAuthenticated(GrappleError):
    """No authenticated user."""

    code = "not_authenticated"
    status_code = 401


class NotGroupMember(GrappleError):
    """User is not a member of the group."""

    code = "not_group_member"
    status_code = 403


class VotingClosed(GrappleError):
    """Voting on this proposal is closed."""

    code = "voting_closed"
    status_code = 409


class InvalidThreshold(GrappleError):
    """Threshold must be at least 1."""

    code = "invalid_threshold"
    status_code = 422


class ProposalNotFound(GrappleError):
    """Proposal does not exist."""

    code = "proposal_not_found"
    status_code = 404


class RoomExpired(GrappleError):
    """Event room has expired and is read-only."""

    code = "room_expired"
    status_code = 410


class NotParticipant(GrappleError):
    """User is not a participant of this event room."""

    code = "not_participant"
    status_code = 403


class TransientIOFailure(GrappleError):
    """Backend or network failure; safe to retry."""

    code = "transient_io_failure"
    status_code = 503


class EventRoomNotFound(GrappleError):
    """Event room does not exist."""

    code = "event_room_not_found"
    status_code = 404


class NotProposalCreator(GrappleError):
    """Only the proposal's creator can do this."""

    code = "not_proposal_creator"
    status_code = 403


class ProposalNotEditable(GrappleError):
    """Proposal is no longer open."""

    code = "proposal_not_editable"
    status_code = 409


class InvalidProposal(GrappleError):
    """Proposal fields are inconsistent."""

    code = "invalid_proposal"
    status_code = 422


class InvalidSchedule(GrappleError):
    """Event ends before it starts."""

    code = "invalid_schedule"
    status_code = 422


class InvalidMessage(GrappleError):
    """Message content is empty or too long."""

    code = "invalid_message"
    status_code = 422


ERRORS_BY_CODE: dict[str, type[GrappleError]] = {
    cls.code: cls
    for cls in (
        GrappleError,
        NotAuthenticated,
        NotGroupMember,
        VotingClosed,
        InvalidThreshold,
        ProposalNotFound,
        RoomExpired,
        NotParticipant,
        TransientIOFailure,
        EventRoomNotFound,
        NotProposalCreator,
        ProposalNotEditable,
        InvalidProposal,
        InvalidSchedule,
        InvalidMessage,
    )
}
