"""
Async HTTP client for the Grapple API.

Every method returns the API's pydantic schemas and raises the same
``grapple.errors`` kinds the server raised: the error body's ``code`` is
mapped back to its exception class. Network failures and 5xx responses
surface as ``TransientIOFailure``; the client never retries on its own.
"""

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any
from uuid import UUID

import httpx
from pydantic import TypeAdapter

from ..core.changes import ChangeEvent
from ..errors import ERRORS_BY_CODE, GrappleError, NotAuthenticated, TransientIOFailure
from ..models import VoteValue
from ..schemas import (
    CastVoteResult,
    DirectEventCreate,
    EventMessageResponse,
    EventRoomDetails,
    EventRoomMessages,
    EventRoomResponse,
    JoinResult,
    ParticipantResponse,
    PendingDecision,
    ProposalCreate,
    ProposalResponse,
    ProposalWithVotes,
    PublicEventDetails,
    TimeRemainingResponse,
)

logger = logging.getLogger(__name__)

_pending_list = TypeAdapter(list[PendingDecision])
_proposal_list = TypeAdapter(list[ProposalWithVotes])
_room_list = TypeAdapter(list[EventRoomDetails])
_participant_list = TypeAdapter(list[ParticipantResponse])


def error_from_response(response: httpx.Response) -> GrappleError:
    """Rebuild the domain error carried by a non-2xx response."""
    try:
        body = response.json()
    except ValueError:
        body = {}

    code = body.get("error") if isinstance(body, dict) else None
    message = body.get("message") if isinstance(body, dict) else None
    message = message or f"HTTP {response.status_code}"

    error_cls = ERRORS_BY_CODE.get(code) if code else None
    if error_cls is not None and error_cls is not GrappleError:
        return error_cls(message)
    if response.status_code == 401:
        return NotAuthenticated(message)
    if response.status_code >= 500:
        return TransientIOFailure(message)
    if isinstance(body, dict) and "detail" in body:
        # FastAPI request validation errors
        return GrappleError(str(body["detail"]))
    return GrappleError(message)


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[ChangeEvent]:
    """Decode a server-sent-events line stream into change events.

    Comment lines (keep-alives) are skipped; multi-line ``data`` fields are
    joined with newlines as the SSE format prescribes.
    """
    data: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data:
                payload = "\n".join(data)
                data = []
                try:
                    yield ChangeEvent.from_dict(json.loads(payload))
                except (ValueError, KeyError):
                    logger.warning(f"Skipping malformed change frame: {payload[:100]}")
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)


class GrappleClient:
    """Client-side entry point to the coordination core."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        api_prefix: str = "/api/v1",
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers
        self._prefix = api_prefix.rstrip("/")

    async def __aenter__(self) -> "GrappleClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # =========================================================================
    # PROPOSALS & VOTES
    # =========================================================================

    async def cast_vote(self, proposal_id: UUID, value: VoteValue | str) -> CastVoteResult:
        data = await self._request(
            "POST",
            f"/proposals/{proposal_id}/votes",
            json={"value": VoteValue(value).value},
        )
        return CastVoteResult.model_validate(data)

    async def remove_vote(self, proposal_id: UUID) -> None:
        await self._request("DELETE", f"/proposals/{proposal_id}/votes")

    async def get_pending_decisions(self) -> list[PendingDecision]:
        return _pending_list.validate_python(await self._request("GET", "/me/pending-decisions"))

    async def create_proposal(self, group_id: UUID, data: ProposalCreate) -> ProposalResponse:
        body = await self._request(
            "POST",
            f"/groups/{group_id}/proposals",
            json=data.model_dump(mode="json", exclude_none=True),
        )
        return ProposalResponse.model_validate(body)

    async def get_proposal(self, proposal_id: UUID) -> ProposalWithVotes:
        return ProposalWithVotes.model_validate(
            await self._request("GET", f"/proposals/{proposal_id}")
        )

    async def list_group_proposals(self, group_id: UUID) -> list[ProposalWithVotes]:
        return _proposal_list.validate_python(
            await self._request("GET", f"/groups/{group_id}/proposals")
        )

    # =========================================================================
    # EVENT ROOMS
    # =========================================================================

    async def get_event_room(self, event_room_id: UUID) -> EventRoomResponse:
        return EventRoomResponse.model_validate(
            await self._request("GET", f"/event-rooms/{event_room_id}")
        )

    async def list_event_rooms(self, include_expired: bool = True) -> list[EventRoomDetails]:
        return _room_list.validate_python(
            await self._request(
                "GET",
                "/event-rooms",
                params={"include_expired": str(include_expired).lower()},
            )
        )

    async def get_event_room_messages(
        self,
        event_room_id: UUID,
        limit: int | None = None,
        offset: int = 0,
    ) -> EventRoomMessages:
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        return EventRoomMessages.model_validate(
            await self._request("GET", f"/event-rooms/{event_room_id}/messages", params=params)
        )

    async def send_event_message(self, event_room_id: UUID, content: str) -> EventMessageResponse:
        return EventMessageResponse.model_validate(
            await self._request(
                "POST",
                f"/event-rooms/{event_room_id}/messages",
                json={"content": content},
            )
        )

    async def create_direct_event(self, data: DirectEventCreate) -> EventRoomResponse:
        return EventRoomResponse.model_validate(
            await self._request(
                "POST",
                "/event-rooms",
                json=data.model_dump(mode="json", exclude_none=True),
            )
        )

    async def get_event_room_time_remaining(self, event_room_id: UUID) -> TimeRemainingResponse:
        return TimeRemainingResponse.model_validate(
            await self._request("GET", f"/event-rooms/{event_room_id}/time-remaining")
        )

    async def get_event_room_participants(self, event_room_id: UUID) -> list[ParticipantResponse]:
        return _participant_list.validate_python(
            await self._request("GET", f"/event-rooms/{event_room_id}/participants")
        )

    async def join_event_room(self, event_room_id: UUID) -> JoinResult:
        return JoinResult.model_validate(
            await self._request("POST", f"/event-rooms/{event_room_id}/join")
        )

    async def get_public_event_details(self, event_room_id: UUID) -> PublicEventDetails:
        return PublicEventDetails.model_validate(
            await self._request("GET", f"/event-rooms/{event_room_id}/public")
        )

    # =========================================================================
    # CHANGE STREAM
    # =========================================================================

    async def iter_changes(self) -> AsyncIterator[ChangeEvent]:
        """Follow the server's change stream until the connection ends."""
        try:
            async with self._http.stream(
                "GET",
                f"{self._prefix}/changes/stream",
                headers={**self._headers, "Accept": "text/event-stream"},
                timeout=None,
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise error_from_response(response)
                async for event in parse_sse_lines(response.aiter_lines()):
                    yield event
        except httpx.TransportError as e:
            raise TransientIOFailure(f"Change stream interrupted: {e}") from e

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(
                method,
                f"{self._prefix}{path}",
                headers=self._headers,
                **kwargs,
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientIOFailure(f"Request failed: {e}") from e

        if response.is_error:
            raise error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()
