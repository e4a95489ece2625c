"""Schemas for the voting websocket protocol.

Field names travel in camelCase on the wire; Python code uses snake_case.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, constr
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model mapping snake_case attributes to camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Envelope(BaseModel):
    """Outer frame shared by every inbound and outbound message."""

    type: StrictStr = Field(..., min_length=1, description="Operation tag")
    payload: dict[str, Any] = Field(default_factory=dict, description="Operation specific body")


class JoinRequest(WireModel):
    """Payload of a ``JOIN`` request."""

    display_name: constr(min_length=1, max_length=64)
    room_id: constr(min_length=1, max_length=128)
    existing_user_id: StrictStr | None = Field(
        default=None, description="Identity issued by a previous join, used to resume it"
    )


class VoteRequest(WireModel):
    """Payload of a ``VOTE`` request. Any string is a legal vote."""

    user_id: StrictStr
    room_id: constr(min_length=1, max_length=128)
    value: StrictStr


class RoomRequest(WireModel):
    """Payload of ``REVEAL``, ``CONCEAL`` and ``RESET`` requests."""

    room_id: constr(min_length=1, max_length=128)


class JoinAck(WireModel):
    user_id: str


class MemberState(WireModel):
    id: str
    display_name: str
    vote: str | None = None
    has_voted: bool


class RoomState(WireModel):
    """Room view pushed to every connection of the room."""

    room_id: str
    votes_visible: bool
    members: list[MemberState] = Field(default_factory=list)


class ErrorPayload(WireModel):
    message: str
