"""Envelope codec for the voting websocket protocol."""

from __future__ import annotations

import enum
import json
from typing import Any

from pydantic import BaseModel, ValidationError

from app.schemas.poker import (
    Envelope,
    ErrorPayload,
    JoinAck,
    JoinRequest,
    MemberState,
    RoomRequest,
    RoomState,
    VoteRequest,
    WireModel,
)

from .errors import MalformedMessage
from .models import RoomSnapshot


class OperationTag(str, enum.Enum):
    JOIN = "JOIN"
    VOTE = "VOTE"
    REVEAL = "REVEAL"
    CONCEAL = "CONCEAL"
    RESET = "RESET"
    STATE = "STATE"
    ERROR = "ERROR"


INBOUND_SCHEMAS: dict[OperationTag, type[BaseModel]] = {
    OperationTag.JOIN: JoinRequest,
    OperationTag.VOTE: VoteRequest,
    OperationTag.REVEAL: RoomRequest,
    OperationTag.CONCEAL: RoomRequest,
    OperationTag.RESET: RoomRequest,
}


def decode_envelope(raw: str | bytes) -> Envelope:
    """Parse one text frame into an :class:`Envelope`."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage("Message is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedMessage("Message must be a JSON object")
    try:
        return Envelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid envelope: {exc.error_count()} error(s)") from exc


def inbound_tag(envelope: Envelope) -> OperationTag | None:
    """Return the tag of a client-originated operation, or ``None`` if unsupported."""

    try:
        tag = OperationTag(envelope.type)
    except ValueError:
        return None
    return tag if tag in INBOUND_SCHEMAS else None


def parse_payload(tag: OperationTag, payload: dict[str, Any]) -> BaseModel:
    schema = INBOUND_SCHEMAS.get(tag)
    if schema is None:
        raise MalformedMessage(f"{tag.value} cannot be sent by clients")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid {tag.value} payload: {exc.error_count()} error(s)") from exc


def encode_envelope(tag: OperationTag, payload: WireModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(payload, WireModel):
        payload = payload.to_wire()
    return {"type": tag.value, "payload": payload}


def join_envelope(user_id: str) -> dict[str, Any]:
    return encode_envelope(OperationTag.JOIN, JoinAck(user_id=user_id))


def error_envelope(message: str) -> dict[str, Any]:
    return encode_envelope(OperationTag.ERROR, ErrorPayload(message=message))


def state_envelope(snapshot: RoomSnapshot) -> dict[str, Any]:
    state = RoomState(
        room_id=snapshot.room_id,
        votes_visible=snapshot.votes_visible,
        members=[
            MemberState(
                id=view.id,
                display_name=view.display_name,
                vote=view.vote,
                has_voted=view.has_voted,
            )
            for view in snapshot.members
        ],
    )
    return encode_envelope(OperationTag.STATE, state)
