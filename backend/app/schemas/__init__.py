"""Pydantic schemas for websocket payloads."""

from .poker import (
    Envelope,
    ErrorPayload,
    JoinAck,
    JoinRequest,
    MemberState,
    RoomRequest,
    RoomState,
    VoteRequest,
)

__all__ = [
    "Envelope",
    "ErrorPayload",
    "JoinAck",
    "JoinRequest",
    "MemberState",
    "RoomRequest",
    "RoomState",
    "VoteRequest",
]
