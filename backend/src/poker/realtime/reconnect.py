"""Decides whether a join creates, resumes or reclaims an identity."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass

from .errors import UserNotFound
from .models import User
from .store import Clock, DomainStore

logger = logging.getLogger(__name__)


class JoinOutcome(str, enum.Enum):
    TOKEN_RESUME = "token_resume"
    GRACE_RESUME = "grace_resume"
    NEW = "new"


@dataclass(frozen=True, slots=True)
class JoinResult:
    user: User
    outcome: JoinOutcome

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def resumed(self) -> bool:
        return self.outcome is not JoinOutcome.NEW


class ReconnectionManager:
    """Classify joins and soften disconnects into a grace period.

    A join is resolved in priority order:

    1. token resume: ``existing_user_id`` names a member of the room with the
       same display name (a second tab, or a client that kept its id);
    2. grace resume: a disconnected member of the room carries the same display
       name and went away no longer than ``grace_period_seconds`` ago;
    3. a new identity, subject to the store's capacity checks.

    Token resume goes first so that a second tab never merges with an unrelated
    disconnected user who happens to share the display name.
    """

    def __init__(
        self,
        store: DomainStore,
        *,
        grace_period_seconds: float,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self.grace_period_seconds = grace_period_seconds
        self._clock = clock

    def join(
        self, display_name: str, room_id: str, existing_user_id: str | None = None
    ) -> JoinResult:
        with self._store.atomic():
            if existing_user_id:
                for candidate in self._store.find_members(room_id, user_id=existing_user_id):
                    if candidate.display_name != display_name:
                        continue
                    user = self._store.reconnect(candidate.id)
                    logger.info(
                        "User '%s' resumed identity in room '%s' from another tab (user id: %s)",
                        display_name,
                        room_id,
                        user.id,
                    )
                    return JoinResult(user, JoinOutcome.TOKEN_RESUME)

            now = self._clock()
            for candidate in self._store.find_members(
                room_id, display_name=display_name, disconnected=True
            ):
                if self.within_grace(candidate, now):
                    user = self._store.reconnect(candidate.id)
                    logger.info(
                        "User '%s' reconnected to room '%s' (user id: %s), vote preserved",
                        display_name,
                        room_id,
                        user.id,
                    )
                    return JoinResult(user, JoinOutcome.GRACE_RESUME)
                # The sweeper has not caught up with this one yet.
                self._store.permanently_remove(candidate.id)
                logger.info(
                    "Grace period of user '%s' in room '%s' already elapsed (user id: %s)",
                    display_name,
                    room_id,
                    candidate.id,
                )

            user = self._store.join_room(display_name, room_id)
            return JoinResult(user, JoinOutcome.NEW)

    def leave(self, user_id: str) -> User | None:
        """Timestamp the disconnect; removal is left to the sweeper."""

        try:
            user = self._store.mark_disconnected(user_id)
        except UserNotFound:
            logger.warning("Attempted to mark non-existent user as disconnected: %s", user_id)
            return None
        logger.info(
            "User '%s' disconnected from room '%s' (user id: %s), grace period %.0f seconds",
            user.display_name,
            user.room_id,
            user_id,
            self.grace_period_seconds,
        )
        return user

    def within_grace(self, user: User, now: float | None = None) -> bool:
        if user.disconnected_at is None:
            return True
        if now is None:
            now = self._clock()
        return now - user.disconnected_at <= self.grace_period_seconds

    def expiry_cutoff(self, now: float | None = None) -> float:
        """Users disconnected before this instant are past their grace period."""

        if now is None:
            now = self._clock()
        return now - self.grace_period_seconds
