from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Set, Tuple

from .errors import AuthorizationError, NotFoundError

if TYPE_CHECKING:  # pragma: no cover
    from .messages import Message, MessageLog
    from .sessions import Session

log = logging.getLogger("chatrelay.core.rooms")

ROOM_GLOBAL = "global"
ROOM_MIXED = "male_female"
ROOM_MALE = "male_male"
ROOM_FEMALE = "female_female"

ASSIGN_SELF_SELECT = "self-select"
ASSIGN_GENDER = "gender-assigned"


@dataclass(frozen=True, slots=True)
class Room:
    room_id: str
    title: str
    gender: Optional[str] = None  # None: open to all
    manual: bool = False  # only reachable by an explicit switch

    def admits(self, gender: str) -> bool:
        return self.gender is None or self.gender == gender

    def as_dict(self) -> Dict[str, object]:
        return {"id": self.room_id, "title": self.title, "gender": self.gender, "manual": self.manual}


DEFAULT_ROOMS: Tuple[Room, ...] = (
    Room(ROOM_GLOBAL, "Global"),
    Room(ROOM_MIXED, "Male & Female", manual=True),
    Room(ROOM_MALE, "Male only", gender="Male"),
    Room(ROOM_FEMALE, "Female only", gender="Female"),
)


class RoomRegistry:
    """Closed set of rooms and their member sets."""

    def __init__(self, messages: "MessageLog", rooms: Tuple[Room, ...] = DEFAULT_ROOMS, replay_size: int = 30) -> None:
        self.messages = messages
        self.replay_size = replay_size
        self._rooms: Dict[str, Room] = {r.room_id: r for r in rooms}
        self._members: Dict[str, Set[str]] = {r.room_id: set() for r in rooms}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def get(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise NotFoundError(f"no such room {room_id}", code="UNKNOWN_ROOM")
        return room

    def resolve_room(self, candidate: str, gender: str) -> str:
        room = self.get(candidate)
        if not room.admits(gender):
            raise AuthorizationError(f"{room.title} is restricted", code="ROOM_RESTRICTED")
        return room.room_id

    def assign_room(self, gender: str, mode: str) -> str:
        """Initial room for a joining session."""

        if mode == ASSIGN_GENDER:
            for room in self._rooms.values():
                if room.gender is not None and room.gender == gender:
                    return room.room_id
        return ROOM_GLOBAL

    def members_of(self, room_id: str) -> FrozenSet[str]:
        self.get(room_id)
        return frozenset(self._members[room_id])

    def counts(self) -> Dict[str, int]:
        return {room_id: len(members) for room_id, members in self._members.items()}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def place(self, session: "Session", room_id: str) -> None:
        self.get(room_id)
        self._detach(session.session_id)
        self._members[room_id].add(session.session_id)
        session.room_id = room_id

    def evict(self, session: "Session") -> None:
        self._detach(session.session_id)

    def switch_room(self, session: "Session", new_room_id: str) -> List["Message"]:
        """Move a session to ``new_room_id`` and return the backlog to replay.

        Runs without yielding, so no reader sees the session in zero or two rooms.
        """

        self.get(new_room_id)
        previous = session.room_id
        self._members.get(previous, set()).discard(session.session_id)
        self._members[new_room_id].add(session.session_id)
        session.room_id = new_room_id
        log.debug("Session %s moved %s -> %s", session.session_id, previous, new_room_id)
        return self.messages.tail(new_room_id, self.replay_size)

    def _detach(self, session_id: str) -> None:
        for members in self._members.values():
            members.discard(session_id)


__all__ = [
    "Room",
    "RoomRegistry",
    "DEFAULT_ROOMS",
    "ROOM_GLOBAL",
    "ROOM_MIXED",
    "ROOM_MALE",
    "ROOM_FEMALE",
    "ASSIGN_SELF_SELECT",
    "ASSIGN_GENDER",
]
