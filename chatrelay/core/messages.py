from __future__ import annotations

import itertools
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional


_seq = itertools.count(1)


def next_message_id(prefix: str, ts: int) -> str:
    """Process-unique id, ordered by creation within a room."""

    return f"{prefix}_{ts}_{next(_seq)}"


@dataclass(frozen=True, slots=True)
class Message:
    message_id: str
    room_id: str
    author_id: str
    author_name: str
    gender: str
    country: Dict[str, str]
    body: str
    created_ms: int
    synthetic: bool = False

    def public_view(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "room": self.room_id,
            "user_id": self.author_id,
            "username": self.author_name,
            "gender": self.gender,
            "country": dict(self.country),
            "content": self.body,
            "timestamp": self.created_ms,
            "is_auto": self.synthetic,
        }


@dataclass(frozen=True, slots=True)
class DirectMessage:
    message_id: str
    sender: str
    recipient: str
    body: str
    created_ms: int

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["id"] = data.pop("message_id")
        return data


class MessageLog:
    """Per-room bounded message sequences.

    Appends evict the oldest entry once a room holds ``capacity`` messages.
    Every mutation replaces or edits a room's deque in one synchronous step.
    """

    def __init__(self, room_ids: Iterable[str], capacity: int = 30) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._rooms: Dict[str, Deque[Message]] = {rid: deque() for rid in room_ids}

    def _room(self, room_id: str) -> Deque[Message]:
        try:
            return self._rooms[room_id]
        except KeyError:
            raise KeyError(f"unknown room {room_id}") from None

    @property
    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def append(self, room_id: str, message: Message) -> Optional[Message]:
        entries = self._room(room_id)
        evicted = None
        if len(entries) >= self.capacity:
            evicted = entries.popleft()
        entries.append(message)
        return evicted

    def tail(self, room_id: str, n: int) -> List[Message]:
        entries = self._room(room_id)
        if n <= 0:
            return []
        return list(entries)[-n:]

    def delete_by_id(self, room_id: str, message_id: str) -> bool:
        entries = self._room(room_id)
        for message in entries:
            if message.message_id == message_id:
                entries.remove(message)
                return True
        return False

    def purge_older_than(self, room_id: str, cutoff_ms: int) -> int:
        entries = self._room(room_id)
        kept = deque(m for m in entries if m.created_ms >= cutoff_ms)
        removed = len(entries) - len(kept)
        if removed:
            self._rooms[room_id] = kept
        return removed

    def find(self, message_id: str) -> Optional[Message]:
        for entries in self._rooms.values():
            for message in entries:
                if message.message_id == message_id:
                    return message
        return None

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._rooms.values())

    def length(self, room_id: str) -> int:
        return len(self._room(room_id))

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return {rid: [m.public_view() for m in entries] for rid, entries in self._rooms.items()}

    def clear(self) -> None:
        for rid in self._rooms:
            self._rooms[rid] = deque()


class DirectMessageRing:
    """Recent direct messages, kept only for the admin snapshot."""

    def __init__(self, capacity: int = 50) -> None:
        self._entries: Deque[DirectMessage] = deque(maxlen=capacity)

    def record(self, message: DirectMessage) -> None:
        self._entries.append(message)

    def recent(self, n: int) -> List[DirectMessage]:
        return list(self._entries)[-n:] if n > 0 else []

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


__all__ = [
    "Message",
    "DirectMessage",
    "MessageLog",
    "DirectMessageRing",
    "next_message_id",
]
