from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    AddressBanned,
    CapacityExceeded,
    DuplicateConnection,
    NameBanned,
    NameInUse,
    NotFoundError,
    ValidationError,
)
from .proto import now_ms
from .reference import GENDERS, Country, country_by_code
from .rooms import RoomRegistry

log = logging.getLogger("chatrelay.core.sessions")

NowFn = Callable[[], int]
SessionPredicate = Callable[["Session"], bool]


def _name_key(name: str) -> str:
    return name.strip().casefold()


@dataclass(frozen=True, slots=True)
class Profile:
    name: str
    gender: str
    country: Country

    @classmethod
    def validate(cls, name: Any, gender: Any, country_code: Any, *, name_min: int = 2, name_max: int = 20) -> "Profile":
        if not isinstance(name, str):
            raise ValidationError("display name is required")
        cleaned = name.strip()
        if not name_min <= len(cleaned) <= name_max:
            raise ValidationError(f"display name must be {name_min}-{name_max} characters")
        if gender not in GENDERS:
            raise ValidationError(f"gender must be one of {', '.join(GENDERS)}")
        country = country_by_code(country_code if isinstance(country_code, str) else None)
        if country is None:
            raise ValidationError("unknown country code")
        return cls(name=cleaned, gender=gender, country=country)


@dataclass(slots=True)
class Session:
    session_id: str
    name: str
    gender: str
    country: Country
    address: str
    room_id: str = ""
    online: bool = True
    muted: bool = False
    mute_until_ms: int = 0
    last_activity_ms: int = field(default_factory=now_ms)
    joined_ms: int = field(default_factory=now_ms)
    is_synthetic: bool = False

    def public_view(self) -> Dict[str, Any]:
        return {
            "nickname": self.name,
            "gender": self.gender,
            "country": self.country.as_dict(),
            "current_room": self.room_id,
            "is_auto": self.is_synthetic,
        }

    def admin_view(self) -> Dict[str, Any]:
        view = self.public_view()
        view.update(
            {
                "id": self.session_id,
                "address": self.address,
                "online": self.online,
                "muted": self.muted,
                "mute_until": self.mute_until_ms,
                "last_activity": self.last_activity_ms,
                "joined": self.joined_ms,
            }
        )
        return view


@dataclass(frozen=True, slots=True)
class BanRecord:
    kind: str  # "name" | "address"
    value: str
    reason: str
    created_ms: int

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "value": self.value, "reason": self.reason, "created": self.created_ms}


class BanList:
    """Process-lifetime bans keyed by display name (case-insensitive) or address."""

    def __init__(self, now: NowFn = now_ms) -> None:
        self.now = now
        self._names: Dict[str, BanRecord] = {}
        self._addresses: Dict[str, BanRecord] = {}

    def ban_name(self, name: str, reason: str = "") -> BanRecord:
        record = BanRecord("name", name.strip(), reason, self.now())
        self._names[_name_key(name)] = record
        return record

    def ban_address(self, address: str, reason: str = "") -> BanRecord:
        record = BanRecord("address", address.strip(), reason, self.now())
        self._addresses[address.strip()] = record
        return record

    def is_name_banned(self, name: str) -> bool:
        return _name_key(name) in self._names

    def is_address_banned(self, address: Optional[str]) -> bool:
        return bool(address) and address in self._addresses

    def records(self) -> List[BanRecord]:
        return [*self._names.values(), *self._addresses.values()]

    def clear(self) -> None:
        self._names.clear()
        self._addresses.clear()


class SessionStore:
    """Live sessions keyed by connection id."""

    def __init__(
        self,
        registry: RoomRegistry,
        bans: BanList,
        *,
        max_users: int = 100,
        now: NowFn = now_ms,
    ) -> None:
        self.registry = registry
        self.bans = bans
        self.max_users = max_users
        self.now = now
        self._sessions: Dict[str, Session] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(
        self,
        connection_id: str,
        profile: Profile,
        address: str,
        room_id: str,
        *,
        synthetic: bool = False,
    ) -> Session:
        if connection_id in self._sessions:
            raise DuplicateConnection("connection already joined")
        if self.bans.is_address_banned(address):
            raise AddressBanned("address is banned")
        if self.bans.is_name_banned(profile.name):
            raise NameBanned("display name is banned")
        if not synthetic and self.real_count() >= self.max_users:
            raise CapacityExceeded("server is full")
        if self.find_by_name(profile.name) is not None:
            raise NameInUse("display name already in use")

        now = self.now()
        session = Session(
            session_id=connection_id,
            name=profile.name,
            gender=profile.gender,
            country=profile.country,
            address=address,
            last_activity_ms=now,
            joined_ms=now,
            is_synthetic=synthetic,
        )
        if synthetic:
            # posts name their room explicitly; never a member, so never counted
            self.registry.get(room_id)
            session.room_id = room_id
        else:
            self.registry.place(session, room_id)
        self._sessions[connection_id] = session
        log.debug("Created session %s (%s) in %s", connection_id, profile.name, room_id)
        return session

    def remove(self, connection_id: str) -> Session:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            raise NotFoundError("no session for connection", code="NOT_JOINED")
        session.online = False
        self.registry.evict(session)
        return session

    def clear(self) -> None:
        for session in list(self._sessions.values()):
            session.online = False
            self.registry.evict(session)
        self._sessions.clear()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, connection_id: str) -> Session:
        session = self._sessions.get(connection_id)
        if session is None:
            raise NotFoundError("join a room first", code="NOT_JOINED")
        return session

    def lookup(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def find_by_name(self, name: str) -> Optional[Session]:
        key = _name_key(name)
        for session in self._sessions.values():
            if session.online and _name_key(session.name) == key:
                return session
        return None

    def find_by_address(self, address: str) -> List[Session]:
        return [s for s in self._sessions.values() if s.online and s.address == address]

    def list_online(self, predicate: Optional[SessionPredicate] = None) -> List[Session]:
        online = [s for s in self._sessions.values() if s.online]
        if predicate is None:
            return online
        return [s for s in online if predicate(s)]

    def real_count(self) -> int:
        return sum(1 for s in self._sessions.values() if not s.is_synthetic)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def touch(self, connection_id: str) -> None:
        self.get(connection_id).last_activity_ms = self.now()

    def mute(self, connection_id: str, until_ms: int) -> Session:
        session = self.get(connection_id)
        session.muted = True
        session.mute_until_ms = until_ms
        return session

    def check_mute(self, session: Session) -> bool:
        """True while the session's mute is live; clears an expired mute."""

        if not session.muted:
            return False
        if self.now() >= session.mute_until_ms:
            session.muted = False
            session.mute_until_ms = 0
            log.debug("Mute expired for %s", session.name)
            return False
        return True


__all__ = [
    "Profile",
    "Session",
    "BanRecord",
    "BanList",
    "SessionStore",
]
