from __future__ import annotations

"""
Broadcast engine
----------------
The only part of the core that talks to connections. Every operation is
synchronous: state is mutated and the resulting frames are queued on the
transport before control returns to the event loop, so members of a room
observe messages in exactly the order they were appended to its log.

Visibility rules
================
- room members get the redacted message view (no address, no moderation flags)
- authenticated admin connections get an ``admin_live`` mirror with full detail
- direct messages reach exactly one recipient plus an echo to the sender
- presence is either ``anonymous`` (join/leave notices to the room only) or
  ``roster`` (full roster to everyone on every change); counts go out in both
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from ..config import Settings
from . import proto
from .errors import (
    AddressBanned,
    AuthorizationError,
    CapacityExceeded,
    ChatError,
    NameBanned,
    NotFoundError,
    ValidationError,
)
from .messages import DirectMessage, Message, next_message_id
from .rooms import ASSIGN_SELF_SELECT
from .sessions import Profile, Session
from .state import ChatState

log = logging.getLogger("chatrelay.core.broadcast")

PRESENCE_ANONYMOUS = "anonymous"
PRESENCE_ROSTER = "roster"

# Join failures that must not reveal which moderation or capacity rule fired.
_MASKED_JOIN_ERRORS = (NameBanned, AddressBanned, CapacityExceeded)


class Transport(Protocol):
    def send(self, connection_id: str, frame: Dict[str, Any]) -> None: ...

    def close(self, connection_id: str, reason: str = "") -> None: ...


class BroadcastEngine:
    def __init__(self, state: ChatState, transport: Transport) -> None:
        self.state = state
        self.transport = transport
        self.settings: Settings = state.settings
        self.admins: Set[str] = set()

    @property
    def presence_mode(self) -> str:
        return self.settings.presence_mode

    # ------------------------------------------------------------------
    # Join / leave
    # ------------------------------------------------------------------

    def join(self, connection_id: str, address: str, event: proto.JoinEvent) -> Optional[Session]:
        limits = self.settings.limits
        try:
            profile = Profile.validate(
                event.name, event.gender, event.country, name_min=limits.name_min, name_max=limits.name_max
            )
            if event.room and self.settings.room_assignment == ASSIGN_SELF_SELECT:
                room_id = self.state.registry.resolve_room(event.room, profile.gender)
            else:
                room_id = self.state.registry.assign_room(profile.gender, self.settings.room_assignment)
            session = self.state.sessions.create_session(connection_id, profile, address, room_id)
        except ChatError as exc:
            self._reject_join(connection_id, address, event.name, exc)
            return None

        backlog = self.state.messages.tail(session.room_id, self.state.registry.replay_size)
        me = session.public_view()
        me["id"] = session.session_id
        self._send(
            connection_id,
            proto.T_JOIN_ACCEPTED,
            {
                "user": me,
                "room": session.room_id,
                "backlog": [m.public_view() for m in backlog],
                "rooms": [r.as_dict() for r in self.state.registry.rooms()],
                "presence_mode": self.presence_mode,
            },
        )
        log.info("%s joined %s from %s", session.name, session.room_id, address)
        self._presence_joined(session, session.room_id)
        self.emit_admins("join", session.admin_view())
        return session

    def _reject_join(self, connection_id: str, address: str, name: Any, exc: ChatError) -> None:
        if isinstance(exc, _MASKED_JOIN_ERRORS):
            log.warning("Join rejected for %r from %s: %s", name, address, type(exc).__name__)
            payload = {"code": "REJECTED", "detail": "unable to join"}
        else:
            log.info("Join rejected for %r from %s: %s", name, address, exc.detail)
            payload = {"code": exc.code, "detail": exc.detail}
        self._send(connection_id, proto.T_JOIN_REJECTED, payload)

    def disconnect(self, connection_id: str) -> Optional[Session]:
        """Transport-level close; tolerant of connections that never joined."""

        self.admins.discard(connection_id)
        session = self.state.sessions.lookup(connection_id)
        if session is None:
            return None
        room_id = session.room_id
        self.state.sessions.remove(connection_id)
        log.info("%s disconnected", session.name)
        self._presence_left(session, room_id)
        self.emit_admins("leave", session.admin_view())
        return session

    def force_disconnect(self, session: Session, frame_type: str, reason: str) -> None:
        """Notice-then-close. The session is gone before the close is queued."""

        room_id = session.room_id
        self.state.sessions.remove(session.session_id)
        self._send(session.session_id, frame_type, {"reason": reason})
        self.transport.close(session.session_id, reason)
        log.info("Forced disconnect of %s (%s): %s", session.name, frame_type, reason)
        self._presence_left(session, room_id)
        self.emit_admins("leave", session.admin_view())

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def switch_room(self, connection_id: str, room: str) -> List[Message]:
        session = self.state.sessions.get(connection_id)
        room_id = self.state.registry.resolve_room(room, session.gender)
        previous = session.room_id
        backlog = self.state.registry.switch_room(session, room_id)
        self.state.sessions.touch(connection_id)
        self._send(connection_id, proto.T_ROOM_BACKLOG, {"room": room_id, "messages": [m.public_view() for m in backlog]})
        if previous != room_id:
            if self.presence_mode == PRESENCE_ANONYMOUS:
                self.emit_room(previous, proto.build_frame(proto.T_USER_LEFT, self._announce(session, previous)))
                self.emit_room(
                    room_id, proto.build_frame(proto.T_USER_JOINED, self._announce(session, room_id)), exclude={connection_id}
                )
            self._presence_changed()
        return backlog

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(self, connection_id: str, content: str) -> Message:
        session = self.state.sessions.get(connection_id)
        self._ensure_not_banned(session)
        self.state.sessions.touch(connection_id)
        if self.state.sessions.check_mute(session):
            raise AuthorizationError("you are muted", code="MUTED")
        body = self._clean_body(content)
        return self._publish(session, session.room_id, body)

    def post_synthetic(self, session: Session, room_id: str, body: str) -> Message:
        self.state.sessions.touch(session.session_id)
        return self._publish(session, room_id, self._clean_body(body))

    def _publish(self, session: Session, room_id: str, body: str) -> Message:
        ts = self.state.now()
        message = Message(
            message_id=next_message_id("auto" if session.is_synthetic else "msg", ts),
            room_id=room_id,
            author_id=session.session_id,
            author_name=session.name,
            gender=session.gender,
            country=session.country.as_dict(),
            body=body,
            created_ms=ts,
            synthetic=session.is_synthetic,
        )
        evicted = self.state.messages.append(room_id, message)
        if evicted is not None:
            log.debug("Room %s at capacity, evicted %s", room_id, evicted.message_id)
        self.emit_room(room_id, proto.build_frame(proto.T_MESSAGE, message.public_view(), ts=ts))
        detail = message.public_view()
        detail.update({"address": session.address, "muted": session.muted})
        self.emit_admins("message", detail)
        return message

    def direct_message(self, connection_id: str, recipient: str, content: str) -> DirectMessage:
        sender = self.state.sessions.get(connection_id)
        self._ensure_not_banned(sender)
        self.state.sessions.touch(connection_id)
        if self.state.sessions.check_mute(sender):
            raise AuthorizationError("you are muted", code="MUTED")
        body = self._clean_body(content)
        target = self.state.sessions.find_by_name(recipient)
        if target is None or target.is_synthetic:
            raise NotFoundError("user offline", code="USER_NOT_FOUND")

        ts = self.state.now()
        dm = DirectMessage(
            message_id=next_message_id("pm", ts),
            sender=sender.name,
            recipient=target.name,
            body=body,
            created_ms=ts,
        )
        self.state.direct_messages.record(dm)
        self._send(target.session_id, proto.T_DIRECT_MESSAGE, dm.as_dict())
        self._send(connection_id, proto.T_DIRECT_MESSAGE_SENT, dm.as_dict())
        self.emit_admins("direct_message", dm.as_dict())
        return dm

    def typing(self, connection_id: str, active: bool) -> None:
        session = self.state.sessions.get(connection_id)
        self.state.sessions.touch(connection_id)
        frame = proto.build_frame(proto.T_TYPING, {"username": session.name, "room": session.room_id, "active": active})
        self.emit_room(session.room_id, frame, exclude={connection_id})

    def report(self, connection_id: str, message_id: str, reported_user: str, reason: str) -> None:
        reporter = self.state.sessions.get(connection_id)
        self.state.sessions.touch(connection_id)
        report = self.state.reports.file(message_id, reported_user, reporter.name, reason)
        self._send(connection_id, proto.T_REPORT_ACK, {"success": True, "report_id": report.report_id})
        self.emit_admins("report", report.as_dict())

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def request_presence(self, connection_id: str) -> None:
        self._send(connection_id, proto.T_PRESENCE_COUNTS, self._counts_payload())
        if self.presence_mode == PRESENCE_ROSTER:
            self._send(connection_id, proto.T_PRESENCE_ROSTER, self._roster_payload())

    def _presence_joined(self, session: Session, room_id: str) -> None:
        if self.presence_mode == PRESENCE_ANONYMOUS:
            frame = proto.build_frame(proto.T_USER_JOINED, self._announce(session, room_id))
            self.emit_room(room_id, frame, exclude={session.session_id})
        self._presence_changed()

    def _presence_left(self, session: Session, room_id: str) -> None:
        if self.presence_mode == PRESENCE_ANONYMOUS and room_id:
            self.emit_room(room_id, proto.build_frame(proto.T_USER_LEFT, self._announce(session, room_id)))
        self._presence_changed()

    def _presence_changed(self) -> None:
        if self.presence_mode == PRESENCE_ROSTER:
            self.emit_all(proto.build_frame(proto.T_PRESENCE_ROSTER, self._roster_payload()))
        self.emit_all(proto.build_frame(proto.T_PRESENCE_COUNTS, self._counts_payload()))

    def _counts_payload(self) -> Dict[str, Any]:
        counts = self.state.registry.counts()
        return {"counts": counts, "total": sum(counts.values())}

    def _roster_payload(self) -> Dict[str, Any]:
        return {"users": [s.public_view() for s in self.state.sessions.list_online(lambda s: not s.is_synthetic)]}

    @staticmethod
    def _announce(session: Session, room_id: str) -> Dict[str, Any]:
        return {"username": session.name, "country": session.country.as_dict(), "room": room_id}

    # ------------------------------------------------------------------
    # Fan-out primitives
    # ------------------------------------------------------------------

    def emit_room(self, room_id: str, frame: Dict[str, Any], exclude: Optional[Set[str]] = None) -> None:
        skip = exclude or set()
        for member in sorted(self.state.registry.members_of(room_id)):
            if member not in skip:
                self.transport.send(member, frame)

    def emit_all(self, frame: Dict[str, Any]) -> None:
        for session in self.state.sessions.list_online(lambda s: not s.is_synthetic):
            self.transport.send(session.session_id, frame)

    def emit_admins(self, event: str, data: Dict[str, Any]) -> None:
        if not self.admins:
            return
        frame = proto.build_frame(proto.T_ADMIN_LIVE, {"event": event, "data": data})
        for connection_id in sorted(self.admins):
            self.transport.send(connection_id, frame)

    def send_to(self, connection_ids: Iterable[str], type_: str, payload: Dict[str, Any]) -> None:
        frame = proto.build_frame(type_, payload)
        for connection_id in connection_ids:
            self.transport.send(connection_id, frame)

    def _send(self, connection_id: str, type_: str, payload: Dict[str, Any]) -> None:
        self.transport.send(connection_id, proto.build_frame(type_, payload))

    def send_error(self, connection_id: str, code: str, detail: str) -> None:
        self.transport.send(connection_id, proto.error_frame(code, detail))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _clean_body(self, content: str) -> str:
        body = (content or "").strip()
        if not body:
            raise ValidationError("message is empty", code="EMPTY_MESSAGE")
        return body[: self.settings.limits.max_message_length]

    def _ensure_not_banned(self, session: Session) -> None:
        bans = self.state.bans
        if bans.is_name_banned(session.name) or bans.is_address_banned(session.address):
            raise AuthorizationError("not allowed")


__all__ = ["BroadcastEngine", "Transport", "PRESENCE_ANONYMOUS", "PRESENCE_ROSTER"]
