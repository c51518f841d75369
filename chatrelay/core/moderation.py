from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, List

from . import proto
from .broadcast import BroadcastEngine
from .errors import AuthorizationError, NotFoundError
from .reports import Report
from .state import ChatState

log = logging.getLogger("chatrelay.core.moderation")

RECENT_DIRECT_MESSAGES = 30
DEFAULT_BAN_REASON = "You have been banned"
DEFAULT_ADDRESS_BAN_REASON = "Your IP has been banned"


class ModerationController:
    """Administrator commands against the shared state.

    Authentication happens once per admin connection; afterwards the
    connection stays in ``engine.admins`` until it closes.
    """

    def __init__(self, state: ChatState, engine: BroadcastEngine) -> None:
        self.state = state
        self.engine = engine

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, connection_id: str, username: str, password: str) -> None:
        creds = self.state.settings.admin
        user_ok = hmac.compare_digest(username.encode("utf-8"), creds.username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"), creds.password.encode("utf-8"))
        if not (user_ok and pass_ok):
            log.warning("Admin login failed for connection %s", connection_id)
            raise AuthorizationError("invalid credentials", code="UNAUTHORIZED")
        self.engine.admins.add(connection_id)
        log.info("Admin authenticated on connection %s", connection_id)
        self.engine.send_to([connection_id], proto.T_ADMIN_SNAPSHOT, self.export_snapshot())

    def require_admin(self, connection_id: str) -> None:
        if connection_id not in self.engine.admins:
            raise AuthorizationError("admin login required", code="UNAUTHORIZED")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def delete_message(self, admin_id: str, room_id: str, message_id: str) -> None:
        self.state.registry.get(room_id)
        if not self.state.messages.delete_by_id(room_id, message_id):
            raise NotFoundError(f"no message {message_id} in {room_id}")
        frame = proto.build_frame(proto.T_MESSAGE_DELETED, {"message_id": message_id, "room": room_id})
        self.engine.emit_room(room_id, frame)
        log.info("Deleted message %s from %s", message_id, room_id)
        self._ack(admin_id, "delete_message", message_id=message_id, room=room_id)

    def mute(self, admin_id: str, name: str, duration_ms: int) -> None:
        session = self.state.sessions.find_by_name(name)
        if session is None:
            raise NotFoundError(f"{name} is not online", code="USER_NOT_FOUND")
        until = self.state.now() + duration_ms
        self.state.sessions.mute(session.session_id, until)
        self.engine.send_to([session.session_id], proto.T_MUTED, {"until": until, "duration_ms": duration_ms})
        log.info("Muted %s for %dms", session.name, duration_ms)
        self._ack(admin_id, "mute", name=session.name, until=until)

    def ban_name(self, admin_id: str, name: str, reason: str = "") -> int:
        reason = reason or DEFAULT_BAN_REASON
        self.state.bans.ban_name(name, reason)
        target = self.state.sessions.find_by_name(name)
        kicked = 0
        if target is not None:
            self.engine.force_disconnect(target, proto.T_BANNED, reason)
            kicked = 1
        log.info("Banned name %s (%d session(s) closed)", name, kicked)
        self._ack(admin_id, "ban", name=name, disconnected=kicked)
        return kicked

    def ban_address(self, admin_id: str, address: str, reason: str = "") -> int:
        reason = reason or DEFAULT_ADDRESS_BAN_REASON
        self.state.bans.ban_address(address, reason)
        targets = self.state.sessions.find_by_address(address)
        for session in targets:
            self.engine.force_disconnect(session, proto.T_BANNED, reason)
        log.info("Banned address %s (%d session(s) closed)", address, len(targets))
        self._ack(admin_id, "ban", address=address, disconnected=len(targets))
        return len(targets)

    def resolve_report(self, admin_id: str, report_id: str) -> Report:
        report = self.state.reports.resolve(report_id)
        log.info("Report %s resolved", report_id)
        self._ack(admin_id, "resolve_report", report_id=report_id, status=report.status)
        return report

    def export(self, admin_id: str) -> None:
        self.engine.send_to([admin_id], proto.T_ADMIN_SNAPSHOT, self.export_snapshot())

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def export_snapshot(self) -> Dict[str, Any]:
        state = self.state
        online = state.sessions.list_online()
        counts = state.registry.counts()
        dms = state.direct_messages.recent(RECENT_DIRECT_MESSAGES)
        return {
            "stats": {
                "total_users": len(state.sessions),
                "online_users": len(online),
                "total_messages": len(state.messages),
                "total_private_messages": len(state.direct_messages),
                "users_by_room": counts,
                "pending_reports": len(state.reports.pending()),
            },
            "users": [s.admin_view() for s in online],
            "messages": state.messages.snapshot(),
            "private_messages": [dm.as_dict() for dm in dms],
            "reports": [r.as_dict() for r in state.reports.all()],
            "bans": self._bans(),
        }

    def _bans(self) -> List[Dict[str, Any]]:
        return [record.as_dict() for record in self.state.bans.records()]

    def _ack(self, admin_id: str, action: str, **details: Any) -> None:
        self.engine.send_to([admin_id], proto.T_ADMIN_ACK, {"action": action, **details})


__all__ = ["ModerationController"]
