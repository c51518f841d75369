from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Type

from . import proto
from .broadcast import BroadcastEngine
from .errors import ChatError, NotFoundError
from .moderation import ModerationController

log = logging.getLogger("chatrelay.core.dispatch")

Handler = Callable[[str, str, Any], None]


class EventDispatcher:
    """Routes each inbound variant to exactly one handler.

    The table is checked against ``proto.INBOUND_VARIANTS`` at construction, so
    adding an event type without a handler fails at startup instead of being
    ignored at runtime.
    """

    def __init__(self, engine: BroadcastEngine, moderation: ModerationController) -> None:
        self.engine = engine
        self.moderation = moderation
        self._handlers: Dict[Type[Any], Handler] = {
            proto.JoinEvent: self._on_join,
            proto.SwitchRoomEvent: lambda cid, _addr, ev: engine.switch_room(cid, ev.room),
            proto.SendMessageEvent: lambda cid, _addr, ev: engine.send_message(cid, ev.content),
            proto.DirectMessageEvent: lambda cid, _addr, ev: engine.direct_message(cid, ev.recipient, ev.content),
            proto.TypingEvent: lambda cid, _addr, ev: engine.typing(cid, ev.active),
            proto.ReportMessageEvent: lambda cid, _addr, ev: engine.report(
                cid, ev.message_id, ev.reported_user, ev.reason
            ),
            proto.RequestPresenceEvent: lambda cid, _addr, _ev: engine.request_presence(cid),
            proto.AdminLoginEvent: lambda cid, _addr, ev: moderation.authenticate(cid, ev.username, ev.password),
            proto.AdminDeleteMessageEvent: self._admin(
                lambda cid, ev: moderation.delete_message(cid, ev.room, ev.message_id)
            ),
            proto.AdminMuteEvent: self._admin(lambda cid, ev: moderation.mute(cid, ev.name, ev.duration_ms)),
            proto.AdminBanEvent: self._admin(self._on_ban),
            proto.AdminResolveReportEvent: self._admin(lambda cid, ev: moderation.resolve_report(cid, ev.report_id)),
            proto.AdminExportEvent: self._admin(lambda cid, _ev: moderation.export(cid)),
        }
        missing = [v.__name__ for v in proto.INBOUND_VARIANTS if v not in self._handlers]
        if missing:
            raise RuntimeError(f"no handler for inbound events: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_raw(self, connection_id: str, address: str, raw: Any) -> None:
        """Parse a decoded frame and dispatch it; errors go back to the sender."""

        try:
            event = proto.parse_event(raw)
        except ChatError as exc:
            log.debug("Bad frame from %s: %s", connection_id, exc.detail)
            self.engine.send_error(connection_id, exc.code, exc.detail)
            return
        self.dispatch(connection_id, address, event)

    def dispatch(self, connection_id: str, address: str, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            self.engine.send_error(connection_id, "UNKNOWN_TYPE", f"unsupported event {type(event).__name__}")
            return
        try:
            handler(connection_id, address, event)
        except NotFoundError as exc:
            log.debug("%s from %s: %s", event.type, connection_id, exc.detail)
            self.engine.send_error(connection_id, exc.code, exc.detail)
        except ChatError as exc:
            log.info("%s from %s rejected: %s (%s)", event.type, connection_id, exc.detail, exc.code)
            self.engine.send_error(connection_id, exc.code, exc.detail)
        except Exception:
            log.exception("Handler for %s failed on connection %s", event.type, connection_id)
            self.engine.send_error(connection_id, "INTERNAL", "internal error")

    def disconnect(self, connection_id: str) -> None:
        self.engine.disconnect(connection_id)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_join(self, connection_id: str, address: str, event: proto.JoinEvent) -> None:
        self.engine.join(connection_id, address, event)

    def _on_ban(self, connection_id: str, event: proto.AdminBanEvent) -> None:
        if event.name:
            self.moderation.ban_name(connection_id, event.name, event.reason)
        else:
            self.moderation.ban_address(connection_id, event.address or "", event.reason)

    def _admin(self, action: Callable[[str, Any], Any]) -> Handler:
        def guarded(connection_id: str, _address: str, event: Any) -> None:
            self.moderation.require_admin(connection_id)
            action(connection_id, event)

        return guarded


__all__ = ["EventDispatcher"]
