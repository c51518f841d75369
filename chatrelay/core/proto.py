from __future__ import annotations

import time
from typing import Annotated, Any, Dict, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .errors import ValidationError as FrameError


# ---------------------------------------------------------------------------
# Inbound events (client -> server)
# ---------------------------------------------------------------------------

class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class JoinEvent(_Inbound):
    type: Literal["join"]
    name: str
    gender: str
    country: str
    room: Optional[str] = None


class SwitchRoomEvent(_Inbound):
    type: Literal["switch_room"]
    room: str


class SendMessageEvent(_Inbound):
    type: Literal["send_message"]
    content: str


class DirectMessageEvent(_Inbound):
    type: Literal["direct_message"]
    recipient: str
    content: str


class TypingEvent(_Inbound):
    type: Literal["typing"]
    active: bool = True


class ReportMessageEvent(_Inbound):
    type: Literal["report_message"]
    message_id: str
    reported_user: str
    reason: str = ""


class RequestPresenceEvent(_Inbound):
    type: Literal["request_presence"]


class AdminLoginEvent(_Inbound):
    type: Literal["admin_login"]
    username: str
    password: str


class AdminDeleteMessageEvent(_Inbound):
    type: Literal["admin_delete_message"]
    room: str
    message_id: str


class AdminMuteEvent(_Inbound):
    type: Literal["admin_mute"]
    name: str
    duration_ms: int = Field(gt=0)


class AdminBanEvent(_Inbound):
    type: Literal["admin_ban"]
    name: Optional[str] = None
    address: Optional[str] = None
    reason: str = ""

    @model_validator(mode="after")
    def _one_target(self) -> "AdminBanEvent":
        if bool(self.name) == bool(self.address):
            raise ValueError("admin_ban needs exactly one of name or address")
        return self


class AdminResolveReportEvent(_Inbound):
    type: Literal["admin_resolve_report"]
    report_id: str


class AdminExportEvent(_Inbound):
    type: Literal["admin_export"]


InboundEvent = Annotated[
    Union[
        JoinEvent,
        SwitchRoomEvent,
        SendMessageEvent,
        DirectMessageEvent,
        TypingEvent,
        ReportMessageEvent,
        RequestPresenceEvent,
        AdminLoginEvent,
        AdminDeleteMessageEvent,
        AdminMuteEvent,
        AdminBanEvent,
        AdminResolveReportEvent,
        AdminExportEvent,
    ],
    Field(discriminator="type"),
]

INBOUND_VARIANTS = (
    JoinEvent,
    SwitchRoomEvent,
    SendMessageEvent,
    DirectMessageEvent,
    TypingEvent,
    ReportMessageEvent,
    RequestPresenceEvent,
    AdminLoginEvent,
    AdminDeleteMessageEvent,
    AdminMuteEvent,
    AdminBanEvent,
    AdminResolveReportEvent,
    AdminExportEvent,
)

INBOUND_TYPES = frozenset(get_args(v.model_fields["type"].annotation)[0] for v in INBOUND_VARIANTS)

_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_event(raw: Any) -> _Inbound:
    """Validate a decoded frame into one of the inbound variants.

    Raises ``errors.ValidationError`` with code ``UNKNOWN_TYPE`` or ``BAD_FRAME``.
    """

    if not isinstance(raw, dict):
        raise FrameError("frame must be an object", code="BAD_FRAME")
    type_ = raw.get("type")
    if type_ not in INBOUND_TYPES:
        raise FrameError(f"unsupported type {type_}", code="UNKNOWN_TYPE")
    try:
        return _adapter.validate_python(raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        detail = first.get("msg") or "invalid frame"
        raise FrameError(f"{type_}: {detail}", code="BAD_FRAME") from exc


# ---------------------------------------------------------------------------
# Outbound frames (server -> client)
# ---------------------------------------------------------------------------

T_JOIN_ACCEPTED = "join_accepted"
T_JOIN_REJECTED = "join_rejected"
T_ROOM_BACKLOG = "room_backlog"
T_MESSAGE = "message"
T_DIRECT_MESSAGE = "direct_message"
T_DIRECT_MESSAGE_SENT = "direct_message_sent"
T_PRESENCE_COUNTS = "presence_counts"
T_PRESENCE_ROSTER = "presence_roster"
T_USER_JOINED = "user_joined"
T_USER_LEFT = "user_left"
T_TYPING = "typing"
T_MESSAGE_DELETED = "message_deleted"
T_MUTED = "muted"
T_BANNED = "banned"
T_KICKED = "kicked"
T_ERROR = "error"
T_REPORT_ACK = "report_acknowledged"
T_ADMIN_SNAPSHOT = "admin_snapshot"
T_ADMIN_ACK = "admin_ack"
T_ADMIN_LIVE = "admin_live"

ERROR_CODES = {
    "INVALID_PROFILE",
    "EMPTY_MESSAGE",
    "BAD_FRAME",
    "UNKNOWN_TYPE",
    "SERVER_FULL",
    "REJECTED",
    "MUTED",
    "ROOM_RESTRICTED",
    "UNAUTHORIZED",
    "NAME_IN_USE",
    "NOT_FOUND",
    "USER_NOT_FOUND",
    "UNKNOWN_ROOM",
    "NOT_JOINED",
    "ALREADY_JOINED",
    "REPORTS_FULL",
    "INTERNAL",
}


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def build_frame(type: str, payload: Dict[str, Any], *, ts: int | None = None) -> Dict[str, Any]:
    return {
        "type": type,
        "ts": now_ms() if ts is None else ts,
        "payload": payload,
    }


def error_frame(code: str, detail: str) -> Dict[str, Any]:
    return build_frame(T_ERROR, {"code": code, "detail": detail})


__all__ = [
    "JoinEvent",
    "SwitchRoomEvent",
    "SendMessageEvent",
    "DirectMessageEvent",
    "TypingEvent",
    "ReportMessageEvent",
    "RequestPresenceEvent",
    "AdminLoginEvent",
    "AdminDeleteMessageEvent",
    "AdminMuteEvent",
    "AdminBanEvent",
    "AdminResolveReportEvent",
    "AdminExportEvent",
    "InboundEvent",
    "INBOUND_VARIANTS",
    "INBOUND_TYPES",
    "parse_event",
    "ERROR_CODES",
    "now_ms",
    "build_frame",
    "error_frame",
]
