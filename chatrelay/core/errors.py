from __future__ import annotations

"""
Error taxonomy for the relay core.

Every error carries a wire ``code`` that the dispatcher copies into the
``error`` / ``join_rejected`` frame sent back to the originating connection.
None of these are fatal to the process.
"""


class ChatError(Exception):
    code = "ERROR"

    def __init__(self, detail: str = "", *, code: str | None = None) -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        if code is not None:
            self.code = code


class ValidationError(ChatError):
    code = "INVALID_PROFILE"


class CapacityError(ChatError):
    code = "SERVER_FULL"


class CapacityExceeded(CapacityError):
    pass


class AuthorizationError(ChatError):
    code = "REJECTED"


class NameBanned(AuthorizationError):
    pass


class AddressBanned(AuthorizationError):
    pass


class NameInUse(AuthorizationError):
    code = "NAME_IN_USE"


class NotFoundError(ChatError):
    code = "NOT_FOUND"


class DuplicateConnection(ChatError):
    code = "ALREADY_JOINED"


__all__ = [
    "ChatError",
    "ValidationError",
    "CapacityError",
    "CapacityExceeded",
    "AuthorizationError",
    "NameBanned",
    "AddressBanned",
    "NameInUse",
    "NotFoundError",
    "DuplicateConnection",
]
