"""Errors raised by the room core.

Every error is recoverable: the transport drops the command and reports the
message to the originating connection only.
"""


class SessionError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_message(self) -> dict:
        return {"type": "ERROR", "error": self.kind, "message": self.message}


class NotFound(SessionError):
    kind = "not_found"


class Unauthorized(SessionError):
    kind = "unauthorized"


class InvalidPhase(SessionError):
    kind = "invalid_phase"


class InvalidInput(SessionError):
    kind = "invalid_input"


class Conflict(SessionError):
    kind = "conflict"
