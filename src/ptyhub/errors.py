"""Domain-specific exceptions for session and protocol handling."""

from __future__ import annotations

from pydantic import ValidationError


class PtyHubError(Exception):
    """Base class for ptyhub failures that are reported to clients."""

    def to_payload(self) -> dict[str, str]:
        """Error body sent inside ``error`` frames."""
        return {"name": type(self).__name__, "message": str(self)}


class SessionNotFoundError(PtyHubError):
    """Raised when an operation references an unknown session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidInputError(PtyHubError):
    """Raised when a request is missing or has malformed required fields."""


class ProtocolError(PtyHubError):
    """Raised for unparseable or unrecognized real-time messages."""


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of a pydantic validation failure."""
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


__all__ = [
    "describe_validation_error",
    "PtyHubError",
    "SessionNotFoundError",
    "InvalidInputError",
    "ProtocolError",
]
