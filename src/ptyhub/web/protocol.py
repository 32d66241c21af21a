"""Real-time protocol — message shapes exchanged over the viewer socket.

Field names are camelCase on the wire to stay compatible with existing
browser clients.
"""

from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ptyhub.errors import InvalidInputError, ProtocolError, PtyHubError, describe_validation_error
from ptyhub.pty.session import SessionInfo, SpawnOptions


class _Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_frame(self) -> str:
        return self.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------


class SubscribeRequest(_Message):
    type: Literal["subscribe"] = "subscribe"
    session_id: str


class UnsubscribeRequest(_Message):
    type: Literal["unsubscribe"] = "unsubscribe"
    session_id: str


class SessionListRequest(_Message):
    type: Literal["session_list"] = "session_list"


class SpawnRequest(SpawnOptions):
    type: Literal["spawn"] = "spawn"
    subscribe: bool = False


class InputRequest(_Message):
    type: Literal["input"] = "input"
    session_id: str
    data: str


class ReadRawRequest(_Message):
    type: Literal["readRaw"] = "readRaw"
    session_id: str


ClientMessage = (
    SubscribeRequest
    | UnsubscribeRequest
    | SessionListRequest
    | SpawnRequest
    | InputRequest
    | ReadRawRequest
)

CLIENT_MESSAGES: dict[str, type[BaseModel]] = {
    "subscribe": SubscribeRequest,
    "unsubscribe": UnsubscribeRequest,
    "session_list": SessionListRequest,
    "spawn": SpawnRequest,
    "input": InputRequest,
    "readRaw": ReadRawRequest,
}


def parse_client_message(text: str | bytes) -> ClientMessage:
    """Decode one client frame.

    Raises:
        ProtocolError: If the frame is not a JSON object or its type is unknown.
        InvalidInputError: If required fields are missing or malformed.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"JSON parse error: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolError("JSON parse error: expected an object")

    msg_type = payload.get("type")
    model = CLIENT_MESSAGES.get(msg_type) if isinstance(msg_type, str) else None
    if model is None:
        raise ProtocolError(f"Unknown message type: {msg_type}")
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as e:
        raise InvalidInputError(f"Invalid {msg_type} message: {describe_validation_error(e)}") from e


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------


class SubscribedMessage(_Message):
    type: Literal["subscribed"] = "subscribed"
    session_id: str


class UnsubscribedMessage(_Message):
    type: Literal["unsubscribed"] = "unsubscribed"
    session_id: str


class RawDataMessage(_Message):
    type: Literal["raw_data"] = "raw_data"
    session: SessionInfo
    raw_data: str


class ReadRawResponse(_Message):
    type: Literal["readRawResponse"] = "readRawResponse"
    session_id: str
    raw_data: str


class SessionListMessage(_Message):
    type: Literal["session_list"] = "session_list"
    sessions: list[SessionInfo] = Field(default_factory=list)


class SessionUpdateMessage(_Message):
    type: Literal["session_update"] = "session_update"
    session: SessionInfo


class ErrorBody(BaseModel):
    name: str
    message: str


class ErrorMessage(_Message):
    type: Literal["error"] = "error"
    error: ErrorBody

    @classmethod
    def from_exception(cls, exc: PtyHubError) -> ErrorMessage:
        return cls(error=ErrorBody(**exc.to_payload()))
