"""JSON wire models for one reconciliation round trip.

Requests are strict: a value of the wrong JSON type is rejected instead of
coerced, so a malformed body never reaches the store.
"""

from pydantic import BaseModel, Field, StrictInt, StrictStr, field_validator

from .room.room_file import ESCAPE
from .store import Message


class SyncRequest(BaseModel):
    """Client to server: what the client has seen and what it wants to send."""

    room_name: StrictStr
    last_message_id: StrictInt | None = Field(default=None, ge=0)
    self_message_lines: list[StrictStr]
    self_name: StrictStr

    @field_validator("self_name")
    @classmethod
    def no_escape_in_name(cls, value: str) -> str:
        # Sender names end up in every receiver's delimiter lines
        if ESCAPE in value:
            raise ValueError(f"self_name must not contain {ESCAPE!r}")
        return value


class MessageSuccess(BaseModel):
    """Acknowledgement of the client's own message."""

    id: int = Field(ge=0)
    utc_unix_timestamp: int


class NewMessage(BaseModel):
    lines: list[str]
    id: int = Field(ge=0)
    utc_unix_timestamp: int
    sender_name: str

    @classmethod
    def from_message(cls, message: Message) -> "NewMessage":
        return cls(**message.to_dict())


class SyncResponse(BaseModel):
    """Server to client: the acknowledgement, if any, and messages to catch up on."""

    self_message_success: MessageSuccess | None = None
    new_messages: list[NewMessage]
