"""Chat message and WebSocket frame schemas.

Frames are JSON objects tagged by ``type``. Clients send ``add`` and
``update``; the room sends ``all`` once on connect, then ``connection``,
and ``error`` only to a connection whose message could not be stored.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One chat message. ``id`` is unique within its room."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str = Field(min_length=1)
    content: str
    # Older clients label the author as "user".
    author: str = Field(validation_alias=AliasChoices("author", "user"))
    role: Role


class AddFrame(ChatMessage):
    type: Literal["add"] = "add"


class UpdateFrame(ChatMessage):
    type: Literal["update"] = "update"


class AllFrame(BaseModel):
    type: Literal["all"] = "all"
    messages: list[ChatMessage]


class ConnectionFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["connection"] = "connection"
    status: str = "connected"
    connection_id: str = Field(serialization_alias="connectionId")


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    code: str
    message: str
    id: str | None = None


MessageFrame = Annotated[Union[AddFrame, UpdateFrame], Field(discriminator="type")]

_message_frame_adapter: TypeAdapter[AddFrame | UpdateFrame] = TypeAdapter(MessageFrame)


def parse_message_frame(raw: str | bytes) -> AddFrame | UpdateFrame:
    """Parse an inbound client frame. Raises pydantic.ValidationError."""
    return _message_frame_adapter.validate_json(raw)


def to_message(frame: AddFrame | UpdateFrame) -> ChatMessage:
    return ChatMessage(
        id=frame.id, content=frame.content, author=frame.author, role=frame.role
    )


def dump_frame(frame: BaseModel) -> str:
    """Serialize an outbound frame using wire field names."""
    return frame.model_dump_json(by_alias=True)
