"""Typed signaling messages exchanged between peers and the relay.

Every frame is a JSON object tagged by its ``t`` field. Payload fields
(``offer``, ``answer``, ``cand``) are opaque to the relay and are forwarded
exactly as received.
"""

import json
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

MAX_FRAME_BYTES = 64 * 1024
_MAX_ROOM_ID_LENGTH = 100


class ClientMessageType(StrEnum):
    CREATE = "create"
    JOIN = "join"
    OFFER = "offer"
    ANSWER = "answer"
    ICE = "ice"
    LIST = "list"
    # Older clients ask for the listing with "rooms"; it is the same operation as LIST.
    ROOMS = "rooms"


class RelayMessageType(StrEnum):
    CREATED = "created"
    PEER_JOINED = "peer_joined"
    PEER_LEFT = "peer_left"
    OFFER = "offer"
    ANSWER = "answer"
    ICE = "ice"
    ROOMS = "rooms"


class MalformedMessageError(ValueError):
    """Inbound frame is not a well-formed signaling message."""


class UnknownMessageTypeError(MalformedMessageError):
    """Inbound frame carries a ``t`` value the relay does not handle."""


RoomId = Annotated[str, Field(min_length=1, max_length=_MAX_ROOM_ID_LENGTH)]


class CreateRoomMessage(BaseModel):
    t: Literal[ClientMessageType.CREATE]
    room: RoomId


class JoinRoomMessage(BaseModel):
    t: Literal[ClientMessageType.JOIN]
    room: RoomId


class OfferMessage(BaseModel):
    t: Literal[ClientMessageType.OFFER]
    room: RoomId
    offer: Any


class AnswerMessage(BaseModel):
    t: Literal[ClientMessageType.ANSWER]
    room: RoomId
    answer: Any


class IceMessage(BaseModel):
    t: Literal[ClientMessageType.ICE]
    room: RoomId
    cand: Any


class ListRoomsMessage(BaseModel):
    t: Literal[ClientMessageType.LIST, ClientMessageType.ROOMS]


ClientMessage = Annotated[
    CreateRoomMessage | JoinRoomMessage | OfferMessage | AnswerMessage | IceMessage | ListRoomsMessage,
    Field(discriminator="t"),
]

RelayedMessage = OfferMessage | AnswerMessage | IceMessage

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


class RoomCreatedMessage(BaseModel):
    t: Literal[RelayMessageType.CREATED] = RelayMessageType.CREATED
    room: str


class PeerJoinedMessage(BaseModel):
    t: Literal[RelayMessageType.PEER_JOINED] = RelayMessageType.PEER_JOINED
    room: str


class PeerLeftMessage(BaseModel):
    t: Literal[RelayMessageType.PEER_LEFT] = RelayMessageType.PEER_LEFT
    room: str


class RoomListMessage(BaseModel):
    """Snapshot of room ids. Serialized as ``{"t": "rooms", "list": [...]}``."""

    model_config = ConfigDict(populate_by_name=True)

    t: Literal[RelayMessageType.ROOMS] = RelayMessageType.ROOMS
    room_ids: list[str] = Field(alias="list")


def to_wire(message: BaseModel) -> dict[str, Any]:
    """Dump a message model to its JSON-compatible wire dict."""
    return message.model_dump(mode="json", by_alias=True)


def parse_client_message(data: Any) -> CreateRoomMessage | JoinRoomMessage | RelayedMessage | ListRoomsMessage:  # noqa: ANN401
    """Validate a decoded JSON value into a typed client message.

    Raises UnknownMessageTypeError for an unrecognized ``t`` and
    MalformedMessageError for anything else that fails validation.
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(f"expected object, got {type(data).__name__}")
    message_type = data.get("t")
    if message_type not in ClientMessageType.__members__.values():
        raise UnknownMessageTypeError(f"unknown message type: {message_type!r}")
    try:
        return _client_message_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessageError(str(e)) from e


def parse_client_frame(
    raw: str,
    max_bytes: int = MAX_FRAME_BYTES,
) -> CreateRoomMessage | JoinRoomMessage | RelayedMessage | ListRoomsMessage:
    """Parse a raw text frame into a typed client message."""
    byte_len = len(raw.encode("utf-8"))
    if byte_len > max_bytes:
        raise MalformedMessageError(f"frame too large ({byte_len} bytes, max {max_bytes})")
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as e:  # fmt: skip
        raise MalformedMessageError(f"invalid JSON: {e}") from e
    return parse_client_message(data)
