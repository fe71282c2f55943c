from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from relay.messaging.types import (
    MAX_FRAME_BYTES,
    AnswerMessage,
    CreateRoomMessage,
    IceMessage,
    JoinRoomMessage,
    ListRoomsMessage,
    MalformedMessageError,
    OfferMessage,
    UnknownMessageTypeError,
    parse_client_frame,
)

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.messaging.types import RelayedMessage
    from relay.session.broker import Broker

logger = logging.getLogger(__name__)


_RELAYED_TYPES = (OfferMessage, AnswerMessage, IceMessage)


class MessageRouter:
    """
    Routes inbound signaling frames to broker operations.

    Contains no transport code, so it can be tested with mock connections.
    A bad frame is logged and dropped; it never closes the connection.
    """

    def __init__(self, broker: Broker, *, max_message_bytes: int = MAX_FRAME_BYTES) -> None:
        self._broker = broker
        self._max_message_bytes = max_message_bytes

    async def handle_text(self, connection: ConnectionProtocol, raw: str) -> None:
        try:
            message = parse_client_frame(raw, self._max_message_bytes)
        except UnknownMessageTypeError as e:
            logger.info("ignoring message from %s: %s", connection.connection_id, e)
            return
        except MalformedMessageError as e:
            logger.warning("invalid message format from %s: %s", connection.connection_id, e)
            return

        try:
            await self.handle_message(connection, message)
        except Exception:
            logger.exception("error handling %s from %s", message.t, connection.connection_id)

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        message: CreateRoomMessage | JoinRoomMessage | RelayedMessage | ListRoomsMessage,
    ) -> None:
        if isinstance(message, CreateRoomMessage):
            await self._broker.create_room(connection, message.room)
        elif isinstance(message, JoinRoomMessage):
            await self._broker.join_room(connection, message.room)
        elif isinstance(message, _RELAYED_TYPES):
            await self._broker.relay(connection, message)
        elif isinstance(message, ListRoomsMessage):
            await self._broker.list_rooms(connection)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._broker.register_connection(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._broker.disconnect(connection)
