"""Room-based signaling broker: membership bookkeeping and message fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from relay.messaging.types import (
    PeerJoinedMessage,
    PeerLeftMessage,
    RoomCreatedMessage,
    RoomListMessage,
    to_wire,
)
from relay.session.state import BrokerState

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.messaging.types import RelayedMessage

logger = logging.getLogger(__name__)


class Broker:
    """Group connections into named rooms and forward signaling between them.

    The broker never looks inside offer/answer/candidate payloads. Every
    public coroutine holds the broker lock for its whole duration, including
    the sends it triggers, so one inbound message is fully handled before the
    next and per-room broadcast order matches arrival order.
    """

    def __init__(self, state: BrokerState | None = None) -> None:
        self._state = state if state is not None else BrokerState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BrokerState:
        return self._state

    def register_connection(self, connection: ConnectionProtocol) -> None:
        self._state.register(connection)

    # --- Message handlers ---

    async def create_room(self, connection: ConnectionProtocol, room_id: str) -> None:
        """Add the connection to a room (creating it) and acknowledge."""
        async with self._lock:
            await self._enter_room(connection, room_id)
            await self._send(connection, to_wire(RoomCreatedMessage(room=room_id)))

    async def join_room(self, connection: ConnectionProtocol, room_id: str) -> None:
        """Add the connection to a room (creating it) and notify the other members."""
        async with self._lock:
            await self._enter_room(connection, room_id)
            await self._broadcast(
                room_id,
                to_wire(PeerJoinedMessage(room=room_id)),
                exclude_connection_id=connection.connection_id,
            )

    async def relay(self, connection: ConnectionProtocol, message: RelayedMessage) -> None:
        """Forward an offer, answer or candidate to every other member of its room.

        Messages for a room that does not exist are dropped. Sender membership
        is not checked.
        """
        async with self._lock:
            if message.room not in self._state.rooms:
                logger.debug("dropping %s for unknown room %s", message.t, message.room)
                return
            if self._state.room_of(connection.connection_id) != message.room:
                logger.debug("relaying %s from non-member %s", message.t, connection.connection_id)
            await self._broadcast(
                message.room,
                message.model_dump(mode="json"),
                exclude_connection_id=connection.connection_id,
            )

    async def list_rooms(self, connection: ConnectionProtocol) -> None:
        """Reply with a snapshot of the current room ids."""
        async with self._lock:
            await self._send(connection, to_wire(RoomListMessage(room_ids=self._state.room_ids())))

    async def disconnect(self, connection: ConnectionProtocol) -> None:
        """Drop a connection: leave its room and forget it."""
        async with self._lock:
            await self._leave_room(connection.connection_id)
            self._state.unregister(connection.connection_id)

    async def reap_stale(self) -> int:
        """Clean up registered connections whose transport closed without a close event.

        Returns the number of connections reaped.
        """
        async with self._lock:
            stale = [conn for conn in self._state.connections.values() if not conn.is_open]
            for conn in stale:
                await self._leave_room(conn.connection_id)
                self._state.unregister(conn.connection_id)
        return len(stale)

    async def shutdown(self, code: int = 1001, reason: str = "server_shutdown") -> None:
        """Close every registered connection and clear all tables."""
        async with self._lock:
            connections = list(self._state.connections.values())
            self._state.clear()
        for conn in connections:
            with contextlib.suppress(ConnectionError, RuntimeError, OSError):
                await conn.close(code=code, reason=reason)
        logger.info("broker shut down, closed %d connections", len(connections))

    # --- Internals (caller holds the lock) ---

    async def _enter_room(self, connection: ConnectionProtocol, room_id: str) -> None:
        current = self._state.room_of(connection.connection_id)
        if current is not None and current != room_id:
            await self._leave_room(connection.connection_id)
        if room_id not in self._state.rooms:
            logger.info("room created: %s", room_id)
        self._state.add_member(room_id, connection)
        logger.info("connection %s in room %s", connection.connection_id, room_id)

    async def _leave_room(self, connection_id: str) -> None:
        room_id, deleted = self._state.remove_member(connection_id)
        if room_id is None:
            return
        if deleted:
            logger.info("room %s removed (empty)", room_id)
            return
        await self._broadcast(room_id, to_wire(PeerLeftMessage(room=room_id)))

    async def _broadcast(
        self,
        room_id: str,
        message: dict[str, Any],
        exclude_connection_id: str | None = None,
    ) -> None:
        for member in self._state.members(room_id):
            if member.connection_id != exclude_connection_id:
                await self._send(member, message)

    async def _send(self, connection: ConnectionProtocol, message: dict[str, Any]) -> None:
        if not connection.is_open:
            return
        try:
            await connection.send_message(message)
        except (ConnectionError, RuntimeError, OSError) as e:  # fmt: skip
            logger.warning("send to %s failed: %s", connection.connection_id, e)
