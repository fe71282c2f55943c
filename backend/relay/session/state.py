"""In-memory room and connection tables owned by a single broker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol


@dataclass
class BrokerState:
    """Room membership tables for one broker instance.

    Invariants:
    - a room id is present in ``rooms`` only while it has at least one member;
    - a connection id appears in ``memberships`` iff it is a member of exactly
      that room.
    """

    connections: dict[str, ConnectionProtocol] = field(default_factory=dict)  # connection_id -> connection
    rooms: dict[str, dict[str, ConnectionProtocol]] = field(default_factory=dict)  # room_id -> members
    memberships: dict[str, str] = field(default_factory=dict)  # connection_id -> room_id

    @property
    def room_count(self) -> int:
        return len(self.rooms)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    def register(self, connection: ConnectionProtocol) -> None:
        self.connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    def room_ids(self) -> list[str]:
        return list(self.rooms)

    def room_of(self, connection_id: str) -> str | None:
        return self.memberships.get(connection_id)

    def members(self, room_id: str) -> list[ConnectionProtocol]:
        """Snapshot of a room's members (empty if the room does not exist)."""
        return list(self.rooms.get(room_id, {}).values())

    def add_member(self, room_id: str, connection: ConnectionProtocol) -> None:
        """Add a connection to a room, creating the room if needed.

        The caller must have removed the connection from any other room first.
        """
        self.rooms.setdefault(room_id, {})[connection.connection_id] = connection
        self.memberships[connection.connection_id] = room_id

    def remove_member(self, connection_id: str) -> tuple[str | None, bool]:
        """Remove a connection from its room.

        Returns ``(room_id, room_deleted)``; ``room_id`` is None when the
        connection was not in any room.
        """
        room_id = self.memberships.pop(connection_id, None)
        if room_id is None:
            return None, False
        members = self.rooms.get(room_id)
        if members is None:
            return room_id, False
        members.pop(connection_id, None)
        if members:
            return room_id, False
        del self.rooms[room_id]
        return room_id, True

    def clear(self) -> None:
        self.connections.clear()
        self.rooms.clear()
        self.memberships.clear()
