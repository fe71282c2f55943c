"""Abstract connection protocol for JSON text-frame signaling."""

import json
from abc import ABC, abstractmethod
from typing import Any


class ConnectionProtocol(ABC):
    """
    Abstract interface for a peer connected to the relay.

    Lets the broker and router be exercised without real WebSocket
    connections. Every frame is one JSON object sent as text.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the underlying transport can still carry frames."""
        ...

    @abstractmethod
    async def send_text(self, data: str) -> None:
        """
        Send a raw text frame to the peer.
        """
        ...

    @abstractmethod
    async def receive_text(self) -> str:
        """
        Receive a raw text frame from the peer.
        """
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """
        Close the connection.
        """
        ...

    async def send_message(self, data: dict[str, Any]) -> None:
        """
        Send a message to the peer as a JSON text frame.
        """
        await self.send_text(json.dumps(data))
