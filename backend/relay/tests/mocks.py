import asyncio
import json
from typing import Any
from uuid import uuid4

from relay.messaging.protocol import ConnectionProtocol


class MockConnection(ConnectionProtocol):
    def __init__(self, connection_id: str | None = None) -> None:
        self._connection_id = connection_id or str(uuid4())
        self._inbox: asyncio.Queue[str] = asyncio.Queue()
        self._outbox: list[dict[str, Any]] = []
        self._closed = False
        self._close_code: int | None = None
        self._close_reason: str | None = None

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        return self._outbox.copy()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def close_code(self) -> int | None:
        return self._close_code

    async def send_text(self, data: str) -> None:
        if self._closed:
            raise RuntimeError("Connection is closed")
        # decode and store for test inspection
        self._outbox.append(json.loads(data))

    async def receive_text(self) -> str:
        if self._closed:
            raise RuntimeError("Connection is closed")
        return await self._inbox.get()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._closed = True
        self._close_code = code
        self._close_reason = reason

    def drop(self) -> None:
        """
        Simulate the transport dying without a close event reaching the relay.
        """
        self._closed = True

    def clear_sent(self) -> None:
        self._outbox.clear()

    def simulate_receive_nowait(self, data: dict[str, Any]) -> None:
        """
        Simulate receiving a message from the client (non-blocking).
        """
        self._inbox.put_nowait(json.dumps(data))


class FailingConnection(MockConnection):
    """Connection whose sends always fail, as if the socket broke mid-write."""

    async def send_text(self, data: str) -> None:
        raise ConnectionError("broken pipe")
