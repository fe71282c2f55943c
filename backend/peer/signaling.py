"""
WebSocket client for the relay's room protocol.

The relay has no request/response correlation, so "awaiting a reply" means
reading frames until one of the wanted type arrives. Frames of other types
seen meanwhile go to an ``on_message`` callback instead of being lost.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from peer.errors import SignalingError
from peer.settings import PeerSettings
from relay.messaging.types import ClientMessageType, RelayMessageType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger()


class SignalingSocket(Protocol):
    """The subset of a websockets client connection the signaling client uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


class SignalingClient:
    def __init__(
        self,
        url: str | None = None,
        *,
        settings: PeerSettings | None = None,
        connector: Callable[[str], Awaitable[SignalingSocket]] | None = None,
        on_message: Callable[[dict[str, Any]], Awaitable[None] | None] | None = None,
    ) -> None:
        self._settings = settings or PeerSettings()
        self._url = url or self._settings.signaling_url
        self._connector = connector or websockets.connect
        self._socket: SignalingSocket | None = None
        self.on_message = on_message

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._socket is not None

    async def connect(self) -> None:
        if self._socket is not None:
            return
        try:
            self._socket = await self._connector(self._url)
        except (OSError, InvalidHandshake) as e:
            raise SignalingError(f"could not connect to {self._url}: {e}") from e
        logger.info("connected to signaling relay", url=self._url)

    async def close(self) -> None:
        socket, self._socket = self._socket, None
        if socket is not None:
            await socket.close()

    async def __aenter__(self) -> SignalingClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def create(self, room: str) -> None:
        """Create (or enter) ``room`` and wait for the relay's acknowledgement."""
        await self.send({"t": ClientMessageType.CREATE, "room": room})
        await self.wait_for(RelayMessageType.CREATED, room)

    async def join(self, room: str) -> None:
        await self.send({"t": ClientMessageType.JOIN, "room": room})

    async def send_offer(self, room: str, offer: dict[str, Any]) -> None:
        await self.send({"t": ClientMessageType.OFFER, "room": room, "offer": offer})

    async def send_answer(self, room: str, answer: dict[str, Any]) -> None:
        await self.send({"t": ClientMessageType.ANSWER, "room": room, "answer": answer})

    async def send_ice(self, room: str, candidate: dict[str, Any]) -> None:
        await self.send({"t": ClientMessageType.ICE, "room": room, "cand": candidate})

    async def list_rooms(self) -> list[str]:
        await self.send({"t": ClientMessageType.LIST})
        message = await self.wait_for(RelayMessageType.ROOMS)
        return list(message.get("list", []))

    async def send(self, message: dict[str, Any]) -> None:
        socket = self._require_socket()
        try:
            await socket.send(json.dumps(message))
        except ConnectionClosed as e:
            raise SignalingError("signaling connection closed") from e

    async def receive(self) -> dict[str, Any]:
        """Return the next well-formed message, skipping anything unparseable."""
        socket = self._require_socket()
        while True:
            try:
                raw = await socket.recv()
            except ConnectionClosed as e:
                raise SignalingError("signaling connection closed") from e
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("skipping malformed signaling frame", frame=raw[:200])
                continue
            if not isinstance(message, dict) or not isinstance(message.get("t"), str):
                logger.warning("skipping signaling frame without a type", frame=raw[:200])
                continue
            return message

    async def wait_for(
        self,
        message_type: str,
        room: str | None = None,
        *,
        timeout: float | None = None,
        on_message: Callable[[dict[str, Any]], Awaitable[None] | None] | None = None,
    ) -> dict[str, Any]:
        """
        Read messages until one of ``message_type`` (for ``room``, if given) arrives.

        Other messages are passed to ``on_message`` (or the client's default
        handler). Raises SignalingError on timeout or when the connection closes.
        """
        handler = on_message or self.on_message
        limit = timeout if timeout is not None else self._settings.signaling_timeout_seconds
        try:
            return await asyncio.wait_for(self._read_until(message_type, room, handler), timeout=limit)
        except TimeoutError as e:
            raise SignalingError(f"no {message_type!r} message within {limit:g}s") from e

    async def _read_until(
        self,
        message_type: str,
        room: str | None,
        handler: Callable[[dict[str, Any]], Awaitable[None] | None] | None,
    ) -> dict[str, Any]:
        while True:
            message = await self.receive()
            if message["t"] == message_type and (room is None or message.get("room") == room):
                return message
            if handler is None:
                logger.debug("ignoring signaling message", type=message["t"], waiting_for=message_type)
                continue
            result = handler(message)
            if inspect.isawaitable(result):
                await result

    def _require_socket(self) -> SignalingSocket:
        if self._socket is None:
            raise SignalingError("signaling client is not connected")
        return self._socket
