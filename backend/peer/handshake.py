"""
Descriptor exchange strategies built on top of the bootstrap state machine.

``ManualHandshake`` hands the user text blobs to copy between devices;
``BrokerHandshake`` exchanges the same descriptors through the signaling relay.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from peer.errors import InvalidDescriptorError, InvalidStateError, SignalingError
from relay.messaging.types import RelayMessageType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from peer.bootstrap.machine import PeerBootstrap
    from peer.signaling import SignalingClient
    from peer.transport.base import DataChannel

logger = logging.getLogger(__name__)


class ManualHandshake:
    """Copy-paste exchange: every descriptor crosses as codec text."""

    def __init__(self, bootstrap: PeerBootstrap) -> None:
        self._bootstrap = bootstrap

    @property
    def bootstrap(self) -> PeerBootstrap:
        return self._bootstrap

    async def offer_blob(self) -> str:
        await self._bootstrap.create_offer()
        return self._local_blob()

    async def answer_blob(self, offer_text: str) -> str:
        await self._bootstrap.accept_offer(offer_text)
        return self._local_blob()

    async def complete(self, answer_text: str) -> DataChannel:
        """Apply the pasted answer and wait for the data channel to open."""
        await self._bootstrap.accept_answer(answer_text)
        return await self._bootstrap.wait_connected()

    def _local_blob(self) -> str:
        blob = self._bootstrap.local_blob
        if blob is None:
            # reset() raced the descriptor becoming ready
            msg = "no local descriptor available"
            raise InvalidDescriptorError(msg)
        return blob


class BrokerHandshake:
    """
    Exchange descriptors through a relay room.

    Rooms on the relay are uncapped, but a handshake pairs with exactly one
    peer: the host offers to the first joiner, the guest answers the first
    offer. Trickled ``ice`` messages for the room are applied as remote
    candidates while the exchange is in progress.
    """

    def __init__(self, bootstrap: PeerBootstrap, signaling: SignalingClient) -> None:
        self._bootstrap = bootstrap
        self._signaling = signaling

    async def host(self, room: str) -> DataChannel:
        await self._signaling.create(room)
        await self._signaling.wait_for(RelayMessageType.PEER_JOINED, room, on_message=self._side_handler(room))
        logger.info("peer joined %s, sending offer", room)

        offer = await self._bootstrap.create_offer()
        await self._signaling.send_offer(room, offer)
        message = await self._unless_bootstrap_ends(
            self._signaling.wait_for(RelayMessageType.ANSWER, room, on_message=self._side_handler(room))
        )
        await self._bootstrap.accept_answer(_payload(message, "answer"))
        return await self._wait_connected(room)

    async def join(self, room: str) -> DataChannel:
        await self._signaling.join(room)
        message = await self._signaling.wait_for(RelayMessageType.OFFER, room, on_message=self._side_handler(room))
        logger.info("received offer in %s, answering", room)

        answer = await self._bootstrap.accept_offer(_payload(message, "offer"))
        await self._signaling.send_answer(room, answer)
        return await self._wait_connected(room)

    async def _unless_bootstrap_ends(self, waiting: Awaitable[dict[str, Any]]) -> dict[str, Any]:
        """
        Await a relay message, giving up once the bootstrap fails or is reset.

        The bootstrap's own error (``NegotiationTimeoutError``,
        ``BootstrapCancelledError``, ...) is raised in that case.
        """
        reply = asyncio.ensure_future(waiting)
        outcome = asyncio.ensure_future(self._bootstrap.wait_connected())
        try:
            await asyncio.wait((reply, outcome), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reply, outcome):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if outcome.done() and not outcome.cancelled():
            outcome.result()
        if reply.done() and not reply.cancelled():
            return reply.result()
        msg = "connected before the relay message arrived"
        raise InvalidStateError(msg)

    async def _wait_connected(self, room: str) -> DataChannel:
        pump = asyncio.create_task(self._pump(room))
        try:
            return await self._bootstrap.wait_connected()
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    async def _pump(self, room: str) -> None:
        handle = self._side_handler(room)
        try:
            while True:
                await handle(await self._signaling.receive())
        except SignalingError as e:
            # descriptors are already exchanged; the channel may still open
            logger.warning("signaling stopped while connecting: %s", e)

    def _side_handler(self, room: str) -> Callable[[dict[str, Any]], Awaitable[None]]:
        async def handle(message: dict[str, Any]) -> None:
            if message.get("room") != room:
                logger.debug("ignoring %s for room %s", message["t"], message.get("room"))
                return
            kind = message["t"]
            if kind == RelayMessageType.ICE:
                try:
                    await self._bootstrap.add_remote_candidate(message.get("cand") or {})
                except InvalidDescriptorError as e:
                    logger.warning("ignoring invalid remote candidate: %s", e)
            elif kind == RelayMessageType.PEER_LEFT:
                logger.info("a peer left room %s", room)
            else:
                logger.debug("ignoring %s in room %s", kind, room)

        return handle


def _payload(message: dict[str, Any], key: str) -> Any:
    if key not in message:
        msg = f"relay {message['t']!r} message carries no {key!r}"
        raise InvalidDescriptorError(msg)
    return message[key]
