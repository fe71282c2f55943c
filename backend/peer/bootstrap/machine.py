"""
Connection bootstrap state machine.

Drives one endpoint of a two-party connection from nothing to an open data
channel: the initiator creates an offer and applies the answer, the responder
applies the offer and produces the answer. Descriptors are exchanged out of
band (relay or copy-paste) and may be passed in as codec text or as objects.

Every attempt carries a generation number. ``reset()`` bumps it, so an
operation still awaiting the transport when the reset happens resumes into
``BootstrapCancelledError`` instead of mutating the new attempt.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from peer.bootstrap.states import NEGOTIATING_STATES, BootstrapState, Role
from peer.errors import (
    BootstrapCancelledError,
    BootstrapError,
    InvalidDescriptorError,
    InvalidStateError,
    NegotiationTimeoutError,
    TransportError,
)
from peer.settings import PeerSettings
from peer.transport.base import ChannelState
from shared.codec import DecodeError, decode, encode

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from peer.transport.base import DataChannel, PeerTransport

logger = logging.getLogger(__name__)


def _default_transport_factory(ice_servers: list[str]) -> PeerTransport:
    from peer.transport.rtc import RtcTransport  # noqa: PLC0415

    return RtcTransport(ice_servers)


class PeerBootstrap:
    """
    One side of a peer connection bootstrap.

    A session pairs exactly two endpoints: once an answer has been applied,
    further answers are rejected.
    """

    def __init__(
        self,
        settings: PeerSettings | None = None,
        transport_factory: Callable[[list[str]], PeerTransport] | None = None,
    ) -> None:
        self._settings = settings or PeerSettings()
        self._transport_factory = transport_factory or _default_transport_factory
        self._listeners: list[Callable[[BootstrapState, BootstrapState], None]] = []
        self._attempt = 0
        self._state = BootstrapState.IDLE
        self._role: Role | None = None
        self._transport: PeerTransport | None = None
        self._channel: DataChannel | None = None
        self._local_descriptor: dict[str, Any] | None = None
        self._remote_applied = False
        self._error: BootstrapError | None = None
        self._watchdog: asyncio.Task[None] | None = None
        self._outcome: asyncio.Future[DataChannel] | None = None

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def role(self) -> Role | None:
        return self._role

    @property
    def channel(self) -> DataChannel | None:
        """The data channel, once created (initiator) or adopted (responder)."""
        return self._channel

    @property
    def error(self) -> BootstrapError | None:
        return self._error

    @property
    def local_descriptor(self) -> dict[str, Any] | None:
        return self._local_descriptor

    @property
    def local_blob(self) -> str | None:
        """The local descriptor as codec text, ready to copy or relay."""
        if self._local_descriptor is None:
            return None
        return encode(self._local_descriptor)

    def add_state_listener(self, listener: Callable[[BootstrapState, BootstrapState], None]) -> None:
        """Register a callback invoked as ``listener(old, new)`` on every transition."""
        self._listeners.append(listener)

    def remove_state_listener(self, listener: Callable[[BootstrapState, BootstrapState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def create_offer(self) -> dict[str, Any]:
        """
        Start an attempt as initiator and return the settled local offer.

        The machine ends in ``awaiting_remote_descriptor``.
        """
        self._require_state(BootstrapState.IDLE, "create_offer")
        attempt, transport = self._begin(Role.INITIATOR)
        self._adopt_channel(attempt, transport.create_data_channel(self._settings.channel_label))

        offer = await self._step(attempt, transport.create_offer())
        await self._step(attempt, transport.set_local_description(offer))
        descriptor = await self._settle(attempt, transport)
        self._publish_local(attempt, descriptor)
        if self._state is BootstrapState.LOCAL_DESCRIPTOR_READY:
            self._set_state(BootstrapState.AWAITING_REMOTE_DESCRIPTOR)
        return descriptor

    async def accept_offer(self, offer: str | dict[str, Any]) -> dict[str, Any]:
        """
        Start an attempt as responder from a remote offer; return the settled answer.

        Invalid offer text raises ``InvalidDescriptorError`` and leaves the
        machine idle.
        """
        self._require_state(BootstrapState.IDLE, "accept_offer")
        descriptor = _coerce_descriptor(offer, "offer")
        attempt, transport = self._begin(Role.RESPONDER)
        transport.on_datachannel = partial(self._on_remote_channel, attempt)

        self._remote_applied = True
        await self._step(attempt, transport.set_remote_description(descriptor))
        answer = await self._step(attempt, transport.create_answer())
        await self._step(attempt, transport.set_local_description(answer))
        local = await self._settle(attempt, transport)
        self._publish_local(attempt, local)
        return local

    async def accept_answer(self, answer: str | dict[str, Any]) -> None:
        """
        Apply the remote answer to an initiator attempt.

        The machine reaches ``connected`` once the data channel opens, which
        may happen after this returns.
        """
        if self._role is not Role.INITIATOR or self._remote_applied:
            if self._remote_applied:
                raise InvalidStateError("an answer was already accepted for this session")
            raise InvalidStateError(f"cannot accept an answer in state {self._state}")
        self._require_state(BootstrapState.AWAITING_REMOTE_DESCRIPTOR, "accept_answer")
        descriptor = _coerce_descriptor(answer, "answer")

        attempt = self._attempt
        transport = self._transport
        self._remote_applied = True
        await self._step(attempt, transport.set_remote_description(descriptor))

    async def add_remote_candidate(self, candidate: str | dict[str, Any]) -> None:
        """Apply a trickled remote ICE candidate to the live transport."""
        if isinstance(candidate, str):
            try:
                candidate = decode(candidate)
            except DecodeError as e:
                raise InvalidDescriptorError(f"invalid candidate: {e}") from e

        transport = self._transport
        if transport is None or self._state is BootstrapState.FAILED:
            logger.debug("ignoring remote candidate in state %s", self._state)
            return
        if not transport.has_remote_description:
            logger.debug("ignoring remote candidate received before the remote descriptor")
            return

        attempt = self._attempt
        try:
            await transport.add_ice_candidate(candidate)
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidDescriptorError(f"invalid candidate: {e}") from e
        self._check_current(attempt)

    async def wait_connected(self) -> DataChannel:
        """
        Wait until the data channel is open and return it.

        Raises the stored error if the attempt fails, or
        ``BootstrapCancelledError`` if it is reset while waiting.
        """
        if self._state is BootstrapState.CONNECTED and self._channel is not None:
            return self._channel
        if self._state is BootstrapState.FAILED and self._error is not None:
            raise self._error
        if self._outcome is None or self._outcome.done():
            self._outcome = asyncio.get_running_loop().create_future()
        # shielded so one cancelled waiter does not cancel the outcome for the others
        return await asyncio.shield(self._outcome)

    def reset(self) -> None:
        """Abandon the current attempt, close everything and return to idle."""
        self._attempt += 1
        self._cancel_watchdog()
        self._teardown()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_exception(BootstrapCancelledError("bootstrap attempt was reset"))
        self._outcome = None
        self._role = None
        self._local_descriptor = None
        self._remote_applied = False
        self._error = None
        self._set_state(BootstrapState.IDLE)

    def _begin(self, role: Role) -> tuple[int, PeerTransport]:
        self._attempt += 1
        attempt = self._attempt
        try:
            transport = self._transport_factory(self._settings.ice_servers)
        except Exception as e:
            raise TransportError(f"could not create transport: {e}") from e
        transport.on_failed = partial(self._on_transport_failed, attempt)
        self._transport = transport
        self._role = role
        self._error = None
        self._set_state(BootstrapState.LOCAL_DESCRIPTOR_PENDING)
        return attempt, transport

    async def _step(self, attempt: int, awaitable: Awaitable[Any]) -> Any:
        """Await one transport operation on behalf of ``attempt``."""
        try:
            result = await awaitable
        except BootstrapError:
            raise
        except Exception as e:
            if attempt != self._attempt:
                raise BootstrapCancelledError("bootstrap attempt was reset") from e
            if self._state is BootstrapState.FAILED and self._error is not None:
                raise self._error from e
            error = TransportError(str(e) or type(e).__name__)
            self._fail(error)
            raise error from e
        self._check_current(attempt)
        return result

    def _check_current(self, attempt: int) -> None:
        if attempt != self._attempt:
            raise BootstrapCancelledError("bootstrap attempt was reset")
        if self._state is BootstrapState.FAILED and self._error is not None:
            raise self._error

    async def _settle(self, attempt: int, transport: PeerTransport) -> dict[str, Any]:
        """Wait for ICE gathering to finish, falling back to a partial descriptor."""
        await self._step(attempt, self._wait_gathered(transport))
        descriptor = transport.local_description
        if descriptor is None:
            error = TransportError("transport has no local description")
            self._fail(error)
            raise error
        return descriptor

    async def _wait_gathered(self, transport: PeerTransport) -> None:
        timeout = self._settings.gathering_timeout_seconds
        try:
            await asyncio.wait_for(transport.wait_gathering_complete(), timeout=timeout)
        except TimeoutError:
            logger.warning("ICE gathering incomplete after %gs, using partial descriptor", timeout)

    def _publish_local(self, attempt: int, descriptor: dict[str, Any]) -> None:
        self._check_current(attempt)
        self._local_descriptor = descriptor
        if self._state is not BootstrapState.LOCAL_DESCRIPTOR_PENDING:
            # the channel opened while the descriptor was settling
            return
        self._set_state(BootstrapState.LOCAL_DESCRIPTOR_READY)
        self._watchdog = asyncio.create_task(self._watch(attempt))

    async def _watch(self, attempt: int) -> None:
        grace = self._settings.grace_period_seconds
        await asyncio.sleep(grace)
        if attempt != self._attempt or self._state not in NEGOTIATING_STATES:
            return
        self._watchdog = None
        self._fail(NegotiationTimeoutError(f"data channel did not open within {grace:g}s"))

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()
        self._watchdog = None

    def _adopt_channel(self, attempt: int, channel: DataChannel) -> None:
        self._channel = channel
        channel.set_handlers(
            on_open=partial(self._on_channel_open, attempt),
            on_close=partial(self._on_channel_close, attempt),
        )
        if channel.ready_state is ChannelState.OPEN:
            self._on_channel_open(attempt)

    def _on_remote_channel(self, attempt: int, channel: DataChannel) -> None:
        if attempt != self._attempt or self._channel is not None:
            logger.debug("closing extra data channel %r", channel.label)
            channel.close()
            return
        self._adopt_channel(attempt, channel)

    def _on_channel_open(self, attempt: int) -> None:
        if attempt != self._attempt or self._state not in NEGOTIATING_STATES:
            return
        self._cancel_watchdog()
        self._set_state(BootstrapState.CONNECTED)
        if self._outcome is not None and not self._outcome.done() and self._channel is not None:
            self._outcome.set_result(self._channel)

    def _on_channel_close(self, attempt: int) -> None:
        if attempt != self._attempt:
            return
        if self._state in NEGOTIATING_STATES:
            self._fail(TransportError("data channel closed before it opened"))
        elif self._state is BootstrapState.CONNECTED:
            logger.info("data channel closed")

    def _on_transport_failed(self, attempt: int, reason: str) -> None:
        if attempt != self._attempt or self._state in (BootstrapState.IDLE, BootstrapState.FAILED):
            return
        self._fail(TransportError(reason))

    def _fail(self, error: BootstrapError) -> None:
        logger.warning("bootstrap failed: %s", error)
        self._error = error
        self._cancel_watchdog()
        self._teardown()
        self._set_state(BootstrapState.FAILED)
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_exception(error)

    def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        transport, self._transport = self._transport, None
        if channel is not None:
            channel.set_handlers()
            channel.close()
        if transport is not None:
            transport.on_datachannel = None
            transport.on_failed = None
            transport.close()

    def _require_state(self, expected: BootstrapState, operation: str) -> None:
        if self._state is not expected:
            raise InvalidStateError(f"cannot {operation} in state {self._state}")

    def _set_state(self, new_state: BootstrapState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info("bootstrap %s -> %s", old_state, new_state)
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("state listener failed on %s -> %s", old_state, new_state)


def _coerce_descriptor(value: str | dict[str, Any], expected_type: str) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = decode(value)
        except DecodeError as e:
            raise InvalidDescriptorError(f"invalid {expected_type}: {e}") from e
    if not isinstance(value, dict):
        raise InvalidDescriptorError(f"invalid {expected_type}: expected object")
    if value.get("type") != expected_type:
        raise InvalidDescriptorError(f"expected descriptor of type {expected_type!r}, got {value.get('type')!r}")
    if not isinstance(value.get("sdp"), str):
        raise InvalidDescriptorError(f"invalid {expected_type}: missing sdp")
    return value
