import asyncio
import logging

import pytest

from peer.bootstrap.machine import PeerBootstrap
from peer.bootstrap.states import BootstrapState, Role
from peer.errors import (
    BootstrapCancelledError,
    BootstrapError,
    InvalidDescriptorError,
    InvalidStateError,
    NegotiationTimeoutError,
    TransportError,
)
from peer.settings import PeerSettings
from peer.tests.fakes import FakeNetwork
from peer.transport.base import ChannelState
from shared.codec import encode


async def _connect(initiator: PeerBootstrap, responder: PeerBootstrap) -> None:
    offer = await initiator.create_offer()
    answer = await responder.accept_offer(offer)
    await initiator.accept_answer(answer)
    await asyncio.wait_for(asyncio.gather(initiator.wait_connected(), responder.wait_connected()), timeout=1.0)


class TestNegotiation:
    async def test_initiator_and_responder_connect(self, initiator, responder):
        await _connect(initiator, responder)

        assert initiator.state == BootstrapState.CONNECTED
        assert responder.state == BootstrapState.CONNECTED
        assert initiator.role == Role.INITIATOR
        assert responder.role == Role.RESPONDER
        assert initiator.channel.label == "gameData"
        assert responder.channel.label == "gameData"

    async def test_connected_channels_carry_frames(self, initiator, responder):
        await _connect(initiator, responder)
        received = []
        responder.channel.set_handlers(on_message=received.append)

        initiator.channel.send("tictactoe:4")

        assert received == ["tictactoe:4"]

    async def test_text_blobs_are_accepted(self, initiator, responder):
        await initiator.create_offer()
        await responder.accept_offer(initiator.local_blob)
        await initiator.accept_answer(responder.local_blob)

        channel = await asyncio.wait_for(initiator.wait_connected(), timeout=1.0)

        assert channel.ready_state == ChannelState.OPEN

    async def test_initiator_transitions(self, initiator, responder):
        seen = []
        initiator.add_state_listener(lambda old, new: seen.append((old, new)))

        await _connect(initiator, responder)

        assert seen == [
            (BootstrapState.IDLE, BootstrapState.LOCAL_DESCRIPTOR_PENDING),
            (BootstrapState.LOCAL_DESCRIPTOR_PENDING, BootstrapState.LOCAL_DESCRIPTOR_READY),
            (BootstrapState.LOCAL_DESCRIPTOR_READY, BootstrapState.AWAITING_REMOTE_DESCRIPTOR),
            (BootstrapState.AWAITING_REMOTE_DESCRIPTOR, BootstrapState.CONNECTED),
        ]

    async def test_responder_skips_awaiting_remote(self, initiator, responder):
        seen = []
        responder.add_state_listener(lambda old, new: seen.append(new))

        await _connect(initiator, responder)

        assert seen == [
            BootstrapState.LOCAL_DESCRIPTOR_PENDING,
            BootstrapState.LOCAL_DESCRIPTOR_READY,
            BootstrapState.CONNECTED,
        ]

    async def test_settled_descriptor_includes_gathered_candidates(self, initiator):
        offer = await initiator.create_offer()

        assert "a=candidate:" in offer["sdp"]
        assert initiator.local_descriptor == offer

    async def test_failing_listener_does_not_break_transitions(self, initiator, responder):
        def explode(old, new):
            raise RuntimeError("listener bug")

        initiator.add_state_listener(explode)

        await _connect(initiator, responder)

        assert initiator.state == BootstrapState.CONNECTED

    async def test_removed_listener_is_not_called(self, initiator):
        seen = []
        listener = lambda old, new: seen.append(new)  # noqa: E731
        initiator.add_state_listener(listener)
        initiator.remove_state_listener(listener)

        await initiator.create_offer()

        assert seen == []


class TestDescriptorSettle:
    async def test_gathering_timeout_falls_back_to_partial_descriptor(self, peer_settings, caplog):
        network = FakeNetwork(gathering_completes=False)
        bootstrap = PeerBootstrap(peer_settings, transport_factory=network.transport_factory)

        with caplog.at_level(logging.WARNING):
            offer = await bootstrap.create_offer()

        assert "a=candidate:" not in offer["sdp"]
        assert bootstrap.state == BootstrapState.AWAITING_REMOTE_DESCRIPTOR
        assert "ICE gathering incomplete" in caplog.text


class TestGracePeriod:
    async def test_withheld_answer_fails_both_sides(self, initiator, responder, network):
        offer = await initiator.create_offer()
        await responder.accept_offer(offer)

        with pytest.raises(NegotiationTimeoutError):
            await asyncio.wait_for(initiator.wait_connected(), timeout=2.0)
        with pytest.raises(NegotiationTimeoutError):
            await asyncio.wait_for(responder.wait_connected(), timeout=2.0)

        assert initiator.state == BootstrapState.FAILED
        assert responder.state == BootstrapState.FAILED
        assert all(t.closed for t in network.transports.values())

    async def test_unreachable_peer_fails_after_answer(self, make_bootstrap):
        network = FakeNetwork(reachable=False)
        initiator = make_bootstrap(fake_network=network)
        responder = make_bootstrap(fake_network=network)

        answer = await responder.accept_offer(await initiator.create_offer())
        await initiator.accept_answer(answer)

        with pytest.raises(NegotiationTimeoutError):
            await asyncio.wait_for(initiator.wait_connected(), timeout=2.0)
        assert isinstance(initiator.error, NegotiationTimeoutError)

    async def test_failed_wait_connected_raises_stored_error(self, initiator):
        await initiator.create_offer()
        with pytest.raises(NegotiationTimeoutError):
            await asyncio.wait_for(initiator.wait_connected(), timeout=2.0)

        # a later call sees the same terminal outcome immediately
        with pytest.raises(NegotiationTimeoutError):
            await initiator.wait_connected()

    async def test_connection_within_grace_cancels_watchdog(self, initiator, responder):
        await _connect(initiator, responder)

        await asyncio.sleep(0.4)

        assert initiator.state == BootstrapState.CONNECTED
        assert responder.state == BootstrapState.CONNECTED


class TestInvalidInput:
    async def test_garbage_offer_leaves_machine_idle(self, initiator, responder):
        with pytest.raises(InvalidDescriptorError):
            await responder.accept_offer("not json")

        assert responder.state == BootstrapState.IDLE

        # the user can paste again
        await responder.accept_offer(await initiator.create_offer())
        assert responder.state == BootstrapState.LOCAL_DESCRIPTOR_READY

    async def test_invalid_descriptor_is_a_bootstrap_error(self, responder):
        with pytest.raises(BootstrapError):
            await responder.accept_offer("{")

    async def test_garbage_answer_keeps_waiting(self, initiator, responder):
        offer = await initiator.create_offer()

        with pytest.raises(InvalidDescriptorError):
            await initiator.accept_answer("{broken")
        assert initiator.state == BootstrapState.AWAITING_REMOTE_DESCRIPTOR

        await initiator.accept_answer(await responder.accept_offer(offer))
        await asyncio.wait_for(initiator.wait_connected(), timeout=1.0)

    async def test_wrong_descriptor_type_is_rejected(self, initiator, responder):
        offer = await initiator.create_offer()

        with pytest.raises(InvalidDescriptorError, match="answer"):
            await initiator.accept_answer(offer)
        with pytest.raises(InvalidDescriptorError, match="offer"):
            await responder.accept_offer({"type": "answer", "sdp": "x"})

    async def test_descriptor_without_sdp_is_rejected(self, responder):
        with pytest.raises(InvalidDescriptorError):
            await responder.accept_offer(encode({"type": "offer"}))
        assert responder.state == BootstrapState.IDLE

    async def test_unknown_remote_endpoint_fails_with_transport_error(self, responder):
        with pytest.raises(TransportError):
            await responder.accept_offer({"type": "offer", "sdp": "fake nobody"})
        assert responder.state == BootstrapState.FAILED


class TestStateRules:
    async def test_second_offer_is_rejected(self, initiator):
        await initiator.create_offer()

        with pytest.raises(InvalidStateError):
            await initiator.create_offer()
        assert initiator.state == BootstrapState.AWAITING_REMOTE_DESCRIPTOR

    async def test_second_answer_is_rejected(self, make_bootstrap):
        initiator = make_bootstrap()
        first = make_bootstrap()
        second = make_bootstrap()
        offer = await initiator.create_offer()
        first_answer = await first.accept_offer(offer)
        second_answer = await second.accept_offer(offer)

        await initiator.accept_answer(first_answer)

        with pytest.raises(InvalidStateError, match="already accepted"):
            await initiator.accept_answer(second_answer)

    async def test_answer_after_connect_is_rejected(self, initiator, responder):
        await _connect(initiator, responder)

        with pytest.raises(InvalidStateError):
            await initiator.accept_answer(responder.local_descriptor)

    async def test_responder_cannot_accept_answer(self, initiator, responder):
        await responder.accept_offer(await initiator.create_offer())

        with pytest.raises(InvalidStateError):
            await responder.accept_answer({"type": "answer", "sdp": "x"})

    async def test_accept_answer_requires_offer(self, initiator):
        with pytest.raises(InvalidStateError):
            await initiator.accept_answer({"type": "answer", "sdp": "x"})
        assert initiator.state == BootstrapState.IDLE

    async def test_transport_failure_fails_attempt(self, initiator, network):
        await initiator.create_offer()
        (transport,) = network.transports.values()

        transport.fail("ice failed")

        assert initiator.state == BootstrapState.FAILED
        assert isinstance(initiator.error, TransportError)
        assert transport.closed
        with pytest.raises(TransportError):
            await initiator.wait_connected()


class TestReset:
    async def test_reset_when_idle(self, initiator):
        initiator.reset()

        assert initiator.state == BootstrapState.IDLE

    async def test_reset_while_awaiting_answer(self, initiator, network):
        await initiator.create_offer()
        channel = initiator.channel

        initiator.reset()

        assert initiator.state == BootstrapState.IDLE
        assert initiator.local_descriptor is None
        assert initiator.role is None
        assert channel.ready_state == ChannelState.CLOSED
        assert all(t.closed for t in network.transports.values())

    async def test_reset_when_connected_closes_channel(self, initiator, responder, network):
        await _connect(initiator, responder)
        channel = initiator.channel

        initiator.reset()

        assert initiator.state == BootstrapState.IDLE
        assert initiator.channel is None
        assert channel.ready_state == ChannelState.CLOSED
        # the remote end observes the close
        assert responder.channel.ready_state == ChannelState.CLOSED

    async def test_reset_after_failure(self, initiator):
        await initiator.create_offer()
        with pytest.raises(NegotiationTimeoutError):
            await asyncio.wait_for(initiator.wait_connected(), timeout=2.0)

        initiator.reset()

        assert initiator.state == BootstrapState.IDLE
        assert initiator.error is None

    async def test_new_attempt_after_reset(self, initiator, responder):
        await initiator.create_offer()
        initiator.reset()

        await _connect(initiator, responder)

        assert initiator.state == BootstrapState.CONNECTED

    async def test_reset_cancels_in_flight_offer(self):
        network = FakeNetwork(gathering_completes=False)
        settings = PeerSettings(grace_period_seconds=0.3, gathering_timeout_seconds=5.0)
        bootstrap = PeerBootstrap(settings, transport_factory=network.transport_factory)

        task = asyncio.create_task(bootstrap.create_offer())
        while bootstrap.state != BootstrapState.LOCAL_DESCRIPTOR_PENDING:
            await asyncio.sleep(0)
        bootstrap.reset()

        with pytest.raises(BootstrapCancelledError):
            await asyncio.wait_for(task, timeout=1.0)
        assert bootstrap.state == BootstrapState.IDLE

    async def test_cancelled_offer_does_not_touch_new_attempt(self):
        network = FakeNetwork(gathering_completes=False)
        settings = PeerSettings(grace_period_seconds=1.0, gathering_timeout_seconds=0.2)
        bootstrap = PeerBootstrap(settings, transport_factory=network.transport_factory)

        stale = asyncio.create_task(bootstrap.create_offer())
        while bootstrap.state != BootstrapState.LOCAL_DESCRIPTOR_PENDING:
            await asyncio.sleep(0)
        bootstrap.reset()
        network.gathering_completes = True
        offer = await bootstrap.create_offer()

        with pytest.raises(BootstrapCancelledError):
            await stale
        assert bootstrap.state == BootstrapState.AWAITING_REMOTE_DESCRIPTOR
        assert bootstrap.local_descriptor == offer

    async def test_reset_wakes_wait_connected(self, initiator):
        await initiator.create_offer()
        waiter = asyncio.create_task(initiator.wait_connected())
        await asyncio.sleep(0)

        initiator.reset()

        with pytest.raises(BootstrapCancelledError):
            await waiter


class TestRemoteCandidates:
    async def test_candidate_before_remote_descriptor_is_ignored(self, initiator, network):
        await initiator.create_offer()
        (transport,) = network.transports.values()

        await initiator.add_remote_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.2 9 typ host"})

        assert transport.remote_candidates == []

    async def test_candidate_is_applied_after_remote_descriptor(self, initiator, responder, network):
        await responder.accept_offer(await initiator.create_offer())
        transport = network.transports[responder.local_descriptor["sdp"].split()[1]]
        candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.2 9 typ host", "sdpMid": "0", "sdpMLineIndex": 0}

        await responder.add_remote_candidate(encode(candidate))

        assert transport.remote_candidates == [candidate]

    async def test_candidate_when_idle_is_ignored(self, initiator):
        await initiator.add_remote_candidate({"candidate": "candidate:1"})

        assert initiator.state == BootstrapState.IDLE

    async def test_malformed_candidate_text(self, responder):
        with pytest.raises(InvalidDescriptorError):
            await responder.add_remote_candidate("garbage")

    async def test_rejected_candidate_keeps_attempt_alive(self, initiator, responder):
        await responder.accept_offer(await initiator.create_offer())

        with pytest.raises(InvalidDescriptorError):
            await responder.add_remote_candidate({"sdpMid": "0"})
        assert responder.state == BootstrapState.LOCAL_DESCRIPTOR_READY
