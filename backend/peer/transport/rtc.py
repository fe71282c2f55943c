"""aiortc-backed implementation of the peer transport interfaces."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from peer.transport.base import ChannelState, DataChannel, PeerTransport

if TYPE_CHECKING:
    from aiortc import RTCDataChannel

logger = logging.getLogger(__name__)

_CANDIDATE_PREFIX = "candidate:"

# RTCPeerConnection.close() is a coroutine; keep background closes referenced until done.
_pending_closes: set[asyncio.Task[None]] = set()


class RtcDataChannel(DataChannel):
    def __init__(self, channel: RTCDataChannel) -> None:
        super().__init__()
        self._channel = channel
        channel.on("open", self._emit_open)
        channel.on("message", self._handle_message)
        channel.on("close", self._emit_close)

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def ready_state(self) -> ChannelState:
        return ChannelState(self._channel.readyState)

    def send(self, data: str) -> None:
        self._channel.send(data)

    def close(self) -> None:
        self._channel.close()

    def _handle_message(self, message: str | bytes) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        self._emit_message(message)


class RtcTransport(PeerTransport):
    """Wrap an ``RTCPeerConnection`` configured with the given STUN/TURN urls."""

    def __init__(self, ice_servers: list[str] | None = None) -> None:
        super().__init__()
        servers = [RTCIceServer(urls=url) for url in ice_servers or []]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))
        self._gathered = asyncio.Event()
        self._closed = False
        self._pc.on("datachannel", self._handle_datachannel)
        self._pc.on("icegatheringstatechange", self._handle_gathering_state)
        self._pc.on("connectionstatechange", self._handle_connection_state)

    def create_data_channel(self, label: str) -> DataChannel:
        return RtcDataChannel(self._pc.createDataChannel(label))

    async def create_offer(self) -> dict[str, Any]:
        return _to_dict(await self._pc.createOffer())

    async def create_answer(self) -> dict[str, Any]:
        return _to_dict(await self._pc.createAnswer())

    async def set_local_description(self, descriptor: dict[str, Any]) -> None:
        await self._pc.setLocalDescription(_from_dict(descriptor))

    async def set_remote_description(self, descriptor: dict[str, Any]) -> None:
        await self._pc.setRemoteDescription(_from_dict(descriptor))

    @property
    def local_description(self) -> dict[str, Any] | None:
        description = self._pc.localDescription
        return None if description is None else _to_dict(description)

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    async def wait_gathering_complete(self) -> None:
        if self._pc.iceGatheringState == "complete":
            return
        await self._gathered.wait()

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        sdp = candidate.get("candidate") or ""
        if not sdp:
            # browsers signal end-of-candidates with an empty candidate string
            return
        if sdp.startswith(_CANDIDATE_PREFIX):
            sdp = sdp[len(_CANDIDATE_PREFIX) :]
        ice_candidate = candidate_from_sdp(sdp)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(ice_candidate)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = asyncio.get_running_loop().create_task(self._pc.close())
        _pending_closes.add(task)
        task.add_done_callback(_pending_closes.discard)

    def _handle_datachannel(self, channel: RTCDataChannel) -> None:
        self._emit_datachannel(RtcDataChannel(channel))

    def _handle_gathering_state(self) -> None:
        if self._pc.iceGatheringState == "complete":
            self._gathered.set()

    def _handle_connection_state(self) -> None:
        state = self._pc.connectionState
        logger.debug("peer connection state: %s", state)
        if state == "failed" and not self._closed:
            self._emit_failed("peer connection failed")


def _to_dict(description: RTCSessionDescription) -> dict[str, Any]:
    return {"type": description.type, "sdp": description.sdp}


def _from_dict(descriptor: dict[str, Any]) -> RTCSessionDescription:
    try:
        return RTCSessionDescription(sdp=descriptor["sdp"], type=descriptor["type"])
    except KeyError as e:
        raise ValueError(f"descriptor is missing {e}") from e
