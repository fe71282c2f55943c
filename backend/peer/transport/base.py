"""Transport abstraction for peer connections.

The bootstrap state machine talks to these interfaces only. Events are
delivered through explicitly registered callbacks, so the machine does not
depend on any particular WebRTC binding and can be driven by fakes in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable


class ChannelState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class DataChannel(ABC):
    """A bidirectional text channel between two peers."""

    def __init__(self) -> None:
        self._on_open: Callable[[], None] | None = None
        self._on_message: Callable[[str], None] | None = None
        self._on_close: Callable[[], None] | None = None

    def set_handlers(
        self,
        *,
        on_open: Callable[[], None] | None = None,
        on_message: Callable[[str], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Replace the event callbacks. Passing None clears a callback."""
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close

    @property
    @abstractmethod
    def label(self) -> str: ...

    @property
    @abstractmethod
    def ready_state(self) -> ChannelState: ...

    @abstractmethod
    def send(self, data: str) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    def _emit_open(self) -> None:
        if self._on_open is not None:
            self._on_open()

    def _emit_message(self, data: str) -> None:
        if self._on_message is not None:
            self._on_message(data)

    def _emit_close(self) -> None:
        if self._on_close is not None:
            self._on_close()


class PeerTransport(ABC):
    """One local endpoint of a peer-to-peer connection.

    Descriptors and candidates are plain dicts (``{"type", "sdp"}`` and
    ``{"candidate", "sdpMid", "sdpMLineIndex"}``), the same shape browsers
    produce, so they can cross the codec unchanged.
    """

    def __init__(self) -> None:
        # Called with the channel the remote side opened (responder role).
        self.on_datachannel: Callable[[DataChannel], None] | None = None
        # Called with a reason when the connection fails irrecoverably.
        self.on_failed: Callable[[str], None] | None = None

    @abstractmethod
    def create_data_channel(self, label: str) -> DataChannel: ...

    @abstractmethod
    async def create_offer(self) -> dict[str, Any]: ...

    @abstractmethod
    async def create_answer(self) -> dict[str, Any]: ...

    @abstractmethod
    async def set_local_description(self, descriptor: dict[str, Any]) -> None: ...

    @abstractmethod
    async def set_remote_description(self, descriptor: dict[str, Any]) -> None: ...

    @property
    @abstractmethod
    def local_description(self) -> dict[str, Any] | None:
        """Current local descriptor, including every candidate gathered so far."""
        ...

    @property
    @abstractmethod
    def has_remote_description(self) -> bool: ...

    @abstractmethod
    async def wait_gathering_complete(self) -> None:
        """Return once local candidate gathering has finished."""
        ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None: ...

    @abstractmethod
    def close(self) -> None:
        """Tear the connection down. Must not block; may finish in the background."""
        ...

    def _emit_datachannel(self, channel: DataChannel) -> None:
        if self.on_datachannel is not None:
            self.on_datachannel(channel)

    def _emit_failed(self, reason: str) -> None:
        if self.on_failed is not None:
            self.on_failed(reason)
