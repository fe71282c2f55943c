"""
Application protocol over an open data channel.

Frames are either ``"<gameKind>:<JSON move>"`` or the bare control frame
``"rematch"``. A move tagged with a different game kind than the active
session is discarded, so switching games never feeds stale moves into the
new board.
"""

from __future__ import annotations

import json
import logging
import re
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from peer.errors import TransportError
from peer.transport.base import ChannelState

if TYPE_CHECKING:
    from collections.abc import Callable

    from peer.transport.base import DataChannel

logger = logging.getLogger(__name__)

REMATCH_FRAME = "rematch"

# Bodies that are not JSON still count as a move when they lead with an integer.
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class GameKind(StrEnum):
    TICTACTOE = "tictactoe"
    CONNECT4 = "connect4"
    NUMGUESS = "numguess"


class GameSession(Protocol):
    """What a game must provide to be played over a peer channel."""

    @property
    def game_kind(self) -> GameKind: ...

    def apply_move(self, move: Any) -> bool:
        """Apply a remote move; return False if the game rejects it."""
        ...

    def serialize_move(self, move: Any) -> str:
        """Return the JSON body for a local move."""
        ...

    def reset(self) -> None: ...


def format_move_frame(game_kind: GameKind, body: str) -> str:
    return f"{game_kind}:{body}"


def split_move_frame(frame: str) -> tuple[str, str] | None:
    """Split a move frame into ``(game_kind, body)``; None if it has no kind prefix."""
    kind, sep, body = frame.partition(":")
    if not sep or not kind:
        return None
    return kind, body


class PeerChannel:
    def __init__(
        self,
        channel: DataChannel,
        session: GameSession,
        *,
        on_disconnect: Callable[[], None] | None = None,
    ) -> None:
        self._channel = channel
        self._session = session
        self._on_disconnect = on_disconnect
        channel.set_handlers(on_message=self._handle_frame, on_close=self._handle_close)

    @property
    def session(self) -> GameSession:
        return self._session

    @session.setter
    def session(self, session: GameSession) -> None:
        """Switch the active game; moves for the previous kind are dropped from now on."""
        self._session = session

    @property
    def is_open(self) -> bool:
        return self._channel.ready_state is ChannelState.OPEN

    def send_move(self, move: Any) -> None:
        self._send(format_move_frame(self._session.game_kind, self._session.serialize_move(move)))

    def request_rematch(self) -> None:
        self._session.reset()
        self._send(REMATCH_FRAME)

    def close(self) -> None:
        self._channel.close()

    def _send(self, frame: str) -> None:
        if not self.is_open:
            raise TransportError("data channel is not open")
        self._channel.send(frame)

    def _handle_frame(self, frame: str) -> None:
        if frame == REMATCH_FRAME:
            logger.info("peer requested a rematch")
            self._session.reset()
            return

        parts = split_move_frame(frame)
        if parts is None:
            logger.warning("discarding frame without a game kind: %.80s", frame)
            return
        kind, body = parts
        if kind != self._session.game_kind:
            logger.debug("discarding %s move while playing %s", kind, self._session.game_kind)
            return

        move = _parse_move(body)
        if move is None:
            logger.warning("discarding malformed %s move: %.80s", kind, body)
            return
        if not self._session.apply_move(move):
            logger.info("peer move rejected by %s: %.80s", kind, body)

    def _handle_close(self) -> None:
        logger.info("peer channel closed")
        if self._on_disconnect is not None:
            self._on_disconnect()


def _parse_move(body: str) -> Any:
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        match = _LEADING_INT.match(body)
        return int(match.group(1)) if match else None
