"""
WebSocket transport session for one ndt7 subtest.

Wraps a single ``websockets`` client connection negotiated with the ndt7
subprotocol.  A session moves one way through::

    connecting -> open -> closing -> closed
            \\         \\
             +---------+--> failed

and is never reopened.  The runner creates one per subtest and closes it
when the subtest ends, whatever the reason.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

import websockets
import websockets.exceptions

from .constants import (
    CLOSE_TIMEOUT,
    CONNECT_TIMEOUT,
    LIBRARY_NAME,
    LIBRARY_VERSION,
    MAX_MESSAGE_RECEIVE,
    SUBPROTOCOL,
    WRITE_LIMIT,
)
from .errors import TransportError

LOGGER = logging.getLogger(__name__)

CONNECTING = "connecting"
OPEN = "open"
CLOSING = "closing"
CLOSED = "closed"
FAILED = "failed"

_TERMINAL = (CLOSED, FAILED)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Frame:
    """A received WebSocket message: binary filler or a text measurement."""

    data: Union[bytes, str]

    @property
    def is_text(self) -> bool:
        return isinstance(self.data, str)

    @property
    def size(self) -> int:
        if isinstance(self.data, str):
            return len(self.data.encode("utf-8"))
        return len(self.data)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class WebSocketSession:
    """One bidirectional, ordered ndt7 message channel."""

    def __init__(
        self,
        url: str,
        connect_timeout: float = CONNECT_TIMEOUT,
        close_timeout: float = CLOSE_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.url = url
        self.connect_timeout = connect_timeout
        self.close_timeout = close_timeout
        self.headers = headers or {}
        self.state = CONNECTING
        self._ws = None

    # -- State --------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        if self.state in _TERMINAL:
            return
        LOGGER.debug("session %s: %s -> %s", self.url, self.state, state)
        self.state = state

    @property
    def is_open(self) -> bool:
        return self.state == OPEN

    # -- Lifecycle ----------------------------------------------------------

    async def open(self) -> None:
        """Run the opening handshake.  Raises ``TransportError`` on failure."""
        try:
            self._ws = await websockets.connect(
                self.url,
                subprotocols=[SUBPROTOCOL],
                additional_headers=self.headers,
                user_agent_header=f"{LIBRARY_NAME}/{LIBRARY_VERSION}",
                compression=None,
                ping_interval=None,
                open_timeout=self.connect_timeout,
                close_timeout=self.close_timeout,
                max_size=MAX_MESSAGE_RECEIVE,
                write_limit=WRITE_LIMIT,
            )
        except asyncio.TimeoutError as exc:
            self._set_state(FAILED)
            raise TransportError("connection timeout") from exc
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            self._set_state(FAILED)
            raise TransportError(str(exc) or type(exc).__name__) from exc

        self._set_state(OPEN)

    async def close(self) -> None:
        """Close the connection.  Safe to call more than once."""
        if self._ws is None:
            self._set_state(CLOSED)
            return
        if self.state == OPEN:
            self._set_state(CLOSING)
        try:
            await self._ws.close()
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            LOGGER.debug("error while closing %s: %s", self.url, exc)
        self._set_state(CLOSED)

    # -- I/O ----------------------------------------------------------------

    async def send(self, payload: bytes) -> None:
        if self.state != OPEN:
            raise TransportError(f"cannot send: session is {self.state}")
        try:
            await self._ws.send(payload)
        except websockets.exceptions.ConnectionClosedOK as exc:
            self._set_state(CLOSED)
            raise TransportError(f"send failed: {exc}") from exc
        except websockets.exceptions.ConnectionClosedError as exc:
            self._set_state(FAILED)
            raise TransportError(f"send failed: {exc}") from exc

    async def receive(self) -> Optional[Frame]:
        """
        Wait for the next frame.

        Returns ``None`` once the connection closed cleanly and raises
        ``TransportError`` if it was torn down abnormally.  A connection
        that drops after we started closing it counts as a clean close:
        websockets aborts it when the closing handshake cannot get past the
        queued data within ``close_timeout``.
        """
        if self._ws is None:
            raise TransportError("session was never opened")
        try:
            data = await self._ws.recv()
        except websockets.exceptions.ConnectionClosedOK:
            self._set_state(CLOSED)
            return None
        except websockets.exceptions.ConnectionClosedError as exc:
            if self.state in (CLOSING, CLOSED):
                LOGGER.debug("session %s: closed without handshake: %s", self.url, exc)
                self._set_state(CLOSED)
                return None
            self._set_state(FAILED)
            raise TransportError(f"connection lost: {exc}") from exc
        return Frame(data)

    def buffered_amount(self) -> int:
        """Bytes accepted by :meth:`send` but not yet written to the socket."""
        if self._ws is None or self._ws.transport is None:
            return 0
        return self._ws.transport.get_write_buffer_size()
