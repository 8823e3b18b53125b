"""In-memory stand-ins for the WebSocket session and the clock."""
from __future__ import annotations

import asyncio
from typing import List, Optional, Union

from ndt7.errors import TransportError
from ndt7.session import Frame


class FakeClock:
    """Manual clock; with *step* set, every read advances it."""

    def __init__(self, start: float = 100.0, step: float = 0.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    """
    Scriptable session.

    Queue frames (``bytes``/``str``), ``None`` for a clean close, or an
    exception instance for an abnormal close with :meth:`feed`.  Sent bytes
    sit in the buffer until drained ``drain_per_query`` bytes at a time,
    each time ``buffered_amount`` is called.
    """

    def __init__(
        self,
        frames: Optional[List[Union[bytes, str, None, Exception]]] = None,
        buffered: int = 0,
        drain_per_query: Optional[int] = None,
        open_error: Optional[Exception] = None,
    ) -> None:
        self.url = ""
        self.state = "connecting"
        self.sent: List[int] = []
        self.buffered = buffered
        self.drain_per_query = drain_per_query
        self.open_error = open_error
        self.close_calls = 0
        self._incoming: "asyncio.Queue" = asyncio.Queue()
        for frame in frames or []:
            self.feed(frame)

    def feed(self, frame: Union[bytes, str, None, Exception]) -> None:
        self._incoming.put_nowait(frame)

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    async def open(self) -> None:
        if self.open_error is not None:
            self.state = "failed"
            raise self.open_error
        self.state = "open"

    async def close(self) -> None:
        self.close_calls += 1
        if self.state in ("open", "connecting", "closing"):
            self.state = "closed"
            self.feed(None)

    async def send(self, payload: bytes) -> None:
        if self.state != "open":
            raise TransportError(f"cannot send: session is {self.state}")
        self.sent.append(len(payload))
        if self.drain_per_query is not None:
            self.buffered += len(payload)

    async def receive(self) -> Optional[Frame]:
        item = await self._incoming.get()
        if item is None:
            if self.state != "failed":
                self.state = "closed"
            return None
        if isinstance(item, Exception):
            self.state = "failed"
            raise item
        return Frame(item)

    def buffered_amount(self) -> int:
        if self.drain_per_query is not None:
            self.buffered = max(0, self.buffered - self.drain_per_query)
        return self.buffered


class Recorder(list):
    """Callable list used as a ``post`` / callback sink."""

    def __call__(self, *args):
        self.append(args[0] if len(args) == 1 else args)
