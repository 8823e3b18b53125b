"""
Upload (uplink) subtest worker.

The pacer has to balance two opposing needs:

1. message size sets the client-side measurement granularity, so slow
   links need small messages to be measured at all;
2. every ``send`` costs a trip through the event loop, so fast links need
   big messages to be filled.

Link speed is unknown up front, so the pacer starts at 8 KiB and doubles
the message size each time the bytes that actually left the local buffer
reach 16 messages' worth, up to 8 MiB.  Doubling (rather than growing by a
smaller factor) keeps the number of distinct buffer sizes small.

About seven messages are kept queued in the transport so it never starves;
that look-ahead is also the only backpressure against the socket.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Callable

from .constants import (
    GROWTH_FACTOR,
    INITIAL_MESSAGE_SIZE,
    LOOKAHEAD_MESSAGES,
    MAX_MESSAGE_SIZE,
    SAMPLE_INTERVAL,
    UPLOAD_DURATION,
)
from .errors import TransportError
from .measurement import UPLOAD, Measurement, WorkerMessage
from .session import CLOSED, WebSocketSession

LOGGER = logging.getLogger(__name__)


def make_payload(size: int) -> bytes:
    """Random filler; its content is never inspected by the server."""
    return os.urandom(size)


class UploadPacer:
    """Send-dominant worker attached to an open session."""

    def __init__(
        self,
        session: WebSocketSession,
        post: Callable[[WorkerMessage], None],
        clock: Callable[[], float] = time.perf_counter,
        duration: float = UPLOAD_DURATION,
    ) -> None:
        self._session = session
        self._post = post
        self._clock = clock
        self.duration = duration

        self.message_size = INITIAL_MESSAGE_SIZE
        self.bytes_sent_total = 0
        self.start_time = 0.0
        self.last_sample_time = 0.0
        self._payload = b""

    # -- Entry point --------------------------------------------------------

    async def run(self) -> None:
        """Pace uploads for ``duration`` seconds while relaying server frames."""
        self.start_time = self._clock()
        self.last_sample_time = self.start_time
        self._post(WorkerMessage.start(self.start_time, self.start_time + self.duration))

        pacer = asyncio.create_task(self._pace())
        reader = asyncio.create_task(self._read())
        try:
            await asyncio.gather(pacer, reader)
        finally:
            for task in (pacer, reader):
                task.cancel()
            await asyncio.gather(pacer, reader, return_exceptions=True)

        LOGGER.debug(
            "upload finished: %d bytes queued, final message size %d",
            self.bytes_sent_total,
            self.message_size,
        )

    # -- Loops --------------------------------------------------------------

    async def _pace(self) -> None:
        while self._session.is_open:
            if self._clock() - self.start_time >= self.duration:
                # Closing may wait for the queued backlog to drain.
                self._post(WorkerMessage.client(self.measure()))
                await self._session.close()
                return

            self.maybe_grow()
            try:
                await self.fill()
            except TransportError:
                # server closed cleanly mid-send
                if self._session.state != CLOSED:
                    raise
                return

            if self._clock() - self.last_sample_time >= SAMPLE_INTERVAL:
                self._post(WorkerMessage.client(self.measure()))

            await asyncio.sleep(0)

    async def _read(self) -> None:
        while True:
            frame = await self._session.receive()
            if frame is None:
                return
            if frame.is_text:
                self._post(WorkerMessage.server(frame.data))

    # -- Single steps -------------------------------------------------------

    def confirmed_bytes(self) -> int:
        """Bytes handed off the local buffer: queued minus still buffered."""
        return self.bytes_sent_total - self._session.buffered_amount()

    def maybe_grow(self) -> bool:
        if self.message_size >= MAX_MESSAGE_SIZE:
            return False
        if self.confirmed_bytes() < GROWTH_FACTOR * self.message_size:
            return False
        self.message_size = min(self.message_size * 2, MAX_MESSAGE_SIZE)
        LOGGER.debug("upload message size grown to %d bytes", self.message_size)
        return True

    async def fill(self) -> int:
        """Top the send buffer up to the look-ahead.  Returns messages sent."""
        if len(self._payload) != self.message_size:
            self._payload = make_payload(self.message_size)
        sent = 0
        desired = LOOKAHEAD_MESSAGES * self.message_size
        while (
            sent < LOOKAHEAD_MESSAGES
            and self._session.is_open
            and self._session.buffered_amount() < desired
        ):
            await self._session.send(self._payload)
            self.bytes_sent_total += self.message_size
            sent += 1
        return sent

    def measure(self) -> Measurement:
        now = self._clock()
        self.last_sample_time = now
        return Measurement.client(
            UPLOAD,
            elapsed_seconds=now - self.start_time,
            num_bytes=self.confirmed_bytes(),
        )
