"""
Download (downlink) subtest worker.

The server streams binary filler and, periodically, JSON measurement
snapshots as text frames.  The sampler counts every received byte and,
at most every ``SAMPLE_INTERVAL`` seconds, posts a client-side measurement.
Sampling piggybacks on frame arrival: when nothing arrives, nothing is
sampled, so no timer keeps the event loop busy.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

from .constants import SAMPLE_INTERVAL
from .measurement import DOWNLOAD, Measurement, WorkerMessage
from .session import Frame, WebSocketSession

LOGGER = logging.getLogger(__name__)


class DownloadSampler:
    """Receive-only worker attached to an open session."""

    def __init__(
        self,
        session: WebSocketSession,
        post: Callable[[WorkerMessage], None],
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._session = session
        self._post = post
        self._clock = clock
        self.bytes_received_total = 0
        self.start_time = 0.0
        self.last_sample_time = 0.0

    def begin(self) -> None:
        self.start_time = self._clock()
        self.last_sample_time = self.start_time
        self.bytes_received_total = 0
        self._post(WorkerMessage.start(self.start_time))

    async def run(self) -> None:
        """Consume frames until the server closes the connection."""
        self.begin()
        while True:
            frame = await self._session.receive()
            if frame is None:
                break
            self.on_frame(frame)
        LOGGER.debug("download finished after %d bytes", self.bytes_received_total)

    def on_frame(self, frame: Frame) -> None:
        self.bytes_received_total += frame.size

        now = self._clock()
        if now - self.last_sample_time > SAMPLE_INTERVAL:
            self._post(WorkerMessage.client(Measurement.client(
                DOWNLOAD,
                elapsed_seconds=now - self.start_time,
                num_bytes=self.bytes_received_total,
            )))
            self.last_sample_time = now

        # Every server-side measurement is passed along.
        if frame.is_text:
            self._post(WorkerMessage.server(frame.data))
