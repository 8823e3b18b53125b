"""
Subtest runner: drives one download or upload subtest end to end.

State machine::

    idle -> resolving -> running -> completed | errored | timed_out

The terminal transition happens exactly once; anything the worker posts
afterwards is dropped.  The worker (sampler or pacer) runs in its own
asyncio task and talks to the runner only through a queue of immutable
``WorkerMessage`` objects.  An absolute deadline covers resolution and the
whole transfer; when it fires the worker is cancelled and the session is
closed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .constants import SUBTEST_TIMEOUT, UPLOAD_DURATION
from .download import DownloadSampler
from .errors import NDT7Error, ResolutionError, SubtestTimeout, TransportError
from .locate import ServerURLs
from .measurement import DOWNLOAD, UPLOAD, Measurement, WorkerMessage
from .merger import MeasurementMerger
from .session import WebSocketSession
from .upload import UploadPacer

LOGGER = logging.getLogger(__name__)

IDLE = "idle"
RESOLVING = "resolving"
RUNNING = "running"
COMPLETED = "completed"
ERRORED = "errored"
TIMED_OUT = "timed_out"

TERMINAL_STATES = (COMPLETED, ERRORED, TIMED_OUT)

# C-style subtest return codes.
RC_SUCCESS = 0
RC_FAILURE = 1
RC_RESOLUTION = 2


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubtestOutcome:
    """Final result of one subtest."""

    test: str
    status: str
    last_client_measurement: Optional[Measurement] = None
    last_server_measurement: Optional[Measurement] = None
    measurement_count: int = 0
    error: Optional[NDT7Error] = None

    @property
    def succeeded(self) -> bool:
        # A timeout that still produced data is a partial success.
        if self.status == TIMED_OUT:
            return self.measurement_count > 0
        return self.status == COMPLETED

    @property
    def return_code(self) -> int:
        if self.succeeded:
            return RC_SUCCESS
        if isinstance(self.error, ResolutionError):
            return RC_RESOLUTION
        return RC_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        last_client = self.last_client_measurement
        last_server = self.last_server_measurement
        return {
            "test": self.test,
            "status": self.status,
            "succeeded": self.succeeded,
            "error": str(self.error) if self.error else None,
            "measurements": self.measurement_count,
            "last_client_measurement": last_client.to_dict() if last_client else None,
            "last_server_measurement": last_server.to_dict() if last_server else None,
        }


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class SubtestRunner:
    """Owns one subtest's session, worker task, and deadline."""

    def __init__(
        self,
        test: str,
        destination: Awaitable[ServerURLs],
        on_start: Callable[[Dict[str, float]], None],
        on_measurement: Callable[[Measurement], None],
        session_factory: Callable[[str], WebSocketSession] = WebSocketSession,
        timeout: float = SUBTEST_TIMEOUT,
        upload_duration: float = UPLOAD_DURATION,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if test not in (DOWNLOAD, UPLOAD):
            raise ValueError(f"unknown subtest: {test}")
        self.test = test
        self._destination = destination
        self._on_start = on_start
        self._session_factory = session_factory
        self._timeout = timeout
        self._upload_duration = upload_duration
        self._clock = clock

        self.state = IDLE
        self.session: Optional[WebSocketSession] = None
        self.outcome: Optional[SubtestOutcome] = None
        self.merger = MeasurementMerger(test, on_measurement)

    # -- Resolution guard ---------------------------------------------------

    def finish(self, status: str, error: Optional[NDT7Error] = None) -> bool:
        """Enter a terminal state.  Returns False if one was already entered."""
        if self.state in TERMINAL_STATES:
            LOGGER.debug("%s: ignoring %s, already %s", self.test, status, self.state)
            return False

        self.state = status
        self.outcome = SubtestOutcome(
            test=self.test,
            status=status,
            last_client_measurement=self.merger.last_client,
            last_server_measurement=self.merger.last_server,
            measurement_count=self.merger.count,
            error=error,
        )
        if error is not None:
            LOGGER.info("%s subtest %s: %s", self.test, status, error)
        else:
            LOGGER.info("%s subtest %s", self.test, status)
        return True

    # -- Entry point --------------------------------------------------------

    async def run(self) -> SubtestOutcome:
        if self.state != IDLE:
            raise RuntimeError("a SubtestRunner can only run once")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        self.state = RESOLVING
        try:
            urls = await asyncio.wait_for(asyncio.shield(self._destination), timeout=self._timeout)
        except asyncio.TimeoutError:
            self.finish(TIMED_OUT, SubtestTimeout("timed out resolving the server"))
            return self.outcome
        except ResolutionError as exc:
            self.finish(ERRORED, exc)
            return self.outcome

        url = urls.url_for(self.test)
        LOGGER.debug("%s: connecting to %s", self.test, url)
        session = self._session_factory(url)
        self.session = session

        queue: "asyncio.Queue[WorkerMessage]" = asyncio.Queue()
        self.state = RUNNING
        worker = asyncio.create_task(self._worker(session, queue.put_nowait))
        try:
            await self._pump(queue, deadline)
        finally:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
            await session.close()

        return self.outcome

    # -- Internals ----------------------------------------------------------

    async def _pump(self, queue: "asyncio.Queue[WorkerMessage]", deadline: float) -> None:
        loop = asyncio.get_running_loop()
        while self.state == RUNNING:
            remaining = deadline - loop.time()
            if remaining <= 0:
                self.finish(TIMED_OUT, SubtestTimeout(f"{self.test} exceeded {self._timeout:g} s"))
                return
            try:
                message = await asyncio.wait_for(queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                self.finish(TIMED_OUT, SubtestTimeout(f"{self.test} exceeded {self._timeout:g} s"))
                return
            self.dispatch(message)

    def dispatch(self, message: WorkerMessage) -> None:
        if self.state in TERMINAL_STATES:
            return
        if message.kind == "start":
            data = {"StartTime": message.start_time}
            if message.expected_end_time:
                data["ExpectedEndTime"] = message.expected_end_time
            self._on_start(data)
        elif message.kind == "measurement":
            self.merger.add(message)
        elif message.kind == "complete":
            self.finish(COMPLETED)
        elif message.kind == "error":
            self.finish(ERRORED, TransportError(message.error or f"{self.test} error"))
        else:
            LOGGER.warning("%s: unexpected worker message %r", self.test, message.kind)

    async def _worker(
        self,
        session: WebSocketSession,
        post: Callable[[WorkerMessage], None],
    ) -> None:
        try:
            await session.open()
            if self.test == DOWNLOAD:
                await DownloadSampler(session, post, clock=self._clock).run()
            else:
                await UploadPacer(
                    session, post, clock=self._clock, duration=self._upload_duration
                ).run()
        except TransportError as exc:
            post(WorkerMessage.failed(str(exc)))
        else:
            post(WorkerMessage.complete())
