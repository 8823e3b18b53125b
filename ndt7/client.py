"""
Test orchestrator: the public entry point of the engine.

``NDT7Client.run()`` resolves the server once, runs the download subtest,
then the upload subtest, and returns a C-style code::

    download_rc + (upload_rc << 4)

where each subtest code is 0 (success), 1 (error, or a timeout with no
data) or 2 (server resolution failed).  ``download_test()`` and
``upload_test()`` may also be run on their own.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .config import Settings
from .errors import DataPolicyError, NDT7Error, SubtestError
from .locate import Server, ServerURLs, discover_server_urls
from .measurement import DOWNLOAD, UPLOAD, Measurement
from .runner import RC_FAILURE, SubtestOutcome, SubtestRunner
from .session import WebSocketSession

LOGGER = logging.getLogger(__name__)

DATA_POLICY_MESSAGE = (
    "The M-Lab data policy is applicable and the user has not explicitly "
    "accepted that data policy (https://www.measurementlab.net/privacy/)."
)


def _noop(*args: Any) -> None:
    pass


def raise_error(kind: str, error: NDT7Error) -> None:
    """Default error callback: surface the failure to the caller."""
    raise SubtestError(kind, str(error)) from error


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------

@dataclass
class Callbacks:
    """
    Event handlers, all optional.

    Every handler defaults to a no-op except ``error``, which raises
    ``SubtestError``; pass your own ``error`` handler to keep going after a
    failed subtest.
    """

    server_discovery: Callable[[str], None] = _noop
    server_chosen: Callable[[Server], None] = _noop
    subtest_start: Callable[[str, Dict[str, float]], None] = _noop
    measurement: Callable[[Measurement], None] = _noop
    subtest_complete: Callable[[SubtestOutcome], None] = _noop
    error: Callable[[str, NDT7Error], None] = raise_error


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class NDT7Client:
    """Runs ndt7 subtests against one resolved server."""

    def __init__(
        self,
        settings: Settings,
        callbacks: Optional[Callbacks] = None,
        resolver: Optional[Callable[..., Awaitable[ServerURLs]]] = None,
        session_factory: Optional[Callable[[str], WebSocketSession]] = None,
    ) -> None:
        self.settings = settings
        self.callbacks = callbacks or Callbacks()
        self._resolver = resolver or discover_server_urls
        self._session_factory = session_factory or functools.partial(
            WebSocketSession,
            connect_timeout=settings.connect_timeout,
            close_timeout=settings.close_timeout,
        )
        self._destination: Optional[asyncio.Future] = None
        self.outcomes: Dict[str, SubtestOutcome] = {}

    # -- Public API ---------------------------------------------------------

    async def run(self) -> int:
        """Download then upload.  Returns 0 only if both succeeded."""
        download_rc = await self.download_test()
        upload_rc = await self.upload_test()
        return download_rc + upload_rc

    async def download_test(self) -> int:
        return await self._run_subtest(DOWNLOAD)

    async def upload_test(self) -> int:
        return (await self._run_subtest(UPLOAD)) << 4

    # -- Internals ----------------------------------------------------------

    def _destination_future(self) -> asyncio.Future:
        # Resolution starts once and is shared by both subtests.
        if self._destination is None:
            self._destination = asyncio.ensure_future(self._resolver(
                self.settings,
                self.callbacks.server_discovery,
                self.callbacks.server_chosen,
            ))
        return self._destination

    async def _run_subtest(self, test: str) -> int:
        if self.settings.data_policy_applies and not self.settings.accept_data_policy:
            self.callbacks.error(test, DataPolicyError(DATA_POLICY_MESSAGE))
            return RC_FAILURE

        runner = SubtestRunner(
            test,
            self._destination_future(),
            on_start=functools.partial(self.callbacks.subtest_start, test),
            on_measurement=self.callbacks.measurement,
            session_factory=self._session_factory,
            timeout=self.settings.subtest_timeout,
            upload_duration=self.settings.upload_duration,
        )
        outcome = await runner.run()
        self.outcomes[test] = outcome

        if outcome.succeeded:
            self.callbacks.subtest_complete(outcome)
        else:
            self.callbacks.error(test, outcome.error or NDT7Error(f"{test} failed"))
        return outcome.return_code
