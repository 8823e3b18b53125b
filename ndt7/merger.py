"""
Merge client- and server-origin measurements into one event stream.

Measurements pass straight through in arrival order; the merger only
decodes server frames and remembers the latest sample of each origin for
the subtest outcome.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .errors import ProtocolError
from .measurement import CLIENT, Measurement, WorkerMessage

LOGGER = logging.getLogger(__name__)


class MeasurementMerger:
    """Pass-through for one subtest's measurements."""

    def __init__(self, test: str, on_measurement: Callable[[Measurement], None]) -> None:
        self.test = test
        self._on_measurement = on_measurement
        self.last_client: Optional[Measurement] = None
        self.last_server: Optional[Measurement] = None
        self.count = 0
        self.dropped = 0

    def add(self, message: WorkerMessage) -> Optional[Measurement]:
        """Forward the measurement carried by *message*, if it decodes."""
        if message.server_message is not None:
            try:
                measurement = Measurement.from_server(self.test, message.server_message)
            except ProtocolError as exc:
                self.dropped += 1
                LOGGER.warning("%s: dropping server frame: %s", self.test, exc)
                return None
        elif message.measurement is not None:
            measurement = message.measurement
        else:
            return None

        if measurement.origin == CLIENT:
            self.last_client = measurement
        else:
            self.last_server = measurement
        self.count += 1

        self._on_measurement(measurement)
        return measurement
