"""
Measurement records and the messages a subtest worker posts to its runner.

Pure dataclasses and helpers -- no I/O, no side effects.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ProtocolError

CLIENT = "client"
SERVER = "server"

DOWNLOAD = "download"
UPLOAD = "upload"


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Measurement:
    """One throughput sample, computed locally or reported by the server."""

    origin: str
    test: str
    elapsed_seconds: float = 0.0
    num_bytes: int = 0
    mean_mbps: float = 0.0
    raw_payload: str = ""
    data: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    # -- Constructors -------------------------------------------------------

    @classmethod
    def client(cls, test: str, elapsed_seconds: float, num_bytes: int) -> Measurement:
        return cls(
            origin=CLIENT,
            test=test,
            elapsed_seconds=elapsed_seconds,
            num_bytes=num_bytes,
            mean_mbps=mean_mbps(num_bytes, elapsed_seconds),
        )

    @classmethod
    def from_server(cls, test: str, raw: str) -> Measurement:
        """Decode a server text frame.  Raises ``ProtocolError`` if malformed."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid server measurement: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("server measurement is not a JSON object")

        elapsed_us, num_bytes = _server_counters(data, test)
        return cls(
            origin=SERVER,
            test=test,
            elapsed_seconds=elapsed_us / 1_000_000,
            num_bytes=num_bytes,
            raw_payload=raw,
            data=data,
        )

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        if self.origin == SERVER:
            return {"Origin": SERVER, "Test": self.test, **self.data}
        return {
            "Origin": CLIENT,
            "Test": self.test,
            "ElapsedTime": round(self.elapsed_seconds, 6),
            "NumBytes": self.num_bytes,
            "MeanClientMbps": round(self.mean_mbps, 6),
        }


def _server_counters(data: Dict[str, Any], test: str) -> tuple:
    """Pull (elapsed microseconds, bytes) out of an ndt7 server snapshot."""
    app = data.get("AppInfo")
    if isinstance(app, dict):
        return float(app.get("ElapsedTime", 0) or 0), int(app.get("NumBytes", 0) or 0)

    tcp = data.get("TCPInfo")
    if isinstance(tcp, dict):
        key = "BytesAcked" if test == DOWNLOAD else "BytesReceived"
        return float(tcp.get("ElapsedTime", 0) or 0), int(tcp.get(key, 0) or 0)

    return 0.0, 0


# ---------------------------------------------------------------------------
# Worker messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkerMessage:
    """
    A message posted by a subtest worker to its runner.

    ``kind`` is one of ``start``, ``measurement``, ``complete`` or ``error``.
    Client measurements travel as ``measurement``; server frames travel
    undecoded in ``server_message`` so the JSON parsing happens on the runner
    side.
    """

    kind: str
    measurement: Optional[Measurement] = None
    server_message: Optional[str] = None
    start_time: float = 0.0
    expected_end_time: float = 0.0
    error: str = ""

    @classmethod
    def start(cls, start_time: float, expected_end_time: float = 0.0) -> WorkerMessage:
        return cls(kind="start", start_time=start_time, expected_end_time=expected_end_time)

    @classmethod
    def client(cls, measurement: Measurement) -> WorkerMessage:
        return cls(kind="measurement", measurement=measurement)

    @classmethod
    def server(cls, raw: str) -> WorkerMessage:
        return cls(kind="measurement", server_message=raw)

    @classmethod
    def complete(cls) -> WorkerMessage:
        return cls(kind="complete")

    @classmethod
    def failed(cls, error: str) -> WorkerMessage:
        return cls(kind="error", error=error)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def mean_mbps(num_bytes: int, elapsed_seconds: float) -> float:
    """Average rate in megabits per second; 0 when no time has elapsed."""
    if elapsed_seconds <= 0:
        return 0.0
    return num_bytes * 8 / 1_000_000 / elapsed_seconds


def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"
