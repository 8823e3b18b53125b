"""Exception hierarchy for the ndt7 engine."""
from __future__ import annotations


class NDT7Error(Exception):
    """Base class for every error raised by this package."""


class ResolutionError(NDT7Error):
    """Destination lookup failed."""


class TransportError(NDT7Error):
    """Connect or send failure on the WebSocket session."""


class ProtocolError(NDT7Error):
    """A server frame could not be decoded as a JSON object."""


class SubtestTimeout(NDT7Error):
    """The subtest deadline elapsed before the session ended."""


class DataPolicyError(NDT7Error):
    """The M-Lab data policy applies and was not accepted."""


class SubtestError(NDT7Error):
    """Raised by the default error callback to surface a failed subtest."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind}: {reason}")
        self.kind = kind
        self.reason = reason
