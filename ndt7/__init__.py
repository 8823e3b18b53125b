"""ndt7 client library -- transport, pacing, sampling, and orchestration."""

from .client import Callbacks, NDT7Client
from .config import Settings, load_config, save_config
from .errors import (
    DataPolicyError,
    NDT7Error,
    ProtocolError,
    ResolutionError,
    SubtestError,
    SubtestTimeout,
    TransportError,
)
from .locate import LocateAPI, Server, ServerURLs, build_urls, discover_server_urls
from .measurement import Measurement, format_speed
from .runner import SubtestOutcome, SubtestRunner
from .session import Frame, WebSocketSession

__all__ = [
    "Callbacks",
    "DataPolicyError",
    "Frame",
    "LocateAPI",
    "Measurement",
    "NDT7Client",
    "NDT7Error",
    "ProtocolError",
    "ResolutionError",
    "Server",
    "ServerURLs",
    "Settings",
    "SubtestError",
    "SubtestOutcome",
    "SubtestRunner",
    "SubtestTimeout",
    "TransportError",
    "WebSocketSession",
    "build_urls",
    "discover_server_urls",
    "format_speed",
    "load_config",
    "save_config",
]
