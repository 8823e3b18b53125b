"""
User configuration file support.

Reads/writes ``~/.ndt7-tui/config.json``.  Values from the file are merged
over ``DEFAULTS`` and turned into an immutable :class:`Settings` that is
built once and handed to every component.

Supported keys::

    server = ""                 # host[:port]; empty means use the locate service
    service_url = "https://locate.measurementlab.net/v2/nearest/ndt/ndt7"
    scheme = "wss"              # "ws" or "wss"
    accept_data_policy = false  # required when the locate service is used
    metadata = {}               # extra key/value pairs sent with each request
    log_level = "WARNING"
    log_file = ""               # optional rotating log file
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import (
    CLOSE_TIMEOUT,
    CONNECT_TIMEOUT,
    DEFAULT_SCHEME,
    LOCATE_URL,
    SCHEMES,
    SUBTEST_TIMEOUT,
    UPLOAD_DURATION,
)

_CONFIG_DIR = os.path.join(Path.home(), ".ndt7-tui")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "server": "",
    "service_url": LOCATE_URL,
    "scheme": DEFAULT_SCHEME,
    "accept_data_policy": False,
    "metadata": {},
    "log_level": "WARNING",
    "log_file": "",
}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    """Immutable test configuration."""

    server: Optional[str] = None
    service_url: str = LOCATE_URL
    scheme: str = DEFAULT_SCHEME
    metadata: Dict[str, str] = field(default_factory=dict)
    accept_data_policy: bool = False
    upload_duration: float = UPLOAD_DURATION
    subtest_timeout: float = SUBTEST_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        if self.scheme not in SCHEMES:
            raise ValueError(f"scheme must be one of {', '.join(SCHEMES)}")
        if self.subtest_timeout <= 0 or self.upload_duration <= 0:
            raise ValueError("durations must be positive")

    @property
    def data_policy_applies(self) -> bool:
        """The M-Lab data policy covers tests routed by the locate service."""
        return not self.server

    @property
    def close_timeout(self) -> float:
        """Time the upload's closing handshake gets once sending stops."""
        remaining = self.subtest_timeout - self.upload_duration
        return remaining if remaining > 0 else CLOSE_TIMEOUT

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides: Any) -> Settings:
        """Build settings from a loaded config dict; ``None`` overrides are ignored."""
        merged = dict(DEFAULTS)
        merged.update(config)
        merged.update({k: v for k, v in overrides.items() if v is not None})

        metadata = merged.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a JSON object")

        kwargs: Dict[str, Any] = {
            "server": merged.get("server") or None,
            "service_url": merged.get("service_url") or LOCATE_URL,
            "scheme": merged.get("scheme") or DEFAULT_SCHEME,
            "metadata": {str(k): str(v) for k, v in metadata.items()},
            "accept_data_policy": bool(merged.get("accept_data_policy")),
        }
        for key in ("upload_duration", "subtest_timeout", "connect_timeout"):
            if key in merged:
                kwargs[key] = float(merged[key])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError):
        pass  # corrupt file; use defaults

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
