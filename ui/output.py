"""
Output formatting -- summary metrics, JSON event lines, and JSON export.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ndt7.measurement import DOWNLOAD, UPLOAD, Measurement, mean_mbps
from ndt7.runner import SubtestOutcome


# ---------------------------------------------------------------------------
# Summary metrics
# ---------------------------------------------------------------------------

def subtest_speed(outcome: Optional[SubtestOutcome]) -> float:
    """
    Best estimate of a subtest's throughput in Mbps.

    Upload speed is taken from the server's view when available, since only
    the receiver knows what actually crossed the link.
    """
    if outcome is None:
        return 0.0
    server = outcome.last_server_measurement
    if outcome.test == UPLOAD and server and server.elapsed_seconds > 0:
        return mean_mbps(server.num_bytes, server.elapsed_seconds)
    client = outcome.last_client_measurement
    return client.mean_mbps if client else 0.0


def _tcp_info(outcome: Optional[SubtestOutcome]) -> Dict[str, Any]:
    if outcome is None or outcome.last_server_measurement is None:
        return {}
    tcp = outcome.last_server_measurement.data.get("TCPInfo")
    return tcp if isinstance(tcp, dict) else {}


def min_rtt_ms(outcome: Optional[SubtestOutcome]) -> float:
    """Server-observed minimum RTT (reported in microseconds)."""
    return float(_tcp_info(outcome).get("MinRTT", 0) or 0) / 1000


def retransmission_pct(outcome: Optional[SubtestOutcome]) -> float:
    tcp = _tcp_info(outcome)
    sent = float(tcp.get("BytesSent", 0) or 0)
    if sent <= 0:
        return 0.0
    return float(tcp.get("BytesRetrans", 0) or 0) / sent * 100


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def format_event(key: str, value: Dict[str, Any]) -> str:
    """One streaming event as a single JSON line."""
    return json.dumps({"Key": key, "Value": value}, ensure_ascii=False)


def measurement_event(measurement: Measurement) -> str:
    return format_event("measurement", measurement.to_dict())


def create_result_json(
    server: Dict[str, Any],
    outcomes: Dict[str, SubtestOutcome],
    return_code: int,
) -> Dict[str, Any]:
    """Build the final summary dict."""
    download = outcomes.get(DOWNLOAD)
    upload = outcomes.get(UPLOAD)

    result: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server": server,
        "return_code": return_code,
        "download": {
            "speed_mbps": round(subtest_speed(download), 3),
            "min_rtt_ms": round(min_rtt_ms(download), 3),
            "retransmission_pct": round(retransmission_pct(download), 3),
        },
        "upload": {
            "speed_mbps": round(subtest_speed(upload), 3),
        },
        "subtests": {name: o.to_dict() for name, o in outcomes.items()},
    }
    return result


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc
