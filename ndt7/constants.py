"""
Shared constants used across the ndt7 engine.

Centralises protocol identifiers, pacing tunables, and deadlines so they
live in exactly one place.
"""

# ---------------------------------------------------------------------------
# Library identity (sent as URL metadata)
# ---------------------------------------------------------------------------

LIBRARY_NAME = "ndt7-tui"
LIBRARY_VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

SUBPROTOCOL = "net.measurementlab.ndt.v7"
DOWNLOAD_PATH = "/ndt/v7/download"
UPLOAD_PATH = "/ndt/v7/upload"

DEFAULT_SCHEME = "wss"
SCHEMES = ("ws", "wss")

LOCATE_URL = "https://locate.measurementlab.net/v2/nearest/ndt/ndt7"

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

SAMPLE_INTERVAL = 0.25           # 250 ms between client measurements
UPLOAD_DURATION = 10.0           # seconds the pacer keeps sending
SUBTEST_TIMEOUT = 12.0           # absolute guard per subtest
CONNECT_TIMEOUT = 5.0            # WebSocket opening handshake
CLOSE_TIMEOUT = SUBTEST_TIMEOUT - UPLOAD_DURATION  # closing handshake after the upload

# ---------------------------------------------------------------------------
# Upload pacing
# ---------------------------------------------------------------------------

INITIAL_MESSAGE_SIZE = 1 << 13   # 8 KiB
MAX_MESSAGE_SIZE = 1 << 23       # 8 MiB
GROWTH_FACTOR = 16               # confirmed-sent messages before doubling
LOOKAHEAD_MESSAGES = 7           # messages kept queued in the send buffer

# The transport must accept the full look-ahead without awaiting a drain.
WRITE_LIMIT = (LOOKAHEAD_MESSAGES + 1) * MAX_MESSAGE_SIZE

# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

MAX_MESSAGE_RECEIVE = 1 << 24    # server may send up to 16 MiB frames
