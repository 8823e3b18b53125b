"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    ProgressDisplay,
    console,
    create_histogram,
    print_final_results,
    print_header,
    print_server,
    print_subtest_result,
)
from .output import (
    create_result_json,
    format_event,
    measurement_event,
    min_rtt_ms,
    retransmission_pct,
    save_json,
    subtest_speed,
)

__all__ = [
    "ProgressDisplay",
    "console",
    "create_histogram",
    "create_result_json",
    "format_event",
    "measurement_event",
    "min_rtt_ms",
    "print_final_results",
    "print_header",
    "print_server",
    "print_subtest_result",
    "retransmission_pct",
    "save_json",
    "subtest_speed",
]
