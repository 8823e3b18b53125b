"""
Rich-based terminal dashboard for ndt7 results.

Metric extraction lives in ``ui.output`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from ndt7.measurement import format_speed
from ndt7.runner import SubtestOutcome

from .output import min_rtt_ms, retransmission_pct, subtest_speed

console = Console()


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float]) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        _BARS[min(int((v - lo) / span * (len(_BARS) - 1)), len(_BARS) - 1)]
        for v in values
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]ndt7 speed test[/bold cyan]\n"
            "[dim]Download and upload throughput over WebSocket[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_server(machine: str, location: str = "") -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Server:", machine)
    if location:
        table.add_row("Location:", location)
    console.print(Panel(table, title="[bold]Server[/bold]", border_style="blue"))


def print_subtest_result(
    outcome: SubtestOutcome,
    title: str,
    color: str = "green",
    samples: Optional[List[float]] = None,
) -> None:
    """Print a download or upload result panel."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Speed", f"[bold {color}]{format_speed(subtest_speed(outcome))}[/bold {color}]")
    client = outcome.last_client_measurement
    if client:
        table.add_row("Data Transferred", f"{client.num_bytes / 1_000_000:.1f} MB")
        table.add_row("Duration", f"{client.elapsed_seconds:.1f} s")
    table.add_row("Measurements", str(outcome.measurement_count))
    table.add_row("Status", outcome.status)
    console.print(table)

    if samples:
        console.print(
            Panel(
                f"[{color}]{create_histogram(samples)}[/{color}]\n"
                f"[dim]Min: {min(samples):.1f} Mbps  "
                f"Max: {max(samples):.1f} Mbps[/dim]",
                title="Speed Over Time",
            )
        )


def print_final_results(
    download: Optional[SubtestOutcome],
    upload: Optional[SubtestOutcome],
    server_label: str,
) -> None:
    lines = [f"[bold cyan]Server:[/bold cyan] {server_label}\n"]
    if download is not None:
        lines.append(
            f"[bold white]   Download:[/bold white]  "
            f"[bold green]{format_speed(subtest_speed(download))}[/bold green]"
        )
        rtt = min_rtt_ms(download)
        if rtt > 0:
            lines.append(f"[bold white]   Latency:[/bold white]  [bold yellow]{rtt:.1f} ms[/bold yellow]")
            lines.append(
                f"[bold white]   Retransmission:[/bold white]  "
                f"[dim]{retransmission_pct(download):.2f} %[/dim]"
            )
    if upload is not None:
        lines.append(
            f"[bold white]   Upload:[/bold white]  "
            f"[bold blue]{format_speed(subtest_speed(upload))}[/bold blue]"
        )

    console.print()
    console.print(
        Panel.fit(
            "\n".join(lines),
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during download / upload tests."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._last_speed = 0.0
        self._last_prog = 0.0

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, speed="")
        self._last_speed = 0.0
        self._last_prog = 0.0

    def update(self, progress: float, speed_mbps: float = 0) -> None:
        if self._task_id is None:
            return
        # Debounce: only update when values change noticeably
        if abs(progress - self._last_prog) < 0.01 and abs(speed_mbps - self._last_speed) < 1.0:
            return
        speed_str = format_speed(speed_mbps) if speed_mbps > 0 else "..."
        self.progress.update(self._task_id, completed=min(progress, 1.0) * 100, speed=speed_str)
        self._last_prog = progress
        self._last_speed = speed_mbps

    def stop(self) -> None:
        if self._task_id is not None:
            self.progress.update(self._task_id, completed=100)
        self.progress.stop()
        self._task_id = None
