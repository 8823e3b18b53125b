#!/usr/bin/env python3
"""
ndt7 CLI -- measure download and upload throughput from the terminal.

Usage::

    python ndt7cli.py --accept-data-policy       # rich dashboard, locate service
    python ndt7cli.py --server ndt.example.org   # explicit server
    python ndt7cli.py --simple                   # plain text
    python ndt7cli.py --json                     # one JSON event per line
    python ndt7cli.py -o result.json             # save summary to file
    python ndt7cli.py --download-only            # skip the upload subtest

The process exit code is the test return code: 0 when every subtest
succeeded, otherwise ``download_rc + (upload_rc << 4)``.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from ndt7.client import Callbacks, NDT7Client
from ndt7.config import Settings, config_path, load_config
from ndt7.constants import LOCATE_URL, SCHEMES, UPLOAD_DURATION
from ndt7.errors import NDT7Error
from ndt7.locate import Server
from ndt7.logging_setup import configure_logging
from ndt7.measurement import CLIENT, DOWNLOAD, UPLOAD, Measurement
from ndt7.runner import SubtestOutcome
from ui.dashboard import (
    ProgressDisplay,
    console,
    print_final_results,
    print_header,
    print_server,
    print_subtest_result,
)
from ui.output import create_result_json, format_event, measurement_event, save_json, subtest_speed

LOGGER = logging.getLogger("ndt7cli")

_TITLES = {DOWNLOAD: ("Download Results", "green"), UPLOAD: ("Upload Results", "blue")}


# ---------------------------------------------------------------------------
# Event reporter
# ---------------------------------------------------------------------------

class Reporter:
    """Turns engine callbacks into dashboard, plain-text, or JSON output."""

    def __init__(
        self,
        json_output: bool = False,
        simple: bool = False,
        duration: float = UPLOAD_DURATION,
    ) -> None:
        self.json_output = json_output
        self.simple = simple
        self.show_ui = not json_output and not simple
        self.duration = duration
        self.server: Dict[str, str] = {}
        self.samples: Dict[str, List[float]] = {DOWNLOAD: [], UPLOAD: []}
        self._progress: Optional[ProgressDisplay] = None

    def callbacks(self) -> Callbacks:
        return Callbacks(
            server_discovery=self.on_server_discovery,
            server_chosen=self.on_server_chosen,
            subtest_start=self.on_start,
            measurement=self.on_measurement,
            subtest_complete=self.on_complete,
            error=self.on_error,
        )

    def _emit(self, key: str, value: dict) -> None:
        print(format_event(key, value), flush=True)

    # -- Handlers -----------------------------------------------------------

    def on_server_discovery(self, url: str) -> None:
        if self.json_output:
            self._emit("serverDiscovery", {"URL": url})
        elif self.show_ui:
            console.print(f"[dim]Asking {url} for a server...[/dim]")

    def on_server_chosen(self, server: Server) -> None:
        self.server = server.to_dict()
        if self.json_output:
            self._emit("serverChosen", self.server)
        elif self.show_ui:
            location = ", ".join(p for p in (server.city, server.country) if p)
            print_server(server.machine, location)
        else:
            print(f"Server: {server.machine}")

    def on_start(self, test: str, data: dict) -> None:
        if self.json_output:
            self._emit("starting", {"Test": test, **data})
        elif self.show_ui:
            console.print(f"\n[bold]Testing {test} speed...[/bold]")
            self._progress = ProgressDisplay()
            self._progress.start(test.capitalize())

    def on_measurement(self, measurement: Measurement) -> None:
        if self.json_output:
            print(measurement_event(measurement), flush=True)
            return
        if measurement.origin != CLIENT:
            return
        self.samples[measurement.test].append(measurement.mean_mbps)
        if self._progress is not None:
            self._progress.update(
                measurement.elapsed_seconds / self.duration, measurement.mean_mbps
            )

    def on_complete(self, outcome: SubtestOutcome) -> None:
        self._stop_progress()
        if self.json_output:
            self._emit("complete", outcome.to_dict())
        elif self.show_ui:
            title, color = _TITLES[outcome.test]
            print_subtest_result(outcome, title, color, self.samples[outcome.test])
        else:
            print(f"{outcome.test.capitalize()}: {subtest_speed(outcome):.2f} Mbps")

    def on_error(self, test: str, error: NDT7Error) -> None:
        self._stop_progress()
        if self.json_output:
            self._emit("error", {"Test": test, "Failure": str(error)})
        elif self.show_ui:
            console.print(f"[red]Error ({test}): {error}[/red]")
        else:
            print(f"Error ({test}): {error}", file=sys.stderr)

    def _stop_progress(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_ndt7(
    settings: Settings,
    *,
    json_output: bool = False,
    simple: bool = False,
    output_file: Optional[str] = None,
    download: bool = True,
    upload: bool = True,
) -> int:
    """Run the selected subtests and return the combined return code."""
    reporter = Reporter(
        json_output=json_output, simple=simple, duration=settings.upload_duration
    )
    if reporter.show_ui:
        print_header()

    client = NDT7Client(settings, reporter.callbacks())
    rc = 0
    if download:
        rc += await client.download_test()
    if upload:
        rc += await client.upload_test()

    server = reporter.server or {"machine": settings.server or ""}
    if reporter.show_ui:
        print_final_results(
            client.outcomes.get(DOWNLOAD),
            client.outcomes.get(UPLOAD),
            server_label=server.get("machine", "") or "?",
        )

    if output_file:
        save_json(create_result_json(server, client.outcomes, rc), output_file)
        if reporter.show_ui:
            console.print(f"[green]Results saved to:[/green] {output_file}")

    return rc


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ndt7 CLI -- network throughput measurement",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Emit one JSON event per line")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save the summary to a JSON file")

    # Server selection
    parser.add_argument("--server", type=str, metavar="HOST", help="Use this ndt7 server (host[:port])")
    parser.add_argument("--service-url", type=str, metavar="URL", help=f"Locate service URL (default: {LOCATE_URL})")
    parser.add_argument("--scheme", choices=SCHEMES, help="WebSocket scheme (default: wss)")
    parser.add_argument("--accept-data-policy", action="store_true", default=None,
                        help="Accept the M-Lab data policy (required with the locate service)")

    # Subtests
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--download-only", action="store_true", help="Run only the download subtest")
    group.add_argument("--upload-only", action="store_true", help="Run only the upload subtest")

    # Diagnostics
    parser.add_argument("--log-level", type=str, metavar="LEVEL", help="Logging level (default: WARNING)")
    parser.add_argument("--log-file", type=str, metavar="FILE", help="Also log to a rotating file")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    config = load_config()

    configure_logging(
        args.log_level or config.get("log_level") or "WARNING",
        args.log_file or config.get("log_file") or None,
    )

    try:
        settings = Settings.from_config(
            config,
            server=args.server,
            service_url=args.service_url,
            scheme=args.scheme,
            accept_data_policy=args.accept_data_policy,
        )
    except ValueError as exc:
        console.print(f"[red]Error in {config_path()}: {exc}[/red]")
        sys.exit(1)

    try:
        rc = asyncio.run(
            run_ndt7(
                settings,
                json_output=args.json,
                simple=args.simple,
                output_file=args.output,
                download=not args.upload_only,
                upload=not args.download_only,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except (NDT7Error, IOError) as exc:
        LOGGER.debug("test aborted", exc_info=True)
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)

    if args.json:
        print(format_event("result", {"ReturnCode": rc}), flush=True)
    sys.exit(rc)


if __name__ == "__main__":
    main()
