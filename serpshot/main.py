#!/usr/bin/env python3
# serpshot/main.py
"""
serpshot - capture search results page screenshots for a CSV of queries.

CLI entrypoint.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Union

from .config import CaptureConfig, CaptureOptions
from .errors import CsvInputError, SerpshotError
from .orchestrator import CaptureOrchestrator
from .report import CompareReport, RunReport
from .types import DeviceMode, Engine


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ALL_FAILED = 1
EXIT_USAGE = 2
EXIT_SESSION_ERROR = 3
EXIT_INTERRUPTED = 130

EXAMPLES = """\
examples:
  serpshot data.csv --column="query"            Screenshot search terms from the "query" column
  serpshot data.csv --column=2                  Screenshot search terms from the 3rd column (index 2)
  serpshot data.csv --engine=google --use-chrome
                                                Use the system Chrome browser for Google
  serpshot data.csv --compare-mode --engine=google
                                                Capture both Yahoo and Google screenshots
  serpshot data.csv --quality=60                Lower JPEG quality for smaller files
"""


def _quality(value: str) -> int:
    try:
        quality = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid quality: {value!r}")
    if not 1 <= quality <= 100:
        raise argparse.ArgumentTypeError(f"quality must be between 1 and 100, got {quality}")
    return quality


def _delay(value: str) -> float:
    try:
        delay = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid delay: {value!r}")
    if delay < 0:
        raise argparse.ArgumentTypeError(f"delay must be >= 0, got {delay}")
    return delay


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serpshot",
        description="Capture search engine results page screenshots for each query in a CSV file.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("csv_file", help="CSV file containing search queries")
    parser.add_argument("-o", "--output", default="search_screenshots", help="Directory to save screenshots")
    parser.add_argument(
        "-c", "--column",
        default=None,
        help='Column name (e.g. "query") or index containing search terms',
    )
    parser.add_argument(
        "-e", "--engine",
        choices=[e.value for e in Engine],
        default=Engine.YAHOO.value,
        help="Search engine to use",
    )
    parser.add_argument("-d", "--delay", type=_delay, default=1.0, help="Delay in seconds before screenshot")
    parser.add_argument(
        "-m", "--mode",
        choices=[m.value for m in DeviceMode],
        default=DeviceMode.MOBILE.value,
        help="Device mode: mobile or desktop",
    )
    parser.add_argument(
        "--use-chrome",
        action="store_true",
        help="Use the system Chrome browser for Google searches (helps avoid CAPTCHAs)",
    )
    parser.add_argument(
        "--compare-mode",
        action="store_true",
        help="Capture both Yahoo screenshots and the specified engine for comparison",
    )
    parser.add_argument(
        "--quality",
        type=_quality,
        default=80,
        help="JPEG quality (1-100, lower values = smaller files)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_options(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def options_from_args(args: argparse.Namespace) -> CaptureOptions:
    return CaptureOptions(
        csv_file=args.csv_file,
        output=args.output,
        column=args.column,
        engine=Engine(args.engine),
        delay=args.delay,
        mode=DeviceMode(args.mode),
        use_chrome=args.use_chrome,
        compare_mode=args.compare_mode,
        quality=args.quality,
    )


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _install_cancel_handlers(cancel_event: asyncio.Event) -> None:
    """Turn SIGINT/SIGTERM into a cooperative cancel checked between batches."""
    loop = asyncio.get_running_loop()

    def request_cancel() -> None:
        if not cancel_event.is_set():
            logger.warning("Cancel requested - finishing in-flight captures, skipping the rest")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: KeyboardInterrupt handling in main() still applies.
            logger.debug(f"Signal handler for {sig!r} not supported on this platform")


def print_summary(report: Union[RunReport, CompareReport]) -> None:
    """Print where the screenshots went and how many made it."""
    reports = report.reports if isinstance(report, CompareReport) else [report]
    print("\n" + "=" * 60)
    print("CAPTURE SUMMARY")
    print("=" * 60)
    for run in reports:
        print(run.summary())
        for result in run.failed:
            print(f"  ✗ #{result.request.sequence_index + 1} {result.request.query!r}: {result.error}")
    print()


def exit_code_for(report: Union[RunReport, CompareReport], cancelled: bool) -> int:
    if cancelled:
        return EXIT_INTERRUPTED
    if report.all_failed:
        return EXIT_ALL_FAILED
    return EXIT_OK


async def run(options: CaptureOptions, config: Optional[CaptureConfig] = None) -> int:
    """Run the capture and map its outcome to an exit code."""
    cancel_event = asyncio.Event()
    _install_cancel_handlers(cancel_event)
    orchestrator = CaptureOrchestrator(config=config, cancel_event=cancel_event)

    try:
        report = await orchestrator.run(options)
    except CsvInputError as e:
        logger.error(f"{e}")
        return EXIT_USAGE
    except SerpshotError as e:
        logger.error(f"Run aborted: {e}", exc_info=True)
        return EXIT_SESSION_ERROR

    print_summary(report)
    return exit_code_for(report, cancel_event.is_set())


def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint."""
    args = parse_options(argv)
    configure_logging(args.verbose)
    try:
        options = options_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        return EXIT_USAGE

    try:
        return asyncio.run(run(options))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_INTERRUPTED


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
