#!/usr/bin/env python3
"""Woods Hole water clarity runner.

Refreshes all data sources once and prints a clarity report.

Usage:
    # Print report to console (default)
    python scripts/run_clarity.py

    # Rank best windows over the next 48 hours
    python scripts/run_clarity.py --hours 48

    # Output as JSON
    python scripts/run_clarity.py --format json

    # Save to file
    python scripts/run_clarity.py --format json --output report.json

    # Keep refreshing on the REFRESH_MINUTES schedule until interrupted
    python scripts/run_clarity.py --watch
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from clarity.config import Settings
from clarity.core.scheduler import RefreshScheduler
from clarity.core.service import ClarityService
from clarity.digests.formatter import ReportFormatter
from clarity.digests.report import ClarityReport, ReportGenerator


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Quiet down noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Estimate water clarity at Woods Hole dive sites",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--hours",
        type=int,
        default=24,
        help="Horizon for best window ranking, max 72 (default: 24)",
    )

    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Write output to file instead of stdout",
    )

    parser.add_argument(
        "--watch",
        action="store_true",
        help="Refresh on a schedule and print a report after each refresh",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args()


def format_output(report: ClarityReport, format_type: str) -> str:
    """Format report for output."""
    formatter = ReportFormatter(report)

    if format_type == "json":
        return formatter.format_json()
    else:
        return formatter.format_text()


def emit(output: str, output_file: str = None):
    """Write or print output."""
    if output_file:
        output_path = Path(output_file)
        output_path.write_text(output)
        print(f"Output written to: {output_path}", file=sys.stderr)
    else:
        print(output)


async def run_once(service: ClarityService, args) -> ClarityReport:
    """Refresh once and emit a report."""
    print("Refreshing water clarity data...", file=sys.stderr)
    print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", file=sys.stderr)
    print(file=sys.stderr)

    await service.refresh()
    report = ReportGenerator(service).generate(args.hours)
    emit(format_output(report, args.format), args.output)
    return report


async def watch(service: ClarityService, args):
    """Refresh on a schedule until interrupted."""

    def on_refresh(svc: ClarityService):
        report = ReportGenerator(svc).generate(args.hours)
        emit(format_output(report, args.format), args.output)

    scheduler = RefreshScheduler(service, on_refresh=on_refresh)
    task = scheduler.start()
    try:
        await task
    finally:
        await scheduler.stop()


def main():
    """Main entry point."""
    args = parse_args()
    setup_logging(args.verbose)

    settings = Settings.from_env()
    if not settings.openweather_enabled:
        print("Note: OPENWEATHER_API_KEY not set, rain penalty disabled", file=sys.stderr)
    if not settings.stormglass_enabled:
        print("Note: STORMGLASS_API_KEY not set, swell penalty disabled", file=sys.stderr)

    service = ClarityService(settings=settings)

    if args.watch:
        try:
            asyncio.run(watch(service, args))
        except KeyboardInterrupt:
            print("\nStopped.", file=sys.stderr)
        return 0

    report = asyncio.run(run_once(service, args))

    if report.errors:
        print("Warnings during generation:", file=sys.stderr)
        for err in report.errors:
            print(f"  - {err}", file=sys.stderr)
        print(file=sys.stderr)

    # Summary (always to stderr so it doesn't pollute piped output)
    print(file=sys.stderr)
    print("=" * 50, file=sys.stderr)
    print("SUMMARY", file=sys.stderr)
    print("=" * 50, file=sys.stderr)
    print(f"  Total sites: {len(report.sites)}", file=sys.stderr)
    best = report.best_site
    if best:
        print(f"  Best now: {best.site.name} ({best.current_score:.0f})", file=sys.stderr)
    print(f"  Degraded: {'yes' if report.degraded else 'no'}", file=sys.stderr)
    print("=" * 50, file=sys.stderr)

    return 1 if report.degraded or report.errors else 0


if __name__ == "__main__":
    sys.exit(main())
