"""Command-line interface for loadpace."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console

from .checks import list_available_checks
from .core.config import load_plan
from .core.engine import LoadTest
from .core.results import EXIT_ERROR, EXIT_PASS, EXIT_THRESHOLD_FAILED, RunReport
from .core.settings import LoadPaceSettings
from .utils.errors import PlanValidationError, ThresholdBreach


console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "WARNING", verbose: bool = False):
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadpace",
        description="Drive HTTP traffic at a target arrival rate and check it against thresholds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a plan and show the live dashboard
  loadpace examples/health_ramp.yaml

  # CI mode: no dashboard, save the report as JSON
  loadpace examples/users_me.yaml --no-dashboard --output report.json

  # Tokens for bearer auth come from the environment (or a .env file)
  LOADPACE_TOKENS=tok1,tok2 loadpace examples/users_me.yaml

Exit codes:
  0  every threshold passed
  1  a threshold failed, had no data, or the run was aborted
  2  invalid plan or unexpected error
        """,
    )
    parser.add_argument(
        "plan",
        nargs="?",
        help="Plan document (.yaml, .yml or .json)",
    )
    parser.add_argument(
        "--output", "-o",
        help="File to save the full report to (format from its extension: .json or .csv)",
    )
    parser.add_argument(
        "--save",
        choices=["json", "csv"],
        help="Save the report under LOADPACE_OUTPUT_DIR with a generated filename",
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Disable the live terminal dashboard",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only print the verdict line",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: LOADPACE_LOG_LEVEL or WARNING)",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment file to load before reading settings (default: .env)",
    )
    parser.add_argument(
        "--list-checks",
        action="store_true",
        help="List the available named checks and exit",
    )
    return parser


async def _run_with_signals(test: LoadTest, show_dashboard: bool) -> RunReport:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, test.cancel, f"interrupted by {sig.name}")
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support.
            pass
    try:
        return await test.arun(show_dashboard=show_dashboard)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _save_report(report: RunReport, output: str) -> str:
    fmt = "csv" if output.lower().endswith(".csv") else "json"
    return report.save(format=fmt, filepath=output)


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    settings = LoadPaceSettings()
    setup_logging(args.log_level or settings.log_level, args.verbose)

    if args.list_checks:
        list_available_checks()
        sys.exit(EXIT_PASS)
    if not args.plan:
        parser.error("a plan file is required")

    try:
        plan = load_plan(args.plan)
        test = LoadTest(plan, settings=settings)

        if not args.quiet:
            console.print(f"Running plan '{plan.name}' against {plan.request.method} {plan.request.url}")
        report = asyncio.run(_run_with_signals(test, show_dashboard=not (args.no_dashboard or args.quiet)))

        if args.quiet:
            state = "PASSED" if report.passed else "FAILED"
            suffix = " (incomplete)" if report.incomplete else ""
            console.print(f"{plan.name}: {state}{suffix}")
        else:
            report.print_summary()

        if args.output:
            _save_report(report, args.output)
        elif args.save:
            report.save(format=args.save, output_dir=settings.output_dir)

        report.verdict.raise_for_breach()
        if report.incomplete:
            console.print(f"[yellow]Run incomplete:[/yellow] {report.stop_reason}")
            sys.exit(report.exit_code)

    except PlanValidationError as e:
        console.print(f"[red]Invalid plan:[/red] {e}")
        sys.exit(EXIT_ERROR)
    except ThresholdBreach as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(EXIT_THRESHOLD_FAILED)
    except KeyboardInterrupt:
        console.print("\n[yellow]Load test interrupted by user[/yellow]")
        sys.exit(EXIT_THRESHOLD_FAILED)
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(EXIT_ERROR)

    sys.exit(EXIT_PASS)


if __name__ == "__main__":
    main()
