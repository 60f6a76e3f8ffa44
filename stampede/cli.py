"""
Command-line entry point.

Usage examples::

    # Run a script with its own options against a local service:
    stampede run load_scripts/pr_review_easy.py --base-url http://localhost:8080

    # Override the profile and thresholds from CI:
    stampede run load_scripts/pr_review_heavy.py \\
        --stage 10s:20 --stage 30s:20 --stage 5s:0 \\
        --thresholds load_scripts/thresholds.yml --seed 42

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "the run itself broke":

- ``0``: every threshold passed
- ``1``: at least one threshold was breached (or aborted the run)
- ``2``: the run could not complete (bad script or options, setup failure)
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from stampede.config import NO_DATA_POLICIES, Settings, get_config
from stampede.exceptions import StampedeError
from stampede.options import apply_overrides, load_thresholds_file, parse_options
from stampede.report import print_summary
from stampede.runner import Runner
from stampede.script import load_script

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_RUN_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stampede",
        description="Drive an HTTP service with virtual users and gate on thresholds.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a load script")
    run.add_argument("script", type=Path, help="Path to the load script (.py)")
    run.add_argument("--base-url", help="Target root URL (default: STAMPEDE_BASE_URL)")
    run.add_argument("--env", help="Config environment: development, testing or production")
    run.add_argument("--vus", type=int, help="Constant VU count (switches to fixed mode)")
    run.add_argument("--duration", help="Fixed-mode duration, e.g. 30s or 1m30s")
    run.add_argument(
        "--stage",
        action="append",
        dest="stages",
        metavar="DURATION:TARGET",
        help="Ramp stage; repeat to build a profile (replaces the script's stages)",
    )
    run.add_argument("--thresholds", type=Path, help="YAML file with threshold rules")
    run.add_argument(
        "--replace-thresholds",
        action="store_true",
        help="Use only the file's thresholds instead of merging with the script's",
    )
    run.add_argument("--seed", type=int, help="Seed for scenario selection and think jitter")
    run.add_argument("--no-data", choices=NO_DATA_POLICIES, help="Verdict for thresholds without samples")
    run.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    run.add_argument("--control-interval", type=float, help="Scheduler sampling period in seconds")
    run.add_argument("--graceful-stop", help="Wait for in-flight iterations, e.g. 30s")
    run.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def run_command(args: argparse.Namespace) -> int:
    """Load the script, build the config, run it and print the summary."""
    settings = Settings.from_config(
        get_config(args.env),
        base_url=args.base_url,
        request_timeout=args.timeout,
        control_interval=args.control_interval,
        no_data_policy=args.no_data,
        log_level=args.log_level,
    )
    _configure_logging(settings.log_level)

    try:
        script = load_script(args.script)
        config = parse_options(script.options)
        thresholds: Any = load_thresholds_file(args.thresholds) if args.thresholds else None
        config = apply_overrides(
            config,
            vus=args.vus,
            duration=args.duration,
            stages=args.stages,
            thresholds=thresholds,
            replace_thresholds=args.replace_thresholds,
            seed=args.seed,
            graceful_stop=args.graceful_stop,
        )
        runner = Runner(config, script, settings)
    except (StampedeError, OSError) as exc:
        print(f"Cannot start run: {exc}", file=sys.stderr)
        return EXIT_RUN_ERROR

    previous_handler = signal.signal(signal.SIGINT, lambda *_: runner.stop())
    try:
        result = runner.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print_summary(result, runner.recorder)
    if result.setup_error:
        return EXIT_RUN_ERROR
    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the ``stampede`` console script.

    Returns:
        ``EXIT_PASS`` (0), ``EXIT_THRESHOLD_BREACH`` (1) or
        ``EXIT_RUN_ERROR`` (2).
    """
    args = build_parser().parse_args(argv)
    try:
        return run_command(args)
    except Exception as exc:  # pragma: no cover
        logger.exception("Run crashed")
        print(f"Run crashed: {exc}", file=sys.stderr)
        return EXIT_RUN_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
