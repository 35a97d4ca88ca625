"""
Command-line entry point.

Subcommands:

- ``run``              -- generate load for a test type and grade it.
- ``check-connection`` -- probe a few endpoints to see if the API is up.
- ``stub-server``      -- serve the bundled stub API for local runs.

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "harness failed":

- ``0`` -- every threshold passed
- ``1`` -- at least one threshold was breached
- ``2`` -- configuration error, failed connectivity check or crash
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from deliveryload.config import Config, get_config
from deliveryload.events import attach_logging_listeners
from deliveryload.exceptions import ConfigurationError, ConnectivityError, HarnessError
from deliveryload.models import ActorKind
from deliveryload.profiles import TEST_PLANS, TestPlan, get_plan, load_profile
from deliveryload.report import render_summary, write_summary_json
from deliveryload.runner import (
    EXIT_PASS,
    EXIT_SCRIPT_ERROR,
    EndpointProbe,
    LoadTestRunner,
    check_connection,
)
from deliveryload.thresholds import load_thresholds

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deliveryload",
        description="Load-test a food-delivery API with simulated customers, vendors and riders.",
    )
    parser.add_argument("--env", default=None, help="Configuration environment (local, uat, testing)")
    parser.add_argument("--log-level", default=None, help="Logging level (default from config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a load test")
    run.add_argument("--type", dest="test_type", default="smoke", choices=sorted(TEST_PLANS))
    run.add_argument("--base-url", default=None, help="API root; overrides the config")
    run.add_argument("--profile", type=Path, default=None, help="YAML file with stages")
    run.add_argument("--thresholds", type=Path, default=None, help="YAML file with extra thresholds")
    run.add_argument("--summary-json", type=Path, default=None, help="Write the summary as JSON here")
    run.add_argument("--token-mode", choices=("shared", "per_vu"), default=None)
    run.add_argument("--think-time-scale", type=float, default=None)
    run.add_argument("--actors", default=None, help="Comma-separated actor kinds to run (default: all)")
    run.add_argument("--no-health-check", action="store_true", help="Skip the pre-run health check")
    run.add_argument("--verbose", action="store_true", help="Log every journey step")

    check = subparsers.add_parser("check-connection", help="Probe API connectivity")
    check.add_argument("--base-url", default=None)

    stub = subparsers.add_parser("stub-server", help="Serve the stub API")
    stub.add_argument("--host", default="127.0.0.1")
    stub.add_argument("--port", type=int, default=8080)
    stub.add_argument("--failure-rate", type=float, default=None)
    stub.add_argument("--latency-ms", type=float, default=None)
    return parser


def _configure(args: argparse.Namespace) -> type[Config]:
    """Return the config class with command-line overrides applied."""
    base = get_config(args.env)
    overrides = {}
    if getattr(args, "base_url", None):
        overrides["BASE_URL"] = args.base_url
    if getattr(args, "token_mode", None):
        overrides["TOKEN_MODE"] = args.token_mode
    if getattr(args, "think_time_scale", None) is not None:
        overrides["THINK_TIME_SCALE"] = args.think_time_scale
    if not overrides:
        return base
    return type(f"Cli{base.__name__}", (base,), overrides)


def _parse_actors(value: str) -> list[ActorKind]:
    try:
        kinds = [ActorKind.parse(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    if not kinds:
        raise ConfigurationError("--actors needs at least one actor kind")
    return kinds


def build_plan(args: argparse.Namespace) -> TestPlan:
    """Apply the profile, threshold and actor overrides to the test type's plan."""
    plan = get_plan(args.test_type)
    profile = load_profile(args.profile) if args.profile else None
    thresholds = load_thresholds(args.thresholds) if args.thresholds else None
    mix = plan.mix.only(_parse_actors(args.actors)) if args.actors else None
    return plan.with_overrides(profile=profile, thresholds=thresholds, mix=mix)


# =====================================================================
# Commands
# =====================================================================


def cmd_run(args: argparse.Namespace) -> int:
    config = _configure(args)
    plan = build_plan(args)
    runner = LoadTestRunner(plan, config, check_health=not args.no_health_check)
    attach_logging_listeners(runner.events, verbose=args.verbose)

    outcome = runner.run()
    print(render_summary(outcome.summary))
    if args.summary_json:
        write_summary_json(outcome.summary, args.summary_json, outcome.report)
    return outcome.exit_code


def _print_probes(base_url: str, probes: list[EndpointProbe]) -> None:
    print(f"Connection check: {base_url}")
    print("-" * 72)
    print(f"{'Endpoint':<14}{'Method':<8}{'Path':<32}{'Status':>8}{'Result':>10}")
    print("-" * 72)
    for probe in probes:
        result = "OK" if probe.accessible else "FAIL"
        print(f"{probe.name:<14}{probe.method:<8}{probe.path:<32}{probe.status:>8}{result:>10}")
        if probe.detail:
            print(f"    {probe.detail}")
    print("-" * 72)


def cmd_check_connection(args: argparse.Namespace) -> int:
    config = _configure(args)
    probes = check_connection(config.BASE_URL, timeout=config.REQUEST_TIMEOUT)
    _print_probes(config.BASE_URL, probes)
    if all(probe.accessible for probe in probes):
        print("Overall: PASS")
        return EXIT_PASS
    print("Overall: FAIL")
    return EXIT_SCRIPT_ERROR


def cmd_stub_server(args: argparse.Namespace) -> int:
    from gevent.pywsgi import WSGIServer

    from deliveryload.stub_api import create_app

    overrides = {}
    if args.failure_rate is not None:
        overrides["STUB_FAILURE_RATE"] = args.failure_rate
    if args.latency_ms is not None:
        overrides["STUB_LATENCY_MS"] = args.latency_ms
    app = create_app(overrides)
    server = WSGIServer((args.host, args.port), app, log=None)
    logger.info("Stub API listening on http://%s:%d/api/v1", args.host, args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Stub API stopped")
    return EXIT_PASS


COMMANDS = {
    "run": cmd_run,
    "check-connection": cmd_check_connection,
    "stub-server": cmd_stub_server,
}


def main(argv: list[str] | None = None) -> int:
    """
    Parse *argv*, run the command and map failures to exit codes.

    Returns:
        ``0`` pass, ``1`` threshold breach, ``2`` harness failure.
    """
    args = build_parser().parse_args(argv)
    level = args.log_level or get_config(args.env).LOG_LEVEL
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)

    try:
        return COMMANDS[args.command](args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
    except ConnectivityError as exc:
        logger.error("API is not accessible: %s", exc)
    except HarnessError as exc:
        logger.error("Run failed: %s", exc)
    except KeyboardInterrupt:
        logger.error("Interrupted")
    except Exception:  # pragma: no cover
        logger.exception("Unexpected error")
    return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    sys.exit(main())
