"""actions-hub command line: build and push action images with changes."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

import yaml
from loguru import logger

from actions_hub.config import default_buildkit_addr, load_config
from actions_hub.core.dispatcher import DEFAULT_PLATFORMS, ImageDispatcher, parse_platforms
from actions_hub.core.exceptions import MetadataError, ScanError
from actions_hub.core.orchestrator import (
    DEFAULT_CONTAINER_REPO,
    DEFAULT_GIT_REF,
    BuildOptions,
    FailurePolicy,
    Orchestrator,
    RunResult,
)
from actions_hub.report import create_run_report, write_run_report

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_BUILD_FAILED = 2
EXIT_CANCELLED = 130


def build_parser(defaults: dict | None = None) -> argparse.ArgumentParser:
    """Create the ``actions-hub`` argument parser.

    Args:
        defaults: values that replace the ``build`` flag defaults, e.g. from ``--config``

    Returns:
        Parser with the ``build`` subcommand registered
    """
    parser = argparse.ArgumentParser(prog="actions-hub", description="Tinkerbell actions hub tooling")
    parser.add_argument("--log-level", default="INFO", help="loguru log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser(
        "build",
        help="Build and push action container images with changes",
        usage="actions-hub build [--context .] [--dry-run]",
    )
    p.add_argument("--config", type=Path, default=None, help="YAML file with defaults for the flags below")
    p.add_argument(
        "--context",
        type=Path,
        default=Path("."),
        help="base path for the actions repository in your local file system",
    )
    p.add_argument(
        "--container-repo",
        default=DEFAULT_CONTAINER_REPO,
        help="repository to push the container images to",
    )
    p.add_argument("--dry-run", action="store_true", help="only show the modified actions")
    p.add_argument("--no-cache", action="store_true", help="do not use cache when building the image")
    p.add_argument("--push", action="store_true", help="push image to a registry")
    p.add_argument(
        "--git-ref",
        default=DEFAULT_GIT_REF,
        help="the git commit or reference to compare to in the format of HEAD..<commit-id>",
    )
    p.add_argument(
        "--buildkit-addr",
        default=default_buildkit_addr(),
        help="buildkit daemon address (default: $BUILDKIT_HOST or the local socket)",
    )
    p.add_argument(
        "--platforms",
        default=",".join(DEFAULT_PLATFORMS),
        help="the target os and cpu architecture platforms for the container images",
    )
    p.add_argument(
        "--failure-policy",
        choices=[fp.value for fp in FailurePolicy],
        default=FailurePolicy.ABORT.value,
        help="stop at the first failed build (abort) or build every action (continue)",
    )
    p.add_argument("--report", type=Path, default=None, help="write a JSON run report to this path")
    p.set_defaults(func=cmd_build)
    if defaults:
        p.set_defaults(**defaults)
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse arguments, letting ``--config`` supply defaults that flags override.

    An unreadable or malformed config file and an empty platform list are
    reported as usage errors (exit status 2).

    Args:
        argv: arguments without the program name (defaults to sys.argv)

    Returns:
        Parsed namespace
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "config", None):
        try:
            defaults = load_config(args.config)
        except (OSError, yaml.YAMLError, ValueError) as exc:
            parser.error(f"unable to load --config {args.config}: {exc}")
        parser = build_parser(defaults)
        args = parser.parse_args(argv)
    if args.command == "build" and not parse_platforms(str(args.platforms)):
        parser.error("--platforms must name at least one platform")
    if args.command == "build" and args.failure_policy not in {fp.value for fp in FailurePolicy}:
        parser.error(f"invalid failure policy: {args.failure_policy!r}")
    return args


def options_from_args(args: argparse.Namespace) -> BuildOptions:
    """Turn parsed ``build`` arguments into BuildOptions.

    Args:
        args: namespace from parse_args

    Returns:
        Options for the Orchestrator

    Raises:
        ValueError: the platform list is empty
    """
    platforms = parse_platforms(str(args.platforms))
    if not platforms:
        raise ValueError("--platforms must name at least one platform")
    return BuildOptions(
        context=Path(args.context),
        container_repo=args.container_repo,
        dry_run=bool(args.dry_run),
        push=bool(args.push),
        no_cache=bool(args.no_cache),
        git_ref=args.git_ref,
        buildkit_addr=args.buildkit_addr,
        platforms=platforms,
        failure_policy=FailurePolicy(args.failure_policy),
    )


def _install_signal_handlers(cancel: threading.Event) -> None:
    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning(f"Received {signal.Signals(signum).name}, cancelling the build run")
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def exit_code(result: RunResult) -> int:
    """Map a run result onto the process exit status (0, 2 or 130)."""
    if result.cancelled:
        return EXIT_CANCELLED
    if result.failures:
        return EXIT_BUILD_FAILED
    return EXIT_OK


def cmd_build(args: argparse.Namespace, cancel: threading.Event | None = None) -> int:
    """Run the ``build`` subcommand.

    Scan and README failures are logged and return EXIT_RUN_FAILED; build
    failures are handled by the Orchestrator and reflected in the exit status.

    Args:
        args: namespace from parse_args
        cancel: event set by the signal handlers to stop the run

    Returns:
        Process exit status
    """
    options = options_from_args(args)
    log = logger.bind(component="orchestrator")
    orchestrator = Orchestrator(
        options,
        log=log,
        dispatcher=ImageDispatcher(log=log),
        cancel=cancel,
    )
    try:
        result = orchestrator.run()
    except ScanError as exc:
        logger.error(f"failed to scan for modified actions: {exc}")
        return EXIT_RUN_FAILED
    except MetadataError as exc:
        logger.error(f"failed to derive the action manifest: {exc}")
        return EXIT_RUN_FAILED

    if args.report:
        write_run_report(create_run_report(options, result), Path(args.report))

    if result.failures:
        logger.error(f"{len(result.failures)} action build(s) failed")
    return exit_code(result)


def main(argv: list[str] | None = None) -> int:
    """Console entry point; configures loguru and installs signal handlers."""
    args = parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    cancel = threading.Event()
    _install_signal_handlers(cancel)
    return args.func(args, cancel=cancel)


if __name__ == "__main__":
    sys.exit(main())
