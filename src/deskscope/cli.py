"""Command-line interface for deskscope.

Provides the ``wake``, ``snapshot`` and ``watch`` commands. JSON goes
to stdout; every log message goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deskscope",
        description="Machine-readable snapshots of desktop and system state",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: ~/.config/deskscope/config.yaml)",
    )
    parser.add_argument(
        "--pretty", action="store_true", default=None,
        help="Indent JSON output",
    )
    parser.add_argument(
        "--verbose", action="store_true", default=None,
        help="Emit the full wake payload instead of the compact one",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--all-connections", action="store_true", default=None,
        help="Include loopback peers and every TCP state",
    )
    parser.add_argument(
        "--no-public-ip", action="store_true", default=None,
        help="Skip the public IP lookup",
    )
    parser.add_argument(
        "--watch-path", type=Path, default=None,
        help="Directory to watch for filesystem events (default: home directory)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("wake", help="Print the one-shot orientation payload")
    subparsers.add_parser("snapshot", help="Print one live observation")

    watch_parser = subparsers.add_parser("watch", help="Stream live observations as NDJSON")
    watch_parser.add_argument(
        "--interval", type=_positive_int, default=None, metavar="MS",
        help="Milliseconds between ticks (default: 1000)",
    )
    watch_parser.add_argument(
        "--diff", action="store_true", default=None,
        help="Emit JSON Patch envelopes after the first full observation",
    )
    watch_parser.add_argument(
        "--count", type=_positive_int, default=None,
        help="Stop after this many units",
    )

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


def apply_cli_overrides(settings, args: argparse.Namespace):
    """Overlay command-line flags on loaded settings. Unset flags keep the file's value."""
    if args.pretty is not None:
        settings.output.pretty = args.pretty
    if args.verbose is not None:
        settings.wake.verbose = args.verbose
    if args.no_public_ip is not None:
        settings.wake.no_public_ip = args.no_public_ip
    if args.all_connections is not None:
        settings.observer.all_connections = args.all_connections
    if args.watch_path is not None:
        settings.observer.watch_path = args.watch_path
    if getattr(args, "interval", None) is not None:
        settings.stream.interval_ms = args.interval
    if getattr(args, "diff", None) is not None:
        settings.stream.diff = args.diff
    if args.debug:
        settings.logging.level = "DEBUG"
    return settings


async def _wake(settings, sink) -> int:
    from deskscope.domain.compact import compact_wake
    from deskscope.observer.factory import create_waker

    waker = create_waker(settings.wake)
    wake = await waker.wake()
    if not settings.wake.verbose:
        wake = compact_wake(wake)
    sink.emit(wake)
    return EXIT_OK


async def _snapshot(settings, sink) -> int:
    from deskscope.engine.engine import ObservationEngine
    from deskscope.observer.factory import create_observer

    async with ObservationEngine(create_observer(settings.observer)) as engine:
        observation = await engine.poll()
    sink.emit(observation)
    return EXIT_OK


async def _watch(settings, sink, count: int | None = None) -> int:
    from deskscope.engine.engine import ObservationEngine
    from deskscope.engine.stream import StreamLoop, StreamState
    from deskscope.observer.factory import create_observer

    async with ObservationEngine(create_observer(settings.observer)) as engine:
        stream = StreamLoop(
            engine,
            sink,
            interval_ms=settings.stream.interval_ms,
            diff=settings.stream.diff,
            max_ticks=count,
        )

        def on_signal() -> None:
            logger.info("Stop requested")
            stream.stop()

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, on_signal)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support signal handlers; Ctrl+C
                # surfaces as KeyboardInterrupt instead.
                pass
        try:
            state = await stream.run()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    # A stop requested by SIGINT or SIGTERM that ends the stream cleanly is a success.
    return EXIT_FAILURE if state is StreamState.FAILED else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the deskscope CLI.

    Returns 0 on success, including a ``watch`` stream stopped cleanly by
    SIGINT or SIGTERM; 1 when an observer fails; 2 for a missing command
    or invalid configuration; 130 when interrupted by KeyboardInterrupt.
    """
    args = parse_args(argv)

    if args.command is None:
        build_parser().print_help()
        return EXIT_CONFIG_ERROR

    import yaml
    from pydantic import ValidationError

    from deskscope.config.settings import load_settings
    from deskscope.observer.base import ObserverError
    from deskscope.output import JsonLineSink
    from deskscope.utils.logging import setup_logging

    try:
        settings = apply_cli_overrides(load_settings(args.config), args)
    except (ValidationError, yaml.YAMLError, OSError, ValueError) as e:
        setup_logging()
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    setup_logging(settings.logging)
    sink = JsonLineSink(sys.stdout, pretty=settings.output.pretty)

    try:
        if args.command == "wake":
            return asyncio.run(_wake(settings, sink))
        if args.command == "snapshot":
            return asyncio.run(_snapshot(settings, sink))
        return asyncio.run(_watch(settings, sink, count=args.count))
    except ObserverError as e:
        logger.error("Observer failed (%s): %s", e.backend or "unknown", e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        sink.flush()


if __name__ == "__main__":
    sys.exit(main())
