#!/usr/bin/env python3
"""
relaylog-sub: tail and filter relaylog shard files.

Usage:
    relaylog-sub --file data/events.jsonl --follow
    relaylog-sub --peer max --kind received --grep '(?i)hello' --once --timeout 30
    relaylog-sub --peer 447700900123 --window 10 --json-array

Exit codes:
    0  success (match found, window elapsed or follow stopped)
    1  --once timeout elapsed without a match
    2  bad usage or fatal error
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from relaylog.consumer.filter import RecordFilter
from relaylog.consumer.tailer import (
    ArraySink,
    LineSink,
    TailMode,
    Tailer,
    TargetMissingError,
    resolve_target,
)
from relaylog.utils.config import Config, ConfigError
from relaylog.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_TIMEOUT = 1
EXIT_USAGE = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse and validate command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="relaylog-sub",
        description="Tail and filter relaylog JSONL shards",
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--file', type=str, help='Read this JSONL file directly')
    source.add_argument('--peer', type=str, help='Alias or identifier; resolved to its per-peer shard')
    parser.add_argument('--config', type=str, help='Config file used to resolve --peer')

    parser.add_argument('--kind', choices=['received', 'sent', 'status'], help='Only this event kind')
    parser.add_argument('--grep', type=str, help='Regex matched against .text; prefix (?i) for case-insensitive')
    parser.add_argument('-i', '--ignore-case', action='store_true', help='Case-insensitive --grep')
    parser.add_argument('--since-ts', type=int, help='Only events with ts >= this (epoch ms); scans history first')

    modes = parser.add_mutually_exclusive_group(required=True)
    modes.add_argument('--follow', action='store_true', help='Stream matches until interrupted')
    modes.add_argument('--once', action='store_true', help='Exit on the first match (requires --timeout)')
    modes.add_argument('--window', type=float, metavar='SEC', help='Collect matches for SEC seconds, then exit')

    parser.add_argument('--timeout', type=float, metavar='SEC', help='Deadline for --once')
    parser.add_argument('--json-array', action='store_true', help='Print matches as one JSON array at exit')
    parser.add_argument('--poll-interval', type=float, default=0.2, help='Seconds between polls (default: 0.2)')
    parser.add_argument('--no-wait', action='store_true', help='Fail if the file does not exist yet')
    parser.add_argument('--debug', action='store_true', help='Print the resolved path and debug logs to stderr')

    args = parser.parse_args(argv)

    if args.once and not args.timeout:
        parser.error("--once requires --timeout <sec>")
    if args.window is not None and args.window <= 0:
        parser.error("--window must be positive")
    if args.json_array and args.follow:
        parser.error("--json-array applies to --once and --window")

    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    configure_logging("DEBUG" if args.debug else "WARNING", "console", "stderr")

    try:
        record_filter = RecordFilter(
            kind=args.kind,
            since_ts=args.since_ts,
            pattern=args.grep,
            ignore_case=args.ignore_case,
        )
    except ValueError as e:
        print(f"relaylog-sub: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.file:
        target = Path(args.file)
    else:
        try:
            target = resolve_target(Config(args.config).settings(), args.peer)
        except ConfigError as e:
            print(f"relaylog-sub: {e}", file=sys.stderr)
            return EXIT_USAGE

    if args.debug:
        print(f'tailing: "{target}"', file=sys.stderr)

    if args.follow:
        mode, duration = TailMode.FOLLOW, None
    elif args.once:
        mode, duration = TailMode.ONCE, args.timeout
    else:
        mode, duration = TailMode.WINDOW, args.window

    sink = ArraySink() if args.json_array else LineSink()
    stop_event = threading.Event()

    def _request_stop(signum, frame):
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _request_stop)

    tailer = Tailer(
        target,
        emit=sink,
        mode=mode,
        record_filter=record_filter,
        duration=duration,
        wait_for_file=not args.no_wait,
        poll_interval=args.poll_interval,
        stop_event=stop_event,
    )

    try:
        result = tailer.run()
    except TargetMissingError as e:
        print(f"relaylog-sub: {e}", file=sys.stderr)
        return EXIT_USAGE
    finally:
        sink.close()

    return EXIT_OK if result.ok else EXIT_TIMEOUT


if __name__ == '__main__':
    sys.exit(main())
